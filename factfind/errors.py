"""
Error types for the fact-find service.

Every error here is request-scoped: the web layer turns it into a JSON
response and the process keeps running.
"""

from typing import Optional


class FactFindError(Exception):
    """Base class for all fact-find errors."""


class AnswerValidationError(FactFindError):
    """An answer was rejected for a choice-type question."""

    def __init__(self, question_id: int, message: str):
        super().__init__(message)
        self.question_id = question_id
        self.message = message


class ValidationError(FactFindError):
    """A request payload failed validation."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class QuestionValidationError(ValidationError):
    """A question definition failed validation on save."""


class ConditionalLogicError(QuestionValidationError):
    """Admin-configured conditional logic could not be parsed."""

    def __init__(self, message: str):
        super().__init__(message, field="conditionalLogic")


class PersistenceError(FactFindError):
    """The answer/question store failed or timed out."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class ExportError(FactFindError):
    """PDF, Excel or email generation failed."""


class AuthenticationError(FactFindError):
    """A bearer token could not be verified."""


class QuestionnaireStateError(FactFindError):
    """An action was attempted in a state that does not allow it."""


class AssistantError(FactFindError):
    """No AI provider could answer the request."""
