"""
Schema definitions for the fact-find service.
"""

from .conditional_logic import (
    ConditionalLogic,
    Contains,
    EndForm,
    Equals,
    IsNo,
    IsYes,
    Show,
    SkipTo,
    parse_conditional_logic,
)
from .questions import (
    CHOICE_TYPES,
    YES_NO_OPTIONS,
    Dependency,
    Question,
    QuestionType,
    normalize_question_payload,
    question_fields,
    sort_questions,
    validate_question_payload,
)
from .records import AppConfig, Session, SessionStatus, StoredAnswer, User
from .values import as_answer_text

__all__ = [
    "ConditionalLogic",
    "Contains",
    "EndForm",
    "Equals",
    "IsNo",
    "IsYes",
    "Show",
    "SkipTo",
    "parse_conditional_logic",
    "CHOICE_TYPES",
    "YES_NO_OPTIONS",
    "Dependency",
    "Question",
    "QuestionType",
    "normalize_question_payload",
    "question_fields",
    "sort_questions",
    "validate_question_payload",
    "AppConfig",
    "Session",
    "SessionStatus",
    "StoredAnswer",
    "User",
    "as_answer_text",
]
