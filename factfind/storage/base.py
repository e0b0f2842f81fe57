"""
Storage interface for questions, sessions, answers, users and config.

Two backends implement it: ``MemoryStorage`` (development, tests) and
``SQLStorage`` (SQLAlchemy, Postgres in production). Both validate question
payloads the same way through ``prepare_question`` / ``finalize_question``.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import ConditionalLogicError, QuestionValidationError, ValidationError
from ..questionnaire.resolver import find_dependency_cycle
from ..schemas.conditional_logic import parse_conditional_logic
from ..schemas.questions import (
    Question,
    normalize_question_payload,
    question_fields,
    validate_question_payload,
)
from ..schemas.records import (
    CONFIG_FIELDS,
    SESSION_FIELDS,
    AppConfig,
    Session,
    SessionStatus,
    StoredAnswer,
    User,
)

logger = logging.getLogger(__name__)


def prepare_question(data: Dict[str, Any], existing: Optional[Question] = None) -> Dict[str, Any]:
    """
    Validate a create payload, or a partial update merged onto ``existing``.

    Returns:
        Cleaned stored-field dict (conditional logic still unparsed)
    """
    payload = normalize_question_payload(data)
    if existing is not None:
        merged = question_fields(existing)
        merged.update(payload)
        payload = merged
    return validate_question_payload(payload)


def finalize_question(question: Question, others: List[Question]) -> Question:
    """
    Run the checks that need the question's id and its siblings.

    Parses conditional logic into canonical form (legacy rules refer to the
    owning question), rejects rules that name a question that does not exist,
    and rejects self-dependencies and dependency cycles.

    Args:
        question: Question about to be stored, id already assigned
        others: Every other stored question

    Raises:
        QuestionValidationError: On a self-dependency or cycle
        ConditionalLogicError: On malformed logic or an unknown referenced question
    """
    question.conditional_logic = parse_conditional_logic(question.conditional_logic, owner_id=question.id)
    if question.conditional_logic is not None:
        known = {q.id for q in others} | {question.id}
        for referenced in question.conditional_logic.referenced_question_ids():
            if referenced not in known:
                raise ConditionalLogicError(f"Conditional logic refers to unknown question Q{referenced}")

    if question.depends_on and question.depends_on.question_id == question.id:
        raise QuestionValidationError("A question cannot depend on itself", field="dependsOn")

    cycle = find_dependency_cycle(others + [question])
    if cycle:
        path = " -> ".join(f"Q{qid}" for qid in cycle)
        raise QuestionValidationError(f"Dependency cycle: {path}", field="dependsOn")
    return question


class Storage(ABC):
    """Persistence collaborator. Backend failures raise PersistenceError."""

    # -- users ---------------------------------------------------------------

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]:
        pass

    @abstractmethod
    def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        pass

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    def create_user(self, external_id: str, email: str, name: Optional[str] = None,
                    is_admin: bool = False) -> User:
        pass

    # -- questions -----------------------------------------------------------

    @abstractmethod
    def list_questions(self) -> List[Question]:
        """All questions, ascending ``order`` (ties by id)."""
        pass

    @abstractmethod
    def get_question(self, question_id: int) -> Optional[Question]:
        pass

    @abstractmethod
    def create_question(self, data: Dict[str, Any]) -> Question:
        """
        Create a question from an API payload.

        Raises:
            QuestionValidationError: If the payload is invalid
        """
        pass

    @abstractmethod
    def update_question(self, question_id: int, partial: Dict[str, Any]) -> Optional[Question]:
        """Apply a partial update. Returns None if the question does not exist."""
        pass

    @abstractmethod
    def delete_question(self, question_id: int) -> bool:
        """
        Delete a question. Dependents keep their (now dangling) reference
        and are never shown.
        """
        pass

    # -- sessions ------------------------------------------------------------

    @abstractmethod
    def list_sessions(self) -> List[Session]:
        pass

    @abstractmethod
    def list_user_sessions(self, user_id: int) -> List[Session]:
        pass

    @abstractmethod
    def get_session(self, session_id: int) -> Optional[Session]:
        pass

    @abstractmethod
    def create_session(self, user_id: int, signature_data: Optional[str] = None) -> Session:
        pass

    @abstractmethod
    def update_session(self, session_id: int, partial: Dict[str, Any]) -> Optional[Session]:
        """Update status / completed_at / signature_data."""
        pass

    # -- answers -------------------------------------------------------------

    @abstractmethod
    def save_answer(self, session_id: int, question_id: int, value: str) -> StoredAnswer:
        """Insert or replace the answer for (session, question)."""
        pass

    @abstractmethod
    def list_answers(self, session_id: int) -> List[StoredAnswer]:
        """Answers for a session, in first-insertion order."""
        pass

    # -- config --------------------------------------------------------------

    @abstractmethod
    def get_config(self) -> AppConfig:
        pass

    @abstractmethod
    def update_config(self, partial: Dict[str, Any]) -> AppConfig:
        pass

    def close(self) -> None:
        """Release backend resources."""
        pass


def normalize_session_update(partial: Dict[str, Any]) -> Dict[str, Any]:
    """Translate an API session update into stored fields."""
    if not isinstance(partial, dict):
        raise ValidationError("Session update must be an object")
    fields: Dict[str, Any] = {}
    for key, value in partial.items():
        name = SESSION_FIELDS.get(key) or (key if key in SESSION_FIELDS.values() else None)
        if name is None:
            continue
        if name == "status":
            try:
                value = SessionStatus(value)
            except ValueError:
                raise ValidationError(f"Unknown session status: {value!r}", field="status")
        elif name == "completed_at" and isinstance(value, str):
            try:
                value = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                raise ValidationError("completedAt must be an ISO timestamp", field="completedAt")
            if value.tzinfo is not None:
                value = value.astimezone(timezone.utc).replace(tzinfo=None)
        elif name == "signature_data" and value is not None and not isinstance(value, str):
            raise ValidationError("signatureData must be a string", field="signatureData")
        fields[name] = value
    return fields


def normalize_config_update(partial: Dict[str, Any]) -> Dict[str, Any]:
    """Translate an API config update into AppConfig attribute names."""
    if not isinstance(partial, dict):
        raise ValidationError("Config update must be an object")
    fields: Dict[str, Any] = {}
    for key, value in partial.items():
        name = CONFIG_FIELDS.get(key) or (key if key in CONFIG_FIELDS.values() else None)
        if name is None:
            continue
        if name == "ai_temperature" and isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str):
            raise ValidationError(f"{key} must be a string", field=key)
        if name == "ai_temperature":
            try:
                float(value)
            except ValueError:
                raise ValidationError("aiTemperature must be a number", field=key)
        fields[name] = value
    return fields
