"""
Question definitions for the insurance fact-find.

A question is presented one at a time, in ascending ``order``. A question may
depend on the answer given to an earlier one (``depends_on``); see
``factfind.questionnaire.resolver`` for how visibility is decided.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..errors import QuestionValidationError
from .conditional_logic import ConditionalLogic


class QuestionType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    MULTIPLE_CHOICE = "multiple-choice"
    CHECKBOX_MULTIPLE = "checkbox-multiple"
    DATE = "date"
    YES_NO = "yes/no"


CHOICE_TYPES = {
    QuestionType.MULTIPLE_CHOICE,
    QuestionType.CHECKBOX_MULTIPLE,
    QuestionType.YES_NO,
}

YES_NO_OPTIONS = ["Yes", "No"]

# Stored (snake_case) field names that a question payload may set
QUESTION_FIELDS = (
    "text", "type", "order", "options", "depends_on",
    "placeholder", "prefix", "suffix", "category", "conditional_logic",
)


@dataclass(frozen=True)
class Dependency:
    """Show a question only when another question has a given answer."""
    question_id: int
    value: Union[str, bool]

    def to_dict(self) -> dict:
        return {"questionId": self.question_id, "value": self.value}

    @classmethod
    def from_dict(cls, data: Any) -> "Dependency":
        if not isinstance(data, dict):
            raise QuestionValidationError("dependsOn must be an object", field="dependsOn")
        question_id = data.get("questionId")
        if isinstance(question_id, str) and question_id.strip().isdigit():
            question_id = int(question_id.strip())
        if not isinstance(question_id, int) or isinstance(question_id, bool):
            raise QuestionValidationError("dependsOn.questionId must be an integer", field="dependsOn")
        value = data.get("value")
        if not isinstance(value, (str, bool)):
            raise QuestionValidationError("dependsOn.value must be a string or boolean", field="dependsOn")
        return cls(question_id=question_id, value=value)


@dataclass
class Question:
    """A single fact-find question."""
    id: int
    text: str
    type: QuestionType
    order: int
    options: Optional[List[str]] = None
    depends_on: Optional[Dependency] = None
    placeholder: Optional[str] = None
    prefix: Optional[str] = None
    suffix: Optional[str] = None
    category: Optional[str] = None
    conditional_logic: Optional[ConditionalLogic] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_choice(self) -> bool:
        return self.type in CHOICE_TYPES

    def to_dict(self) -> dict:
        """API representation (camelCase keys, as the web client expects)."""
        return {
            "id": self.id,
            "text": self.text,
            "type": self.type.value,
            "options": list(self.options) if self.options is not None else None,
            "order": self.order,
            "dependsOn": self.depends_on.to_dict() if self.depends_on else None,
            "placeholder": self.placeholder,
            "prefix": self.prefix,
            "suffix": self.suffix,
            "category": self.category,
            "conditionalLogic": self.conditional_logic.to_dict() if self.conditional_logic else None,
            "conditionalLogicSummary": self.conditional_logic.describe() if self.conditional_logic else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


# Mapping from API keys to stored field names
_API_KEYS = {
    "text": "text",
    "type": "type",
    "order": "order",
    "options": "options",
    "dependsOn": "depends_on",
    "depends_on": "depends_on",
    "placeholder": "placeholder",
    "prefix": "prefix",
    "suffix": "suffix",
    "category": "category",
    "conditionalLogic": "conditional_logic",
    "conditional_logic": "conditional_logic",
}


def _optional_str(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise QuestionValidationError(f"{name} must be a string", field=name)
    return value


def _parse_options(raw: Any) -> List[str]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise QuestionValidationError("options must be a list of strings", field="options")
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(o, str) for o in raw):
        raise QuestionValidationError("options must be a list of strings", field="options")
    return [o.strip() for o in raw if o and o.strip()]


def normalize_question_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """Translate API keys to stored field names, dropping unknown keys."""
    if not isinstance(data, dict):
        raise QuestionValidationError("Question payload must be an object")
    return {_API_KEYS[k]: v for k, v in data.items() if k in _API_KEYS}


def validate_question_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a complete question payload.

    Args:
        data: Stored-field dict (see ``normalize_question_payload``)

    Returns:
        Cleaned field dict. ``conditional_logic`` is passed through untouched;
        it is parsed once the question id is known (legacy rules refer to the
        owning question).

    Raises:
        QuestionValidationError: If a required field is missing or malformed
    """
    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        raise QuestionValidationError("text is required", field="text")

    try:
        qtype = QuestionType(data.get("type"))
    except ValueError:
        valid = ", ".join(t.value for t in QuestionType)
        raise QuestionValidationError(f"type must be one of: {valid}", field="type")

    order = data.get("order")
    if isinstance(order, str) and order.strip().lstrip("-").isdigit():
        order = int(order.strip())
    if not isinstance(order, int) or isinstance(order, bool):
        raise QuestionValidationError("order must be an integer", field="order")

    options: Optional[List[str]] = None
    if qtype in (QuestionType.MULTIPLE_CHOICE, QuestionType.CHECKBOX_MULTIPLE):
        options = _parse_options(data.get("options"))
        if not options:
            raise QuestionValidationError(f"{qtype.value} questions need at least one option", field="options")
    elif qtype == QuestionType.YES_NO:
        options = _parse_options(data.get("options")) or list(YES_NO_OPTIONS)

    depends_on = data.get("depends_on")
    if depends_on is not None and not isinstance(depends_on, Dependency):
        depends_on = Dependency.from_dict(depends_on)

    return {
        "text": text.strip(),
        "type": qtype,
        "order": order,
        "options": options,
        "depends_on": depends_on,
        "placeholder": _optional_str(data.get("placeholder"), "placeholder"),
        "prefix": _optional_str(data.get("prefix"), "prefix"),
        "suffix": _optional_str(data.get("suffix"), "suffix"),
        "category": _optional_str(data.get("category"), "category"),
        "conditional_logic": data.get("conditional_logic"),
    }


def question_fields(question: Question) -> Dict[str, Any]:
    """Stored fields of an existing question, for merging partial updates."""
    return {
        "text": question.text,
        "type": question.type,
        "order": question.order,
        "options": question.options,
        "depends_on": question.depends_on,
        "placeholder": question.placeholder,
        "prefix": question.prefix,
        "suffix": question.suffix,
        "category": question.category,
        "conditional_logic": question.conditional_logic,
    }


def sort_questions(questions: List[Question]) -> List[Question]:
    """Presentation order: ascending ``order``, ties broken by id."""
    return sorted(questions, key=lambda q: (q.order, q.id))
