"""
Conditional logic attached to a question by an admin.

The admin editor historically saved a free-form ``{"if": ..., "then": ...}``
object. Here it is parsed once, at save time, into a tagged variant:

    Condition   = Equals | Contains | IsYes | IsNo
    Consequence = Show | SkipTo | EndForm

Anything that does not parse is rejected with ConditionalLogicError, so the
questionnaire controller only ever sees well-formed logic.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Union

from ..errors import ConditionalLogicError
from .values import as_answer_text


_QUESTION_REF = re.compile(r"^[Qq]?(\d+)$")


def _question_ref(value: Any, what: str) -> int:
    """Accept 12, "12" or "Q12" as a question reference."""
    if isinstance(value, bool):
        raise ConditionalLogicError(f"{what} must be a question id")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        match = _QUESTION_REF.match(value.strip())
        if match:
            return int(match.group(1))
    raise ConditionalLogicError(f"{what} must be a question id, got {value!r}")


# =============================================================================
# CONDITIONS
# =============================================================================

@dataclass(frozen=True)
class Equals:
    question_id: int
    value: str
    kind: ClassVar[str] = "equals"

    def holds(self, answers: Mapping[int, Any]) -> bool:
        if self.question_id not in answers:
            return False
        return as_answer_text(answers[self.question_id]) == self.value

    def to_dict(self) -> dict:
        return {"kind": self.kind, "questionId": self.question_id, "value": self.value}

    def describe(self) -> str:
        return f"Q{self.question_id} equals '{self.value}'"


@dataclass(frozen=True)
class Contains:
    question_id: int
    substring: str
    kind: ClassVar[str] = "contains"

    def holds(self, answers: Mapping[int, Any]) -> bool:
        if self.question_id not in answers:
            return False
        return self.substring.lower() in as_answer_text(answers[self.question_id]).lower()

    def to_dict(self) -> dict:
        return {"kind": self.kind, "questionId": self.question_id, "substring": self.substring}

    def describe(self) -> str:
        return f"Q{self.question_id} contains '{self.substring}'"


@dataclass(frozen=True)
class IsYes:
    question_id: int
    kind: ClassVar[str] = "is_yes"

    def holds(self, answers: Mapping[int, Any]) -> bool:
        return self.question_id in answers and as_answer_text(answers[self.question_id]) == "Yes"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "questionId": self.question_id}

    def describe(self) -> str:
        return f"Q{self.question_id} is Yes"


@dataclass(frozen=True)
class IsNo:
    question_id: int
    kind: ClassVar[str] = "is_no"

    def holds(self, answers: Mapping[int, Any]) -> bool:
        return self.question_id in answers and as_answer_text(answers[self.question_id]) == "No"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "questionId": self.question_id}

    def describe(self) -> str:
        return f"Q{self.question_id} is No"


Condition = Union[Equals, Contains, IsYes, IsNo]


# =============================================================================
# CONSEQUENCES
# =============================================================================

@dataclass(frozen=True)
class Show:
    kind: ClassVar[str] = "show"

    def to_dict(self) -> dict:
        return {"kind": self.kind}

    def describe(self) -> str:
        return "show next question"


@dataclass(frozen=True)
class SkipTo:
    question_id: int
    kind: ClassVar[str] = "skip_to"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "questionId": self.question_id}

    def describe(self) -> str:
        return f"skip to Q{self.question_id}"


@dataclass(frozen=True)
class EndForm:
    kind: ClassVar[str] = "end_form"

    def to_dict(self) -> dict:
        return {"kind": self.kind}

    def describe(self) -> str:
        return "end form"


Consequence = Union[Show, SkipTo, EndForm]


@dataclass(frozen=True)
class ConditionalLogic:
    """A validated condition → consequence rule."""
    condition: Condition
    consequence: Consequence

    def to_dict(self) -> dict:
        return {
            "condition": self.condition.to_dict(),
            "consequence": self.consequence.to_dict(),
        }

    def describe(self) -> str:
        return f"If {self.condition.describe()} → {self.consequence.describe()}"

    def referenced_question_ids(self) -> List[int]:
        ids = [self.condition.question_id]
        if isinstance(self.consequence, SkipTo):
            ids.append(self.consequence.question_id)
        return ids


# =============================================================================
# PARSING
# =============================================================================

def _parse_condition(data: Dict[str, Any]) -> Condition:
    kind = str(data.get("kind", "")).strip().lower()
    question_id = _question_ref(data.get("questionId"), "condition.questionId")

    if kind == Equals.kind:
        if "value" not in data:
            raise ConditionalLogicError("equals condition needs a value")
        return Equals(question_id, as_answer_text(data["value"]))
    if kind == Contains.kind:
        substring = data.get("substring")
        if not isinstance(substring, str) or not substring:
            raise ConditionalLogicError("contains condition needs a non-empty substring")
        return Contains(question_id, substring)
    if kind == IsYes.kind:
        return IsYes(question_id)
    if kind == IsNo.kind:
        return IsNo(question_id)
    raise ConditionalLogicError(f"Unknown condition kind: {kind!r}")


def _parse_consequence(data: Dict[str, Any]) -> Consequence:
    kind = str(data.get("kind", "")).strip().lower()
    if kind == Show.kind:
        return Show()
    if kind == SkipTo.kind:
        return SkipTo(_question_ref(data.get("questionId"), "consequence.questionId"))
    if kind == EndForm.kind:
        return EndForm()
    raise ConditionalLogicError(f"Unknown consequence kind: {kind!r}")


def _parse_legacy(data: Dict[str, Any], owner_id: Optional[int]) -> ConditionalLogic:
    """Parse the admin editor's ``{"if": {type, answer}, "then": {action, target}}``."""
    rule_if = data.get("if")
    rule_then = data.get("then")
    if not isinstance(rule_if, dict) or not isinstance(rule_then, dict):
        raise ConditionalLogicError("Legacy logic needs 'if' and 'then' objects")

    # Legacy rules are evaluated against the answer of the question they sit on
    source = rule_if.get("questionId", owner_id)
    if source is None:
        raise ConditionalLogicError("Condition has no question to evaluate against")
    question_id = _question_ref(source, "if.questionId")

    cond_type = str(rule_if.get("type", "")).strip().lower()
    answer = rule_if.get("answer")
    if cond_type == "equals":
        if answer is None or answer == "":
            raise ConditionalLogicError("equals condition needs an answer")
        condition: Condition = Equals(question_id, as_answer_text(answer))
    elif cond_type == "contains":
        if not isinstance(answer, str) or not answer:
            raise ConditionalLogicError("contains condition needs an answer")
        condition = Contains(question_id, answer)
    elif cond_type == "yes":
        condition = IsYes(question_id)
    elif cond_type == "no":
        condition = IsNo(question_id)
    else:
        raise ConditionalLogicError(f"Unknown condition type: {cond_type!r}")

    action = str(rule_then.get("action") or "show").strip().lower()
    if action == "show":
        consequence: Consequence = Show()
    elif action == "skip":
        consequence = SkipTo(_question_ref(rule_then.get("target"), "then.target"))
    elif action == "end":
        consequence = EndForm()
    else:
        raise ConditionalLogicError(f"Unknown action: {action!r}")

    return ConditionalLogic(condition, consequence)


def parse_conditional_logic(raw: Any, owner_id: Optional[int] = None) -> Optional[ConditionalLogic]:
    """
    Parse stored or submitted conditional logic.

    Args:
        raw: None, a JSON string, or a dict in canonical or legacy shape
        owner_id: ID of the question carrying the logic (legacy conditions
            refer to it implicitly)

    Returns:
        ConditionalLogic, or None when no logic is configured

    Raises:
        ConditionalLogicError: If the logic is malformed
    """
    if raw is None or raw == "" or raw == {}:
        return None
    if isinstance(raw, ConditionalLogic):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ConditionalLogicError(f"Conditional logic is not valid JSON: {e}") from e
        if raw is None:
            return None
    if not isinstance(raw, dict):
        raise ConditionalLogicError("Conditional logic must be an object")

    if "condition" in raw or "consequence" in raw:
        condition = raw.get("condition")
        consequence = raw.get("consequence")
        if not isinstance(condition, dict) or not isinstance(consequence, dict):
            raise ConditionalLogicError("'condition' and 'consequence' must both be objects")
        return ConditionalLogic(_parse_condition(condition), _parse_consequence(consequence))

    if "if" in raw or "then" in raw:
        return _parse_legacy(raw, owner_id)

    raise ConditionalLogicError("Unrecognised conditional logic shape")
