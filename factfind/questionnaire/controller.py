"""
Questionnaire Controller - drives one respondent through the fact-find.

State machine:

    INTRO --start--> PRESENTING(i) --submit--> PRESENTING(j) ... --> COMPLETE

``go_previous`` / ``go_next`` move between visible questions without
answering. COMPLETE is terminal.

The controller works on a snapshot of the question list taken when it is
built; edits made by an admin afterwards do not affect a running traversal.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from ..errors import AnswerValidationError, PersistenceError, QuestionnaireStateError
from ..export.summary import SummaryItem, build_summary
from ..schemas.conditional_logic import EndForm, SkipTo
from ..schemas.questions import YES_NO_OPTIONS, Question, QuestionType, sort_questions
from .resolver import (
    DependencyPolicy,
    first_visible_index,
    is_visible,
    next_visible_index,
    prev_visible_index,
    visible_questions,
)
from .tracker import Answer, AnswerTracker

logger = logging.getLogger(__name__)

NOT_PROVIDED = "Not provided"

SaveAnswer = Callable[[Any, int, str], Any]


class ControllerState(str, Enum):
    INTRO = "intro"
    PRESENTING = "presenting"
    COMPLETE = "complete"


@dataclass
class SubmitResult:
    """Outcome of an accepted submit."""
    answer: Answer
    state: ControllerState
    index: Optional[int]
    next_question: Optional[Question]
    persistence_error: Optional[PersistenceError] = None
    rule_applied: Optional[str] = None

    @property
    def persisted(self) -> bool:
        return self.persistence_error is None


# =============================================================================
# ANSWER SHAPING
# =============================================================================

def _match_option(value: str, options: Sequence[str]) -> Optional[str]:
    """Return the configured label matching ``value`` (case-insensitive)."""
    wanted = value.strip().lower()
    for option in options:
        if option.strip().lower() == wanted:
            return option
    return None


def _shape_number(question: Question, raw: Any) -> str:
    if isinstance(raw, bool) or raw is None:
        return NOT_PROVIDED
    if isinstance(raw, (int, float)):
        return str(raw) if math.isfinite(raw) else NOT_PROVIDED
    text = str(raw).strip()
    for affix in (question.prefix, question.suffix):
        if affix:
            text = text.replace(affix, "")
    text = text.replace(",", "").strip()
    if not text:
        return NOT_PROVIDED
    try:
        number = float(text)
    except ValueError:
        return NOT_PROVIDED
    if not math.isfinite(number):
        return NOT_PROVIDED
    return text


def _shape_date(raw: Any) -> str:
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    text = str(raw).strip() if raw is not None else ""
    if not text:
        return NOT_PROVIDED
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        return NOT_PROVIDED


def shape_answer(question: Question, raw: Any) -> str:
    """
    Validate and normalise a raw answer for ``question``.

    text, number and date soft-fail to "Not provided". Choice types are
    rejected when the selection is not one of the configured options.

    Raises:
        AnswerValidationError: For an invalid choice-type answer
    """
    qtype = question.type

    if qtype == QuestionType.TEXT:
        text = str(raw).strip() if raw is not None else ""
        return text or NOT_PROVIDED

    if qtype == QuestionType.NUMBER:
        return _shape_number(question, raw)

    if qtype == QuestionType.DATE:
        return _shape_date(raw)

    if qtype == QuestionType.YES_NO:
        if isinstance(raw, bool):
            raw = "Yes" if raw else "No"
        options = question.options or YES_NO_OPTIONS
        label = _match_option(raw, options) if isinstance(raw, str) else None
        if label is None:
            raise AnswerValidationError(question.id, "Please choose Yes or No")
        return label

    if qtype == QuestionType.MULTIPLE_CHOICE:
        label = _match_option(raw, question.options or []) if isinstance(raw, str) else None
        if label is None:
            raise AnswerValidationError(question.id, "Please select one of the available options")
        return label

    if qtype == QuestionType.CHECKBOX_MULTIPLE:
        if isinstance(raw, str):
            raw = [raw] if raw.strip() else []
        if not isinstance(raw, (list, tuple)) or not raw:
            raise AnswerValidationError(question.id, "Please select at least one option")
        chosen: List[str] = []
        for item in raw:
            label = _match_option(item, question.options or []) if isinstance(item, str) else None
            if label is None:
                raise AnswerValidationError(question.id, f"'{item}' is not one of the available options")
            if label not in chosen:
                chosen.append(label)
        return ", ".join(chosen)

    raise AnswerValidationError(question.id, f"Unsupported question type: {qtype}")


# =============================================================================
# CONTROLLER
# =============================================================================

class QuestionnaireController:
    """
    One respondent's traversal of the fact-find.

    Usage:
        controller = QuestionnaireController(storage.list_questions(), session_id=7,
                                             save_answer=storage.save_answer)
        controller.start()
        result = controller.submit("Yes")
    """

    def __init__(
        self,
        questions: Iterable[Question],
        session_id: Any = None,
        save_answer: Optional[SaveAnswer] = None,
        policy: DependencyPolicy = DependencyPolicy.LITERAL,
        tracker: Optional[AnswerTracker] = None,
    ):
        self.questions: tuple = tuple(sort_questions(list(questions)))
        self.session_id = session_id
        self.save_answer = save_answer
        self.policy = policy
        self.tracker = tracker or AnswerTracker()
        self.state = ControllerState.INTRO
        self.current_index: Optional[int] = None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def current_question(self) -> Optional[Question]:
        if self.state != ControllerState.PRESENTING or self.current_index is None:
            return None
        return self.questions[self.current_index]

    @property
    def is_complete(self) -> bool:
        return self.state == ControllerState.COMPLETE

    @property
    def can_go_previous(self) -> bool:
        if self.state != ControllerState.PRESENTING:
            return False
        return self._prev_index() is not None

    @property
    def can_go_next(self) -> bool:
        if self.state != ControllerState.PRESENTING:
            return False
        return self._next_index() is not None

    def visible_questions(self) -> List[Question]:
        return visible_questions(self.questions, self.tracker.as_mapping(), self.policy)

    def summary(self) -> List[SummaryItem]:
        """Answers in first-answered order, joined to question text."""
        return build_summary(self.questions, self.tracker.all_answers())

    def to_dict(self) -> dict:
        question = self.current_question
        answers = self.tracker.as_mapping()
        return {
            "sessionId": self.session_id,
            "state": self.state.value,
            "index": self.current_index,
            "question": question.to_dict() if question else None,
            "currentAnswer": answers.get(question.id) if question else None,
            "canGoPrevious": self.can_go_previous,
            "canGoNext": self.can_go_next,
            "answered": len(self.tracker),
            "visibleCount": len(self.visible_questions()),
            "answers": [a.to_dict() for a in self.tracker.all_answers()],
        }

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def start(self) -> Optional[Question]:
        """INTRO -> first visible question (or COMPLETE if none is visible)."""
        if self.state != ControllerState.INTRO:
            raise QuestionnaireStateError(f"Questionnaire already {self.state.value}")
        index = first_visible_index(self.questions, self.tracker.as_mapping(), self.policy)
        self._move_to(index)
        return self.current_question

    def submit(self, raw_value: Any) -> SubmitResult:
        """
        Answer the current question and advance.

        Raises:
            QuestionnaireStateError: If no question is being presented
            AnswerValidationError: If a choice-type answer is invalid; nothing
                is recorded or persisted in that case
        """
        question = self.current_question
        if question is None:
            raise QuestionnaireStateError(f"No question to answer (state: {self.state.value})")

        value = shape_answer(question, raw_value)
        self.tracker.record_answer(question.id, value)
        persistence_error = self._persist(question.id, value)

        target, rule_applied = self._advance_from(self.current_index)
        self._move_to(target)
        return SubmitResult(
            answer=Answer(question.id, value),
            state=self.state,
            index=self.current_index,
            next_question=self.current_question,
            persistence_error=persistence_error,
            rule_applied=rule_applied,
        )

    def go_previous(self) -> bool:
        """Step back to the previous visible question. Returns False if there is none."""
        if self.state != ControllerState.PRESENTING:
            return False
        index = self._prev_index()
        if index is None:
            return False
        self.current_index = index
        return True

    def go_next(self) -> bool:
        """
        Step forward to the next visible question without answering.

        Never completes the traversal; returns False when there is nothing
        further to show.
        """
        if self.state != ControllerState.PRESENTING:
            return False
        index = self._next_index()
        if index is None:
            return False
        self.current_index = index
        return True

    @classmethod
    def resume(
        cls,
        questions: Iterable[Question],
        stored_answers: Iterable,
        session_id: Any = None,
        save_answer: Optional[SaveAnswer] = None,
        policy: DependencyPolicy = DependencyPolicy.LITERAL,
    ) -> "QuestionnaireController":
        """
        Rebuild a controller from persisted answers after a reload.

        With no stored answers the controller is left in INTRO. Otherwise the
        answered path is replayed from the first visible question, applying
        each answered question's conditional logic as ``submit`` does. The
        controller presents the first unanswered question on that path, or
        is COMPLETE when the path ends (including through an end-form rule).
        """
        tracker = AnswerTracker()
        tracker.reconcile(stored_answers)
        controller = cls(questions, session_id=session_id, save_answer=save_answer,
                         policy=policy, tracker=tracker)
        if not len(tracker):
            return controller

        index = first_visible_index(controller.questions, tracker.as_mapping(), policy)
        while index is not None and controller.questions[index].id in tracker:
            index, _ = controller._advance_from(index)
        controller._move_to(index)
        return controller

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _advance_from(self, index: int) -> Tuple[Optional[int], Optional[str]]:
        """
        Where the traversal goes after the question at ``index`` is answered.

        Returns:
            (target index or None for COMPLETE, description of the rule applied)
        """
        question = self.questions[index]
        answers = self.tracker.as_mapping()
        target = next_visible_index(self.questions, index, answers, self.policy)
        logic = question.conditional_logic
        if logic is None or not logic.condition.holds(answers):
            return target, None

        consequence = logic.consequence
        if isinstance(consequence, EndForm):
            return None, logic.describe()
        if isinstance(consequence, SkipTo):
            skip_index = self._index_of(consequence.question_id)
            if skip_index is not None and skip_index > index and self._visible_at(skip_index):
                return skip_index, logic.describe()
            logger.info("Skip target Q%s not reachable from Q%s, continuing in order",
                        consequence.question_id, question.id)
        return target, None

    def _next_index(self) -> Optional[int]:
        return next_visible_index(self.questions, self.current_index, self.tracker.as_mapping(), self.policy)

    def _prev_index(self) -> Optional[int]:
        return prev_visible_index(self.questions, self.current_index, self.tracker.as_mapping(), self.policy)

    def _index_of(self, question_id: int) -> Optional[int]:
        for index, question in enumerate(self.questions):
            if question.id == question_id:
                return index
        return None

    def _visible_at(self, index: int) -> bool:
        return is_visible(self.questions[index], self.tracker.as_mapping(), self.questions, self.policy)

    def _move_to(self, index: Optional[int]) -> None:
        if index is None:
            self.state = ControllerState.COMPLETE
            self.current_index = None
            logger.info("Questionnaire complete for session %s (%d answers)",
                        self.session_id, len(self.tracker))
        else:
            self.state = ControllerState.PRESENTING
            self.current_index = index

    def _persist(self, question_id: int, value: str) -> Optional[PersistenceError]:
        if self.save_answer is None:
            return None
        try:
            self.save_answer(self.session_id, question_id, value)
        except PersistenceError as e:
            logger.warning("Answer to Q%s for session %s not saved: %s",
                           question_id, self.session_id, e)
            return e
        return None
