"""
Conditional questionnaire engine.
"""

from .controller import (
    NOT_PROVIDED,
    ControllerState,
    QuestionnaireController,
    SubmitResult,
    shape_answer,
)
from .resolver import (
    DependencyPolicy,
    find_dependency_cycle,
    first_visible_index,
    is_visible,
    next_visible_index,
    prev_visible_index,
    visible_questions,
)
from .tracker import Answer, AnswerTracker

__all__ = [
    "NOT_PROVIDED",
    "ControllerState",
    "QuestionnaireController",
    "SubmitResult",
    "shape_answer",
    "DependencyPolicy",
    "find_dependency_cycle",
    "first_visible_index",
    "is_visible",
    "next_visible_index",
    "prev_visible_index",
    "visible_questions",
    "Answer",
    "AnswerTracker",
]
