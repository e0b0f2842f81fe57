"""
Session/Answer Tracker - the in-progress answers of one respondent.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional


@dataclass(frozen=True)
class Answer:
    question_id: int
    value: str

    def to_dict(self) -> dict:
        return {"questionId": self.question_id, "value": self.value}


class AnswerTracker:
    """
    Answers keyed by question id, last write wins.

    Values are stored as given; shaping them per question type is the
    controller's job. An answer for a question id that is not in the active
    question list is accepted without complaint.
    """

    def __init__(self, answers: Optional[Iterable[Answer]] = None):
        # dicts keep first-insertion order, and overwriting a key keeps its slot
        self._answers: Dict[int, str] = {}
        if answers:
            self.reconcile(answers)

    def record_answer(self, question_id: int, value: str) -> None:
        self._answers[question_id] = value

    def all_answers(self) -> List[Answer]:
        """Answers in the order their question was first answered."""
        return [Answer(qid, value) for qid, value in self._answers.items()]

    def reconcile(self, stored_answers: Iterable) -> None:
        """
        Merge persisted answers, replacing or appending by question id.

        Accepts tracker ``Answer`` objects or stored records (anything with
        ``question_id`` and ``value`` attributes).
        """
        for answer in stored_answers:
            self._answers[answer.question_id] = answer.value

    def as_mapping(self) -> Dict[int, str]:
        return dict(self._answers)

    def get(self, question_id: int, default: Optional[str] = None) -> Optional[str]:
        return self._answers.get(question_id, default)

    def __len__(self) -> int:
        return len(self._answers)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._answers
