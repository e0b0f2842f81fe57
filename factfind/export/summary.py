"""
Question/answer summary handed to the export collaborators.
"""

from dataclasses import dataclass, field
from datetime import datetime
from html import escape
from typing import Iterable, List, Optional, Sequence

from ..schemas.questions import Question

UNKNOWN_QUESTION = "Unknown Question"


@dataclass(frozen=True)
class SummaryItem:
    question: str
    answer: str

    def to_dict(self) -> dict:
        return {"question": self.question, "answer": self.answer}


@dataclass
class FactFindDocument:
    """Everything needed to render one completed fact-find."""
    session_id: int
    items: List[SummaryItem]
    client_name: str = ""
    client_email: str = ""
    completed_at: Optional[datetime] = None
    signature_data: Optional[str] = None
    title: str = "Insurance Fact Find"
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def display_date(self) -> str:
        return (self.completed_at or self.generated_at).strftime("%d/%m/%Y")


def build_summary(questions: Sequence[Question], answers: Iterable) -> List[SummaryItem]:
    """
    Join answers to question text.

    Args:
        questions: Questions to look text up in (any order)
        answers: Answers in presentation order; anything with ``question_id``
            and ``value``

    Returns:
        One SummaryItem per answer, same order as ``answers``
    """
    text_by_id = {q.id: q.text for q in questions}
    return [
        SummaryItem(text_by_id.get(a.question_id, UNKNOWN_QUESTION), a.value)
        for a in answers
    ]


def summary_html(items: Iterable[SummaryItem]) -> str:
    """HTML fragment used for the ``{{summary}}`` email placeholder."""
    return "".join(
        f"<p><strong>{escape(item.question)}</strong>: {escape(item.answer)}</p>"
        for item in items
    )
