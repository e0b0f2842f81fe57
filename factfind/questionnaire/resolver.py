"""
Dependency Resolver - decides which questions are visible.

A question with ``depends_on = {question_id: q, value: v}`` is visible only
when the answer recorded for ``q`` equals ``v`` (booleans compared as
"Yes"/"No"). Everything here is a pure function of the ordered question list
and the answer mapping.

Two policies are supported:

    LITERAL     the single-level check above (default)
    TRANSITIVE  the literal check must hold AND the question depended on must
                itself be visible; cycles and dangling references are hidden

Under either policy a reference to a question that is not in the list, or
that has not been answered, hides the dependent question. Nothing looks
ahead: a dependency on a later-ordered question cannot be satisfied during a
forward pass.
"""

from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Set

from ..schemas.questions import Question
from ..schemas.values import as_answer_text


class DependencyPolicy(str, Enum):
    LITERAL = "literal"
    TRANSITIVE = "transitive"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "DependencyPolicy":
        try:
            return cls((name or cls.LITERAL.value).strip().lower())
        except ValueError:
            return cls.LITERAL


def _index_by_id(questions: Sequence[Question]) -> Dict[int, Question]:
    return {q.id: q for q in questions}


def _literal_holds(question: Question, answers: Mapping[int, str]) -> bool:
    dep = question.depends_on
    if dep is None:
        return True
    if dep.question_id not in answers:
        return False
    return as_answer_text(answers[dep.question_id]) == as_answer_text(dep.value)


def is_visible(
    question: Question,
    answers: Mapping[int, str],
    questions: Optional[Sequence[Question]] = None,
    policy: DependencyPolicy = DependencyPolicy.LITERAL,
) -> bool:
    """
    Check whether a question may be presented.

    Args:
        question: Question to check
        answers: Answer mapping (question id -> value)
        questions: Active question list. When given, a dependency on a
            question missing from it is treated as not visible.
        policy: Dependency policy

    Returns:
        True if the question is visible
    """
    by_id = _index_by_id(questions) if questions is not None else None
    return _is_visible(question, answers, by_id, policy)


def _is_visible(
    question: Question,
    answers: Mapping[int, str],
    by_id: Optional[Dict[int, Question]],
    policy: DependencyPolicy,
) -> bool:
    if policy == DependencyPolicy.LITERAL:
        if question.depends_on and by_id is not None and question.depends_on.question_id not in by_id:
            return False
        return _literal_holds(question, answers)

    # Transitive: walk up the chain, every link must hold
    seen: Set[int] = set()
    current = question
    while current.depends_on is not None:
        if current.id in seen:
            return False
        seen.add(current.id)
        if not _literal_holds(current, answers):
            return False
        if by_id is None:
            # Without the list the chain cannot be followed past one link
            return True
        parent = by_id.get(current.depends_on.question_id)
        if parent is None:
            return False
        current = parent
    return True


def next_visible_index(
    ordered: Sequence[Question],
    from_index: int,
    answers: Mapping[int, str],
    policy: DependencyPolicy = DependencyPolicy.LITERAL,
) -> Optional[int]:
    """First visible index strictly after ``from_index``, or None."""
    by_id = _index_by_id(ordered)
    for index in range(max(from_index + 1, 0), len(ordered)):
        if _is_visible(ordered[index], answers, by_id, policy):
            return index
    return None


def prev_visible_index(
    ordered: Sequence[Question],
    from_index: int,
    answers: Mapping[int, str],
    policy: DependencyPolicy = DependencyPolicy.LITERAL,
) -> Optional[int]:
    """Last visible index strictly before ``from_index``, or None."""
    by_id = _index_by_id(ordered)
    for index in range(min(from_index - 1, len(ordered) - 1), -1, -1):
        if _is_visible(ordered[index], answers, by_id, policy):
            return index
    return None


def first_visible_index(
    ordered: Sequence[Question],
    answers: Mapping[int, str],
    policy: DependencyPolicy = DependencyPolicy.LITERAL,
) -> Optional[int]:
    return next_visible_index(ordered, -1, answers, policy)


def visible_questions(
    ordered: Sequence[Question],
    answers: Mapping[int, str],
    policy: DependencyPolicy = DependencyPolicy.LITERAL,
) -> List[Question]:
    """The visible subsequence, in presentation order."""
    by_id = _index_by_id(ordered)
    return [q for q in ordered if _is_visible(q, answers, by_id, policy)]


def find_dependency_cycle(questions: Sequence[Question]) -> Optional[List[int]]:
    """
    Find a cycle in the ``depends_on`` relation.

    Each question has at most one outgoing edge, so following the chain from
    every start is enough.

    Returns:
        Question ids forming the cycle, starting and ending with the same id
        (e.g. ``[3, 5, 3]``), or None when the relation is acyclic
    """
    by_id = _index_by_id(questions)
    cleared: Set[int] = set()

    for start in questions:
        path: List[int] = []
        on_path: Dict[int, int] = {}
        current: Optional[Question] = start
        while current is not None and current.id not in cleared:
            if current.id in on_path:
                cycle = path[on_path[current.id]:]
                return cycle + [current.id]
            on_path[current.id] = len(path)
            path.append(current.id)
            dep = current.depends_on
            current = by_id.get(dep.question_id) if dep else None
        cleared.update(path)
    return None
