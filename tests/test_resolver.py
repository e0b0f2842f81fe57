"""
Tests for question visibility: dependency policies, index navigation and
cycle detection.
"""

import pytest

from factfind.questionnaire import (
    DependencyPolicy,
    find_dependency_cycle,
    first_visible_index,
    is_visible,
    next_visible_index,
    prev_visible_index,
    visible_questions,
)
from factfind.schemas import YES_NO_OPTIONS, Dependency, Question, QuestionType


def _q(qid, order=None, qtype=QuestionType.TEXT, depends_on=None, options=None):
    return Question(
        id=qid,
        text=f"Question {qid}",
        type=qtype,
        order=qid if order is None else order,
        options=options,
        depends_on=Dependency(*depends_on) if depends_on else None,
    )


def _children_questions():
    """Q1 children? -> Q2 how many (if Yes) -> Q3 ages (if Q2 == '2'), Q4 always."""
    return [
        _q(1, qtype=QuestionType.MULTIPLE_CHOICE, options=YES_NO_OPTIONS),
        _q(2, qtype=QuestionType.NUMBER, depends_on=(1, "Yes")),
        _q(3, depends_on=(2, "2")),
        _q(4),
    ]


# ═══════════════════════════════════════════════════════════════
# VISIBILITY
# ═══════════════════════════════════════════════════════════════

class TestIsVisible:
    def test_no_dependency_is_visible(self):
        assert is_visible(_q(1), {})

    def test_unanswered_dependency_hides_question(self):
        questions = _children_questions()
        assert not is_visible(questions[1], {}, questions)

    def test_matching_answer_shows_question(self):
        questions = _children_questions()
        assert is_visible(questions[1], {1: "Yes"}, questions)

    def test_other_answer_hides_question(self):
        questions = _children_questions()
        assert not is_visible(questions[1], {1: "No"}, questions)

    def test_comparison_is_exact(self):
        questions = _children_questions()
        assert not is_visible(questions[1], {1: "yes"}, questions)

    def test_boolean_dependency_matches_yes(self):
        parent = _q(1, qtype=QuestionType.YES_NO, options=YES_NO_OPTIONS)
        child = _q(2, depends_on=(1, True))
        assert is_visible(child, {1: "Yes"}, [parent, child])
        assert not is_visible(child, {1: "No"}, [parent, child])

    def test_dangling_dependency_is_hidden(self):
        child = _q(2, depends_on=(99, "Yes"))
        assert not is_visible(child, {99: "Yes"}, [child])

    def test_dangling_dependency_without_list_uses_answers(self):
        child = _q(2, depends_on=(99, "Yes"))
        assert is_visible(child, {99: "Yes"})


class TestDependencyPolicy:
    def test_literal_ignores_hidden_parent(self):
        questions = _children_questions()
        # Q2 was answered "2", then Q1 changed to "No"
        answers = {1: "No", 2: "2"}
        assert not is_visible(questions[1], answers, questions)
        assert is_visible(questions[2], answers, questions, DependencyPolicy.LITERAL)

    def test_transitive_requires_visible_parent(self):
        questions = _children_questions()
        answers = {1: "No", 2: "2"}
        assert not is_visible(questions[2], answers, questions, DependencyPolicy.TRANSITIVE)

    def test_transitive_visible_when_chain_holds(self):
        questions = _children_questions()
        answers = {1: "Yes", 2: "2"}
        assert is_visible(questions[2], answers, questions, DependencyPolicy.TRANSITIVE)

    def test_transitive_cycle_is_hidden(self):
        questions = [_q(1, depends_on=(2, "a")), _q(2, depends_on=(1, "a"))]
        answers = {1: "a", 2: "a"}
        assert not is_visible(questions[0], answers, questions, DependencyPolicy.TRANSITIVE)

    def test_from_name(self):
        assert DependencyPolicy.from_name("transitive") is DependencyPolicy.TRANSITIVE
        assert DependencyPolicy.from_name(" LITERAL ") is DependencyPolicy.LITERAL
        assert DependencyPolicy.from_name(None) is DependencyPolicy.LITERAL
        assert DependencyPolicy.from_name("bogus") is DependencyPolicy.LITERAL


# ═══════════════════════════════════════════════════════════════
# NAVIGATION
# ═══════════════════════════════════════════════════════════════

class TestNavigation:
    def test_first_visible_skips_hidden(self):
        questions = [_q(1, depends_on=(9, "x")), _q(2)]
        assert first_visible_index(questions, {}) == 1

    def test_first_visible_none_when_all_hidden(self):
        questions = [_q(1, depends_on=(9, "x"))]
        assert first_visible_index(questions, {}) is None

    def test_next_skips_dependent_branch(self):
        questions = _children_questions()
        assert next_visible_index(questions, 0, {1: "No"}) == 3

    def test_next_enters_dependent_branch(self):
        questions = _children_questions()
        assert next_visible_index(questions, 0, {1: "Yes"}) == 1

    def test_next_none_at_end(self):
        questions = _children_questions()
        assert next_visible_index(questions, 3, {1: "No"}) is None

    def test_prev_skips_hidden(self):
        questions = _children_questions()
        assert prev_visible_index(questions, 3, {1: "No"}) == 0

    def test_prev_none_at_start(self):
        questions = _children_questions()
        assert prev_visible_index(questions, 0, {}) is None

    def test_visible_questions(self):
        questions = _children_questions()
        visible = visible_questions(questions, {1: "Yes", 2: "3"})
        assert [q.id for q in visible] == [1, 2, 4]

    def test_no_look_ahead(self):
        # Depends on a later question: can never be satisfied going forward
        questions = [_q(1, depends_on=(2, "x")), _q(2)]
        assert first_visible_index(questions, {}) == 1


ANSWER_SETS = [
    {},
    {1: "No"},
    {1: "Yes"},
    {1: "Yes", 2: "2"},
    {1: "Yes", 2: "3"},
    {1: "No", 2: "2"},
]


def _walk_forward(questions, answers, policy):
    indices = []
    index = next_visible_index(questions, -1, answers, policy)
    while index is not None:
        indices.append(index)
        index = next_visible_index(questions, index, answers, policy)
    return indices


@pytest.mark.parametrize("policy", list(DependencyPolicy))
@pytest.mark.parametrize("answers", ANSWER_SETS)
class TestNavigationProperties:
    def test_forward_walk_matches_visible_questions(self, answers, policy):
        questions = _children_questions()
        walked = [questions[i].id for i in _walk_forward(questions, answers, policy)]
        assert walked == [q.id for q in visible_questions(questions, answers, policy)]

    def test_forward_walk_ends_at_none(self, answers, policy):
        questions = _children_questions()
        indices = _walk_forward(questions, answers, policy)
        last = indices[-1] if indices else -1
        assert next_visible_index(questions, last, answers, policy) is None

    def test_previous_undoes_next(self, answers, policy):
        questions = _children_questions()
        indices = _walk_forward(questions, answers, policy)
        for before, after in zip(indices, indices[1:]):
            assert prev_visible_index(questions, after, answers, policy) == before
        if indices:
            assert prev_visible_index(questions, indices[0], answers, policy) is None


# ═══════════════════════════════════════════════════════════════
# CYCLES
# ═══════════════════════════════════════════════════════════════

class TestFindDependencyCycle:
    def test_acyclic(self):
        assert find_dependency_cycle(_children_questions()) is None

    def test_two_question_cycle(self):
        questions = [_q(1, depends_on=(2, "a")), _q(2, depends_on=(1, "a"))]
        assert find_dependency_cycle(questions) == [1, 2, 1]

    def test_longer_cycle_reported_from_entry(self):
        questions = [
            _q(1, depends_on=(2, "a")),
            _q(2, depends_on=(3, "a")),
            _q(3, depends_on=(2, "a")),
        ]
        assert find_dependency_cycle(questions) == [2, 3, 2]

    def test_dangling_reference_is_not_a_cycle(self):
        assert find_dependency_cycle([_q(1, depends_on=(7, "a"))]) is None
