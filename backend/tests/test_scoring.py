"""
Quiz scoring and attempt lifecycle rules.

The arithmetic examples are pinned: rounding half-up at two decimals and the
ceiling for passing points must not drift with float artefacts.
"""
from __future__ import annotations

import pytest

from backend.assessment.scoring import (
    AttemptStatus,
    apply_grades,
    calculate_quiz_score,
    ensure_can_grade,
    ensure_can_submit,
    ensure_transition,
    evaluate_answer,
    evaluate_submission,
    next_attempt_number,
    passing_points,
    score_assignment,
    status_after_submission,
    summarize_score,
)
from backend.common.errors import StateConflict, ValidationFailed


def _q(qid: str, points: int, position: int, qtype: str = "SINGLE_CHOICE", correct="A") -> dict:
    return {"id": qid, "points": points, "position": position, "type": qtype, "correct_answer": correct}


def test_score_two_of_three_questions():
    questions = [_q("q1", 10, 1), _q("q2", 10, 2), _q("q3", 10, 3)]
    answers = [
        {"question_id": "q1", "is_correct": True},
        {"question_id": "q2", "is_correct": True},
        {"question_id": "q3", "is_correct": False},
    ]
    score = calculate_quiz_score(questions, answers, 70)
    assert score.earned_points == 20
    assert score.total_points == 30
    assert score.percentage == 66.67
    assert score.passing_points == 21
    assert score.is_passed is False


def test_unanswered_questions_count_toward_total_only():
    questions = [_q("q1", 5, 1), _q("q2", 5, 2)]
    score = calculate_quiz_score(questions, [{"question_id": "q1", "is_correct": True}], 50)
    assert (score.earned_points, score.total_points, score.percentage, score.is_passed) == (5, 10, 50.0, True)


def test_passing_points_uses_ceiling_without_float_drift():
    assert passing_points(60, 30) == 18
    assert passing_points(70, 30) == 21
    assert passing_points(33, 10) == 4


def test_zero_total_points_passes_with_zero_percent():
    score = summarize_score(0, 0, 70)
    assert score.percentage == 0.0
    assert score.passing_points == 0
    assert score.is_passed is True


def test_percentage_rounds_half_up():
    assert summarize_score(1, 8, 50).percentage == 12.5
    assert summarize_score(1, 3, 50).percentage == 33.33
    assert summarize_score(2, 3, 50).percentage == 66.67


@pytest.mark.parametrize(
    "qtype, correct, submitted, expected",
    [
        ("SINGLE_CHOICE", "B", "B", True),
        ("SINGLE_CHOICE", "B", "C", False),
        ("MULTIPLE_CHOICE", ["A", "C"], ["C", "A"], True),
        ("MULTIPLE_CHOICE", ["A", "C"], ["A"], False),
        ("TRUE_FALSE", "true", True, True),
        ("true-false", "false", "FALSE", True),
        ("SHORT_ANSWER", ["Paris", "paris, france"], "  PARIS ", True),
        ("SHORT_ANSWER", None, "anything", None),
        ("FILL_IN_BLANK", "mitochondria", "ribosome", False),
        ("ESSAY", None, "long text", None),
        ("UNKNOWN", "A", "A", False),
    ],
)
def test_evaluate_answer(qtype, correct, submitted, expected):
    assert evaluate_answer(qtype, correct, submitted) is expected


def test_evaluate_submission_ignores_unknown_questions_and_awards_points():
    questions = [_q("q1", 4, 1), _q("q2", 6, 2, "ESSAY", None)]
    rows = evaluate_submission(questions, {"q1": "A", "q2": "essay", "zzz": "A"})
    assert [r["question_id"] for r in rows] == ["q1", "q2"]
    assert rows[0]["points"] == 4 and rows[0]["is_correct"] is True
    assert rows[1]["points"] == 0 and rows[1]["is_correct"] is None
    assert status_after_submission(rows) is AttemptStatus.SUBMITTED
    assert status_after_submission(rows[:1]) is AttemptStatus.GRADED


def test_next_attempt_number_rejects_over_limit():
    assert next_attempt_number(None, 3) == 1
    assert next_attempt_number(2, 3) == 3
    assert next_attempt_number(10, None) == 11
    with pytest.raises(StateConflict) as err:
        next_attempt_number(3, 3)
    assert err.value.code == "MAX_ATTEMPTS_EXCEEDED"
    assert err.value.details == {"maxAttempts": 3, "attemptsUsed": 3}


def test_attempt_state_machine():
    ensure_can_submit("STARTED")
    with pytest.raises(StateConflict, match="ATTEMPT_ALREADY_SUBMITTED"):
        ensure_can_submit("SUBMITTED")
    ensure_can_grade("SUBMITTED")
    with pytest.raises(StateConflict, match="ATTEMPT_ALREADY_GRADED"):
        ensure_can_grade("GRADED")
    with pytest.raises(StateConflict, match="ATTEMPT_NOT_SUBMITTED"):
        ensure_can_grade("STARTED")
    ensure_transition("STARTED", AttemptStatus.GRADED)
    ensure_transition("SUBMITTED", AttemptStatus.GRADED)
    with pytest.raises(StateConflict, match="INVALID_ATTEMPT_TRANSITION"):
        ensure_transition("GRADED", AttemptStatus.SUBMITTED)


class TestApplyGrades:
    questions = [_q("q1", 10, 1), _q("q2", 10, 2, "ESSAY", None)]
    answers = [
        {"id": "a1", "question_id": "q1", "is_correct": True, "points": 10},
        {"id": "a2", "question_id": "q2", "is_correct": None, "points": 0},
    ]

    def test_manual_points_replace_only_mentioned_answers(self):
        updated, score = apply_grades(self.questions, self.answers, {"q2": {"points": 4, "feedback": "thin"}}, None, 70)
        assert [a["points"] for a in updated] == [10, 4]
        assert updated[1]["is_correct"] is True and updated[1]["feedback"] == "thin"
        assert (score.earned_points, score.percentage, score.is_passed) == (14, 70.0, True)

    def test_zero_points_marks_incorrect(self):
        updated, score = apply_grades(self.questions, self.answers, {"q2": {"points": 0}}, None, 70)
        assert updated[1]["is_correct"] is False
        assert score.is_passed is False

    def test_override_grade_replaces_sum(self):
        _, score = apply_grades(self.questions, self.answers, {}, 19.5, 70)
        assert score.earned_points == 19.5
        assert score.percentage == 97.5

    @pytest.mark.parametrize("points", [-1, 11, "5", True, float("nan"), float("inf"), 10**400])
    def test_invalid_points(self, points):
        with pytest.raises(ValidationFailed, match="INVALID_POINTS"):
            apply_grades(self.questions, self.answers, {"q2": {"points": points}}, None, 70)

    def test_unknown_question_ids(self):
        with pytest.raises(ValidationFailed) as err:
            apply_grades(self.questions, self.answers, {"nope": {"points": 1}}, None, 70)
        assert err.value.code == "INVALID_QUESTION_IDS"

    @pytest.mark.parametrize("override", [21, -1, float("nan"), float("inf")])
    def test_override_out_of_range(self, override):
        with pytest.raises(ValidationFailed, match="INVALID_OVERRIDE_GRADE"):
            apply_grades(self.questions, self.answers, {}, override, 70)


def test_assignment_points_pass_at_seventy_percent():
    assert score_assignment(14, 20).is_passed is True
    assert score_assignment(13.5, 20).is_passed is False
    assert score_assignment(0, 20).percentage == 0.0
    assert score_assignment(20, 20).earned_points == 20


@pytest.mark.parametrize("points", [21, -0.5, None, "10", False, float("nan"), float("-inf")])
def test_assignment_points_out_of_range(points):
    with pytest.raises(ValidationFailed, match="INVALID_POINTS"):
        score_assignment(points, 20)
