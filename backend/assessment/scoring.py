"""
Quiz scoring and attempt lifecycle rules (pure functions, no I/O).

Why:
    Scoring must be identical whether an attempt is submitted by a student,
    graded by an instructor or recomputed in a report. Keeping the rules pure
    lets repositories call them inside a transaction and lets tests pin the
    arithmetic without a database.

Rounding:
    Percentages round half-up at the 2nd decimal; passing points use the ceiling
    of `passing_score / 100 * total`. Both use Decimal to avoid binary float
    artefacts (e.g. 0.6 * 30 != 18.0 in floats).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from backend.common.errors import StateConflict, ValidationFailed


class QuestionType(str, Enum):
    SINGLE_CHOICE = "SINGLE_CHOICE"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"
    SHORT_ANSWER = "SHORT_ANSWER"
    FILL_IN_BLANK = "FILL_IN_BLANK"
    ESSAY = "ESSAY"


CHOICE_TYPES = frozenset({QuestionType.SINGLE_CHOICE, QuestionType.MULTIPLE_CHOICE})


class AttemptStatus(str, Enum):
    STARTED = "STARTED"
    SUBMITTED = "SUBMITTED"
    GRADED = "GRADED"


def parse_question_type(value: object) -> Optional[QuestionType]:
    """Map loose spellings (`multiple-choice`, `true_false`) to a QuestionType."""
    if not isinstance(value, str):
        return None
    key = value.strip().upper().replace("-", "_").replace(" ", "_")
    try:
        return QuestionType(key)
    except ValueError:
        return None


def _text(value: object) -> str:
    return str(value).strip().lower()


def evaluate_answer(question_type: object, correct_answer: Any, submitted: Any) -> Optional[bool]:
    """Return the correctness verdict for one submitted answer.

    Returns:
        True/False for auto-gradable questions, None when a human has to grade
        (essays, or free-text questions without a configured answer).
        Unknown question types fail closed (False).
    """
    qtype = parse_question_type(question_type)
    if qtype is None:
        return False
    if qtype is QuestionType.ESSAY:
        return None
    if qtype in (QuestionType.SHORT_ANSWER, QuestionType.FILL_IN_BLANK):
        accepted = correct_answer if isinstance(correct_answer, list) else [correct_answer]
        accepted = [a for a in accepted if a is not None and str(a).strip()]
        if not accepted:
            return None
        if submitted is None or isinstance(submitted, (list, dict)):
            return False
        return _text(submitted) in {_text(a) for a in accepted}
    if submitted is None or correct_answer is None:
        return False
    if qtype is QuestionType.TRUE_FALSE:
        return _text(submitted) == _text(correct_answer)
    if qtype is QuestionType.MULTIPLE_CHOICE and isinstance(correct_answer, list):
        if not isinstance(submitted, list):
            return False
        return sorted(str(x) for x in submitted) == sorted(str(x) for x in correct_answer)
    return submitted == correct_answer


def round_half_up(value: Decimal | float | int, places: int = 2) -> Decimal:
    quantum = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)


def passing_points(passing_score: int | float, total_points: int | float) -> int:
    raw = Decimal(str(passing_score)) * Decimal(str(total_points)) / Decimal(100)
    return int(raw.to_integral_value(rounding=ROUND_CEILING))


def _number(value: Decimal) -> int | float:
    return int(value) if value == value.to_integral_value() else float(value)


@dataclass(frozen=True)
class QuizScore:
    earned_points: int | float
    total_points: int | float
    percentage: float
    passing_points: int
    is_passed: bool

    def as_dict(self) -> Dict[str, Any]:
        return {
            "earnedPoints": self.earned_points,
            "totalPoints": self.total_points,
            "percentage": self.percentage,
            "passingPoints": self.passing_points,
            "isPassed": self.is_passed,
        }


def summarize_score(earned: int | float | Decimal, total: int | float | Decimal, passing_score: int | float) -> QuizScore:
    earned_d = Decimal(str(earned))
    total_d = Decimal(str(total))
    if total_d > 0:
        pct = round_half_up(earned_d / total_d * 100)
        pct = min(max(pct, Decimal(0)), Decimal(100))
    else:
        pct = Decimal(0)
    needed = passing_points(passing_score, total_d)
    return QuizScore(
        earned_points=_number(earned_d),
        total_points=_number(total_d),
        percentage=float(pct),
        passing_points=needed,
        is_passed=earned_d >= needed,
    )


def _ordered(questions: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    return sorted(questions, key=lambda q: int(q.get("position") or 0))


def calculate_quiz_score(
    questions: Iterable[Mapping[str, Any]],
    answers: Iterable[Mapping[str, Any]],
    passing_score: int | float,
) -> QuizScore:
    """Aggregate points over the quiz questions in position order.

    A question counts toward the total always and toward earned points only
    when its matching answer (by `question_id`) is marked correct.
    """
    by_question = {str(a.get("question_id")): a for a in answers}
    total = Decimal(0)
    earned = Decimal(0)
    for question in _ordered(questions):
        points = Decimal(str(question.get("points") or 0))
        total += points
        answer = by_question.get(str(question.get("id")))
        if answer is not None and answer.get("is_correct") is True:
            earned += points
    return summarize_score(earned, total, passing_score)


def evaluate_submission(
    questions: Sequence[Mapping[str, Any]],
    submitted: Mapping[str, Any],
) -> List[Dict[str, Any]]:
    """Evaluate submitted answers (question_id -> value) against quiz questions.

    Answers for question ids outside the quiz are ignored. Returns answer rows
    ready to persist: question_id, response, is_correct, points.
    """
    rows: List[Dict[str, Any]] = []
    for question in _ordered(questions):
        qid = str(question.get("id"))
        if qid not in submitted:
            continue
        verdict = evaluate_answer(question.get("type"), question.get("correct_answer"), submitted[qid])
        rows.append(
            {
                "question_id": qid,
                "response": submitted[qid],
                "is_correct": verdict,
                "points": question.get("points") if verdict is True else 0,
            }
        )
    return rows


def status_after_submission(answer_rows: Iterable[Mapping[str, Any]]) -> AttemptStatus:
    """GRADED when every answer was auto-evaluated, SUBMITTED when some await a human."""
    if any(row.get("is_correct") is None for row in answer_rows):
        return AttemptStatus.SUBMITTED
    return AttemptStatus.GRADED


def next_attempt_number(last_attempt_number: Optional[int], max_attempts: Optional[int]) -> int:
    """Admission control: next number is last + 1 and may not exceed max_attempts."""
    candidate = int(last_attempt_number or 0) + 1
    if max_attempts is not None and candidate > int(max_attempts):
        raise StateConflict(
            "MAX_ATTEMPTS_EXCEEDED",
            "Maximum number of attempts reached for this quiz",
            details={"maxAttempts": int(max_attempts), "attemptsUsed": candidate - 1},
        )
    return candidate


def ensure_can_submit(status: object) -> None:
    if status != AttemptStatus.STARTED.value:
        raise StateConflict("ATTEMPT_ALREADY_SUBMITTED", "Quiz attempt has already been submitted")


def ensure_can_grade(status: object) -> None:
    if status == AttemptStatus.GRADED.value:
        raise StateConflict("ATTEMPT_ALREADY_GRADED", "Quiz attempt has already been graded")
    if status != AttemptStatus.SUBMITTED.value:
        raise StateConflict("ATTEMPT_NOT_SUBMITTED", "Quiz attempt has not been submitted yet")


_TRANSITIONS = {
    AttemptStatus.STARTED: frozenset({AttemptStatus.SUBMITTED, AttemptStatus.GRADED}),
    AttemptStatus.SUBMITTED: frozenset({AttemptStatus.GRADED}),
    AttemptStatus.GRADED: frozenset(),
}


def ensure_transition(current: object, target: AttemptStatus) -> None:
    """Attempts only move forward: STARTED -> SUBMITTED -> GRADED (or STARTED -> GRADED)."""
    try:
        state = AttemptStatus(current)
    except ValueError:
        state = None
    if state is None or target not in _TRANSITIONS[state]:
        raise StateConflict(
            "INVALID_ATTEMPT_TRANSITION",
            "Quiz attempt cannot change to the requested status",
            details={"from": current, "to": target.value},
        )


def ensure_fields_unlocked(
    current: Mapping[str, Any],
    changes: Mapping[str, Any],
    fields: Mapping[str, str],
    code: str,
    message: str,
) -> None:
    """Reject the whole update when a locked field would change value.

    `fields` maps storage names to the labels reported back to clients.
    Re-sending the stored value is not a change.
    """
    changed = [label for name, label in fields.items() if name in changes and changes[name] != current.get(name)]
    if changed:
        raise StateConflict(code, message, details={"fields": changed})


def _finite_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def apply_grades(
    questions: Sequence[Mapping[str, Any]],
    answers: Sequence[Mapping[str, Any]],
    grades: Mapping[str, Mapping[str, Any]],
    override_grade: Optional[float],
    passing_score: int | float,
) -> Tuple[List[Dict[str, Any]], QuizScore]:
    """Apply instructor points per question and recompute the attempt score.

    Graded answers get `is_correct = points > 0`. Answers not mentioned keep
    their current verdict and points. `override_grade`, when given, replaces
    the summed points.
    """
    max_points = {str(q.get("id")): Decimal(str(q.get("points") or 0)) for q in questions}
    answered = {str(a.get("question_id")) for a in answers}
    unknown = [qid for qid in grades if str(qid) not in answered]
    if unknown:
        raise ValidationFailed("INVALID_QUESTION_IDS", "Grades reference questions without answers", details={"questionIds": unknown})

    updated: List[Dict[str, Any]] = []
    earned = Decimal(0)
    for answer in answers:
        row = dict(answer)
        qid = str(row.get("question_id"))
        grade = grades.get(qid)
        if grade is not None:
            raw = grade.get("points")
            if not _finite_number(raw):
                raise ValidationFailed("INVALID_POINTS", "Points must be a number", details={"questionId": qid})
            points = Decimal(str(raw))
            if points < 0 or points > max_points.get(qid, Decimal(0)):
                raise ValidationFailed(
                    "INVALID_POINTS",
                    "Points must be between 0 and the question's points",
                    details={"questionId": qid, "max": _number(max_points.get(qid, Decimal(0)))},
                )
            row["points"] = _number(points)
            row["is_correct"] = points > 0
            if grade.get("feedback") is not None:
                row["feedback"] = grade.get("feedback")
        earned += Decimal(str(row.get("points") or 0))
        updated.append(row)

    total = sum(max_points.values(), Decimal(0))
    if override_grade is not None:
        if not _finite_number(override_grade):
            raise ValidationFailed("INVALID_OVERRIDE_GRADE", "Override grade must be a number")
        override = Decimal(str(override_grade))
        if override < 0 or override > total:
            raise ValidationFailed("INVALID_OVERRIDE_GRADE", "Override grade must be between 0 and the total points")
        earned = override
    return updated, summarize_score(earned, total, passing_score)


ASSIGNMENT_PASSING_SCORE = 70


def score_assignment(points: object, total_points: int | float) -> QuizScore:
    """Validate instructor points for an assignment and summarize them.

    Points must be a finite number in [0, total_points]; 70% passes.
    """
    if not _finite_number(points):
        raise ValidationFailed("INVALID_POINTS", "points must be a number")
    earned = Decimal(str(points))
    if earned < 0 or earned > Decimal(str(total_points)):
        raise ValidationFailed("INVALID_POINTS", f"points must be between 0 and {total_points}")
    return summarize_score(earned, total_points, ASSIGNMENT_PASSING_SCORE)


__all__ = [
    "QuestionType",
    "CHOICE_TYPES",
    "AttemptStatus",
    "QuizScore",
    "parse_question_type",
    "evaluate_answer",
    "evaluate_submission",
    "round_half_up",
    "passing_points",
    "summarize_score",
    "calculate_quiz_score",
    "status_after_submission",
    "next_attempt_number",
    "ensure_can_submit",
    "ensure_can_grade",
    "ensure_transition",
    "ensure_fields_unlocked",
    "apply_grades",
    "ASSIGNMENT_PASSING_SCORE",
    "score_assignment",
]
