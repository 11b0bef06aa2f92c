"""
Delete and edit policies for course content.

Each guard raises a `StateConflict` with a stable code; both repository
implementations call them inside the same transaction as the write.
"""

from __future__ import annotations

from typing import Any, Mapping

from backend.assessment.scoring import ensure_fields_unlocked
from backend.teaching.ordering import ensure_no_dependents

REORDER_CODES = {
    "sections": "INVALID_SECTION_IDS",
    "lessons": "INVALID_LESSON_IDS",
    "quizzes": "INVALID_QUIZ_IDS",
    "questions": "INVALID_QUESTION_IDS",
    "assignments": "INVALID_ASSIGNMENT_IDS",
}

QUIZ_LOCKED_FIELDS = {"passing_score": "passingScore", "max_attempts": "maxAttempts", "duration": "duration"}
QUESTION_LOCKED_FIELDS = {"correct_answer": "correctAnswer", "points": "points", "type": "type"}
ASSIGNMENT_LOCKED_FIELDS = {"total_points": "totalPoints", "due_date": "dueDate"}


def guard_section_delete(lessons: int, quizzes: int, assignments: int) -> None:
    ensure_no_dependents(
        {"lessons": lessons, "quizzes": quizzes, "assignments": assignments},
        "SECTION_HAS_CONTENT",
        "Cannot delete a section that still contains lessons, quizzes or assignments",
    )


def guard_lesson_delete(completions: int) -> None:
    ensure_no_dependents({"completions": completions}, "LESSON_HAS_COMPLETIONS", "Cannot delete a lesson that students have completed")


def guard_quiz_delete(attempts: int) -> None:
    ensure_no_dependents({"attempts": attempts}, "QUIZ_HAS_ATTEMPTS", "Cannot delete a quiz that has attempts")


def guard_question_delete(answers: int) -> None:
    ensure_no_dependents({"answers": answers}, "QUESTION_HAS_ANSWERS", "Cannot delete a question that has answers")


def guard_assignment_delete(submissions: int) -> None:
    ensure_no_dependents(
        {"submissions": submissions}, "ASSIGNMENT_HAS_SUBMISSIONS", "Cannot delete an assignment that has submissions"
    )


def guard_quiz_update(current: Mapping[str, Any], changes: Mapping[str, Any], attempts: int) -> None:
    if attempts > 0:
        ensure_fields_unlocked(
            current, changes, QUIZ_LOCKED_FIELDS, "QUIZ_HAS_ATTEMPTS", "Scoring settings are locked once a quiz has attempts"
        )


def guard_question_update(current: Mapping[str, Any], changes: Mapping[str, Any], attempts: int) -> None:
    if attempts > 0:
        ensure_fields_unlocked(
            current,
            changes,
            QUESTION_LOCKED_FIELDS,
            "QUESTION_HAS_ATTEMPTS",
            "Scoring fields of a question are locked once its quiz has attempts",
        )


def guard_assignment_update(current: Mapping[str, Any], changes: Mapping[str, Any], submissions: int) -> None:
    if submissions > 0:
        ensure_fields_unlocked(
            current,
            changes,
            ASSIGNMENT_LOCKED_FIELDS,
            "ASSIGNMENT_HAS_SUBMISSIONS",
            "Grading settings are locked once an assignment has submissions",
        )
