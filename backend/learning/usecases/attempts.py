"""
Quiz attempts from the student's side: start, submit, one-shot submit, history.

Admission (attempt numbering and the max-attempts limit) and the
STARTED -> SUBMITTED/GRADED transition are enforced by the repository inside
its lock/transaction; this module validates input, scores answers and decides
which follow-up notifications to emit.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from backend.assessment.scoring import (
    AttemptStatus,
    QuizScore,
    calculate_quiz_score,
    evaluate_submission,
    status_after_submission,
)
from backend.cache.store import CacheProtocol
from backend.common.errors import AccessDenied, NotFound, ValidationFailed
from backend.learning.usecases.enrollments import require_active_enrollment
from backend.learning.usecases.progress import ProgressRepoProtocol, ProgressTracker
from backend.notifications import Notification


class QuizReaderProtocol(Protocol):
    def get_quiz(self, quiz_id: str) -> Optional[dict]:
        ...

    def get_section(self, section_id: str) -> Optional[dict]:
        ...

    def list_questions(self, quiz_id: str) -> List[dict]:
        ...


class AttemptRepoProtocol(ProgressRepoProtocol, Protocol):
    def list_attempts(self, quiz_id: str, *, student_id: Optional[str] = None) -> List[dict]:
        ...

    def get_attempt(self, attempt_id: str) -> Optional[dict]:
        ...

    def start_attempt(self, quiz_id: str, student_id: str) -> dict:
        ...

    def submit_attempt(self, attempt_id: str, *, answers: List[dict], score: QuizScore, status: AttemptStatus) -> dict:
        ...

    def create_submitted_attempt(
        self, quiz_id: str, student_id: str, *, answers: List[dict], score: QuizScore, status: AttemptStatus
    ) -> dict:
        ...


def parse_answers(raw: object) -> Dict[str, Any]:
    """Turn `[{questionId, answer}, ...]` into `{question_id: answer}`.

    Raises INVALID_ANSWERS_FORMAT for anything else, including duplicates.
    """
    if not isinstance(raw, list):
        raise ValidationFailed("INVALID_ANSWERS_FORMAT", "answers must be a list of {questionId, answer}")
    parsed: Dict[str, Any] = {}
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationFailed("INVALID_ANSWERS_FORMAT", "answers must be a list of {questionId, answer}")
        qid = item.get("questionId", item.get("question_id"))
        if not isinstance(qid, str) or not qid.strip():
            raise ValidationFailed("INVALID_ANSWERS_FORMAT", "Each answer needs a questionId")
        if qid in parsed:
            raise ValidationFailed("INVALID_ANSWERS_FORMAT", "Duplicate answer for a question", details={"questionId": qid})
        parsed[qid] = item.get("answer")
    return parsed


def review_rows(questions: List[dict], answers: List[dict]) -> List[Dict[str, Any]]:
    """Per-question outcome including the answer key, for quizzes that allow review."""
    by_question = {a["question_id"]: a for a in answers}
    rows = []
    for question in sorted(questions, key=lambda q: q["position"]):
        answer = by_question.get(question["id"]) or {}
        rows.append(
            {
                "question_id": question["id"],
                "response": answer.get("response"),
                "is_correct": answer.get("is_correct"),
                "points": answer.get("points") or 0,
                "max_points": question["points"],
                "correct_answer": question.get("correct_answer"),
                "explanation": question.get("explanation"),
            }
        )
    return rows


@dataclass
class StartAttemptInput:
    student_id: str
    quiz_id: str


@dataclass
class StartAttemptResult:
    attempt: dict
    quiz: dict
    questions: List[dict]


@dataclass
class SubmitAttemptInput:
    student_id: str
    answers: object
    attempt_id: Optional[str] = None
    quiz_id: Optional[str] = None
    email: Optional[str] = None


@dataclass
class SubmitAttemptResult:
    attempt: dict
    score: QuizScore
    review: Optional[List[Dict[str, Any]]] = None
    notifications: List[Notification] = field(default_factory=list)


class _QuizAccess:
    def __init__(self, content: QuizReaderProtocol, repo: AttemptRepoProtocol) -> None:
        self._content = content
        self._repo = repo

    def visible_quiz(self, quiz_id: str) -> dict:
        quiz = self._content.get_quiz(quiz_id)
        section = self._content.get_section(quiz["section_id"]) if quiz else None
        if quiz is None or section is None or not section.get("is_published"):
            raise NotFound("QUIZ_NOT_FOUND", "Quiz not found")
        return quiz

    def enrollment_for(self, student_id: str, quiz: dict) -> dict:
        return require_active_enrollment(self._repo, student_id, quiz["course_id"])


class StartAttemptUseCase:
    def __init__(self, content: QuizReaderProtocol, repo: AttemptRepoProtocol) -> None:
        self._content = content
        self._repo = repo
        self._access = _QuizAccess(content, repo)

    def execute(self, req: StartAttemptInput) -> StartAttemptResult:
        """Open a new attempt (status STARTED) for an enrolled student.

        Behavior:
            - ATTEMPT_IN_PROGRESS when a STARTED attempt already exists.
            - MAX_ATTEMPTS_EXCEEDED when the limit is reached; nothing is written.
            - Questions come back shuffled for randomized quizzes.
        """
        quiz = self._access.visible_quiz(req.quiz_id)
        self._access.enrollment_for(req.student_id, quiz)
        attempt = self._repo.start_attempt(req.quiz_id, req.student_id)
        questions = self._content.list_questions(req.quiz_id)
        if quiz.get("is_randomized"):
            random.shuffle(questions)
        return StartAttemptResult(attempt=attempt, quiz=quiz, questions=questions)


class SubmitAttemptUseCase:
    """Score answers and close an attempt.

    With `attempt_id` the STARTED attempt is submitted; with only `quiz_id` a
    new attempt is admitted and submitted in one step.
    """

    def __init__(self, content: QuizReaderProtocol, repo: AttemptRepoProtocol, cache: CacheProtocol) -> None:
        self._content = content
        self._repo = repo
        self._access = _QuizAccess(content, repo)
        self._tracker = ProgressTracker(repo, cache)

    def _quiz_for(self, req: SubmitAttemptInput) -> tuple[dict, Optional[dict]]:
        if req.attempt_id is None:
            if req.quiz_id is None:
                raise ValidationFailed("VALIDATION_ERROR", "attemptId or quizId is required")
            return self._access.visible_quiz(req.quiz_id), None
        attempt = self._repo.get_attempt(req.attempt_id)
        if attempt is None:
            raise NotFound("ATTEMPT_NOT_FOUND", "Quiz attempt not found")
        if attempt["student_id"] != req.student_id:
            raise AccessDenied("ATTEMPT_UNAUTHORIZED", "This attempt belongs to another student")
        return self._access.visible_quiz(attempt["quiz_id"]), attempt

    def execute(self, req: SubmitAttemptInput) -> SubmitAttemptResult:
        submitted = parse_answers(req.answers)
        quiz, attempt = self._quiz_for(req)
        enrollment = self._access.enrollment_for(req.student_id, quiz)

        questions = self._content.list_questions(quiz["id"])
        rows = evaluate_submission(questions, submitted)
        score = calculate_quiz_score(questions, rows, quiz["passing_score"])
        status = status_after_submission(rows)
        if attempt is None:
            stored = self._repo.create_submitted_attempt(quiz["id"], req.student_id, answers=rows, score=score, status=status)
        else:
            stored = self._repo.submit_attempt(attempt["id"], answers=rows, score=score, status=status)

        result = SubmitAttemptResult(attempt=stored, score=score)
        result.notifications.append(
            Notification(
                type="quiz_completed",
                title=f"Quiz submitted: {quiz['title']}",
                message=(
                    f"You scored {score.percentage}%."
                    if status is AttemptStatus.GRADED
                    else "Your answers were submitted and are waiting for grading."
                ),
                recipient_id=req.student_id,
                data={"quizId": quiz["id"], "attemptId": stored["id"], "status": status.value, **score.as_dict()},
                email=req.email,
            )
        )
        if status is AttemptStatus.GRADED and score.is_passed:
            progress = self._tracker.refresh(enrollment, email=req.email)
            result.notifications.extend(progress.notifications)
        if quiz.get("show_results") and quiz.get("allow_review") and status is AttemptStatus.GRADED:
            result.review = review_rows(questions, rows)
        return result


class ListMyAttemptsUseCase:
    def __init__(self, content: QuizReaderProtocol, repo: AttemptRepoProtocol) -> None:
        self._repo = repo
        self._access = _QuizAccess(content, repo)

    def execute(self, student_id: str, quiz_id: str) -> List[dict]:
        quiz = self._access.visible_quiz(quiz_id)
        self._access.enrollment_for(student_id, quiz)
        return self._repo.list_attempts(quiz_id, student_id=student_id)
