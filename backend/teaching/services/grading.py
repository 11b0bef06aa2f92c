"""Instructor grading: quiz attempts (manual questions, overrides), assignment
submissions and the pending-grading queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol

from backend.assessment.scoring import QuizScore, apply_grades, ensure_can_grade, score_assignment
from backend.cache.store import CacheProtocol
from backend.common.errors import NotFound, StateConflict, ValidationFailed
from backend.learning.usecases.progress import ProgressRepoProtocol, ProgressTracker
from backend.notifications import Notification
from backend.teaching.services.access import require_owned_course, require_owned_row


class GradingContentProtocol(Protocol):
    def get_course(self, course_id: str) -> Optional[dict]:
        ...

    def get_quiz(self, quiz_id: str) -> Optional[dict]:
        ...

    def list_questions(self, quiz_id: str) -> List[dict]:
        ...

    def get_assignment(self, assignment_id: str) -> Optional[dict]:
        ...


class GradingRepoProtocol(ProgressRepoProtocol, Protocol):
    def list_attempts(self, quiz_id: str, *, student_id: Optional[str] = None) -> List[dict]:
        ...

    def get_attempt(self, attempt_id: str) -> Optional[dict]:
        ...

    def list_answers(self, attempt_id: str) -> List[dict]:
        ...

    def grade_attempt(
        self, attempt_id: str, *, answers: List[dict], score: QuizScore, graded_by: str, feedback: Optional[str]
    ) -> dict:
        ...

    def list_assignment_submissions(self, assignment_id: str, *, status: Optional[str] = None) -> List[dict]:
        ...

    def get_assignment_submission(self, submission_id: str) -> Optional[dict]:
        ...

    def grade_assignment_submission(
        self, submission_id: str, *, grade: int | float, feedback: Optional[str], graded_by: str
    ) -> dict:
        ...

    def list_pending_grading(self, instructor_id: str, *, course_id: Optional[str] = None) -> Dict[str, List[dict]]:
        ...


def _grades(raw: object) -> Dict[str, Mapping[str, Any]]:
    if raw is None:
        return {}
    if not isinstance(raw, dict) or any(not isinstance(v, dict) for v in raw.values()):
        raise ValidationFailed("INVALID_POINTS", "answers must map questionId to {points, feedback}")
    return {str(k): v for k, v in raw.items()}


@dataclass
class GradeResult:
    attempt: dict
    answers: List[dict]
    score: QuizScore
    notifications: List[Notification] = field(default_factory=list)


@dataclass
class SubmissionGradeResult:
    submission: dict
    score: QuizScore
    notifications: List[Notification] = field(default_factory=list)


PENDING_KINDS = ("all", "assignments", "quizzes")


@dataclass
class GradingService:
    content: GradingContentProtocol
    repo: GradingRepoProtocol
    cache: CacheProtocol

    def _owned_quiz(self, quiz_id: str, instructor_id: str) -> dict:
        return require_owned_row(
            self.content, self.content.get_quiz(quiz_id), instructor_id, code="QUIZ_NOT_FOUND", message="Quiz not found"
        )

    def list_attempts(self, instructor_id: str, quiz_id: str, *, status: Optional[str] = None) -> List[dict]:
        self._owned_quiz(quiz_id, instructor_id)
        attempts = self.repo.list_attempts(quiz_id)
        if status:
            attempts = [a for a in attempts if a["status"] == status.upper()]
        return attempts

    def get_attempt(self, instructor_id: str, attempt_id: str) -> dict:
        attempt = self.repo.get_attempt(attempt_id)
        if attempt is None:
            raise NotFound("ATTEMPT_NOT_FOUND", "Quiz attempt not found")
        self._owned_quiz(attempt["quiz_id"], instructor_id)
        return {**attempt, "answers": self.repo.list_answers(attempt_id)}

    def grade_attempt(
        self,
        instructor_id: str,
        attempt_id: str,
        *,
        grades: object,
        override_grade: Optional[float] = None,
        feedback: Optional[str] = None,
    ) -> GradeResult:
        """Apply per-question points and finalize the attempt as GRADED.

        `grades` maps questionId -> {points, feedback}. Questions not mentioned
        keep their current points. `override_grade` replaces the summed score.
        Already GRADED and still STARTED attempts are rejected, again by the
        repository under the attempt row lock.

        The `quiz_graded` email goes to the address recorded on the student's
        enrollment.
        """
        attempt = self.repo.get_attempt(attempt_id)
        if attempt is None:
            raise NotFound("ATTEMPT_NOT_FOUND", "Quiz attempt not found")
        quiz = self._owned_quiz(attempt["quiz_id"], instructor_id)
        ensure_can_grade(attempt["status"])

        questions = self.content.list_questions(quiz["id"])
        answers = self.repo.list_answers(attempt_id)
        updated, score = apply_grades(questions, answers, _grades(grades), override_grade, quiz["passing_score"])
        stored = self.repo.grade_attempt(attempt_id, answers=updated, score=score, graded_by=instructor_id, feedback=feedback)

        enrollment = self.repo.get_enrollment(stored["student_id"], quiz["course_id"])
        student_email = enrollment.get("student_email") if enrollment else None
        result = GradeResult(attempt=stored, answers=updated, score=score)
        result.notifications.append(
            Notification(
                type="quiz_graded",
                title=f"Quiz graded: {quiz['title']}",
                message=f"Your attempt was graded: {score.percentage}%.",
                recipient_id=stored["student_id"],
                data={"quizId": quiz["id"], "attemptId": attempt_id, **score.as_dict()},
                email=student_email,
            )
        )
        if score.is_passed and enrollment is not None:
            progress = ProgressTracker(self.repo, self.cache).refresh(enrollment, email=student_email)
            result.notifications.extend(progress.notifications)
        return result

    # --- assignments --------------------------------------------------------

    def _owned_assignment(self, assignment_id: str, instructor_id: str) -> dict:
        return require_owned_row(
            self.content,
            self.content.get_assignment(assignment_id),
            instructor_id,
            code="ASSIGNMENT_NOT_FOUND",
            message="Assignment not found",
        )

    def list_submissions(self, instructor_id: str, assignment_id: str, *, status: Optional[str] = None) -> List[dict]:
        self._owned_assignment(assignment_id, instructor_id)
        return self.repo.list_assignment_submissions(assignment_id, status=status.upper() if status else None)

    def grade_submission(
        self, instructor_id: str, submission_id: str, *, points: object, feedback: Optional[str] = None
    ) -> SubmissionGradeResult:
        """Record points and feedback for an assignment submission.

        Points must lie in [0, totalPoints] (INVALID_POINTS). A submission is
        graded once; a second grade raises ALREADY_GRADED, checked again by the
        repository under the row lock. The student is told via `assignment_graded`.
        """
        submission = self.repo.get_assignment_submission(submission_id)
        if submission is None:
            raise NotFound("SUBMISSION_NOT_FOUND", "Assignment submission not found")
        assignment = self._owned_assignment(submission["assignment_id"], instructor_id)
        if submission["status"] == "GRADED":
            raise StateConflict("ALREADY_GRADED", "Assignment submission has already been graded")
        score = score_assignment(points, assignment["total_points"])
        stored = self.repo.grade_assignment_submission(
            submission_id, grade=score.earned_points, feedback=feedback, graded_by=instructor_id
        )

        enrollment = self.repo.get_enrollment(stored["student_id"], assignment["course_id"])
        result = SubmissionGradeResult(submission=stored, score=score)
        result.notifications.append(
            Notification(
                type="assignment_graded",
                title=f"Assignment graded: {assignment['title']}",
                message=f"Your submission was graded: {score.earned_points}/{score.total_points}.",
                recipient_id=stored["student_id"],
                data={
                    "assignmentId": assignment["id"],
                    "submissionId": submission_id,
                    "assignmentTitle": assignment["title"],
                    "grade": score.earned_points,
                    "totalPoints": score.total_points,
                    "percentage": score.percentage,
                    "isPassed": score.is_passed,
                    "feedback": feedback,
                },
                email=enrollment.get("student_email") if enrollment else None,
            )
        )
        return result

    # --- queue --------------------------------------------------------------

    def pending(self, instructor_id: str, *, course_id: Optional[str] = None, kind: str = "all") -> Dict[str, Any]:
        """SUBMITTED work awaiting a grade across the instructor's courses, oldest first."""
        if kind not in PENDING_KINDS:
            raise ValidationFailed("INVALID_TYPE", f"type must be one of {', '.join(PENDING_KINDS)}")
        if course_id is not None:
            require_owned_course(self.content, course_id, instructor_id)
        found = self.repo.list_pending_grading(instructor_id, course_id=course_id)
        assignments = found["assignments"] if kind != "quizzes" else []
        quizzes = found["quizzes"] if kind != "assignments" else []
        return {
            "assignments": assignments,
            "quizzes": quizzes,
            "summary": {
                "assignments": len(assignments),
                "quizzes": len(quizzes),
                "total": len(assignments) + len(quizzes),
            },
        }
