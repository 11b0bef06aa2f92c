from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Tuple

from backend.assessment.scoring import round_half_up
from backend.cache import keys
from backend.cache.helpers import forget
from backend.cache.store import CacheProtocol
from backend.common.errors import NotFound
from backend.learning.usecases.enrollments import EnrollmentRepoProtocol, require_active_enrollment
from backend.notifications import Notification


class ProgressRepoProtocol(EnrollmentRepoProtocol, Protocol):
    def progress_counts(self, student_id: str, course_id: str) -> Dict[str, int]:
        ...

    def update_enrollment_progress(
        self, enrollment_id: str, *, progress_percentage: float, lessons_completed: int, quizzes_passed: int
    ) -> Optional[dict]:
        ...

    def issue_certificate(self, student_id: str, course_id: str) -> Tuple[dict, bool]:
        ...

    def record_lesson_completion(self, student_id: str, lesson_id: str) -> Tuple[dict, bool]:
        ...

    def list_completed_lesson_ids(self, student_id: str, course_id: str) -> List[str]:
        ...

    def list_passed_quiz_ids(self, student_id: str, course_id: str) -> List[str]:
        ...


class ContentReaderProtocol(Protocol):
    def get_course(self, course_id: str) -> Optional[dict]:
        ...

    def get_lesson(self, lesson_id: str) -> Optional[dict]:
        ...

    def get_section(self, section_id: str) -> Optional[dict]:
        ...

    def get_course_structure(self, course_id: str) -> Optional[dict]:
        ...


def progress_percentage(counts: Dict[str, int]) -> float:
    """(completed lessons + passed quizzes) / (lessons + quizzes) * 100, half-up to 2 places."""
    total = counts["lessons_total"] + counts["quizzes_total"]
    if total <= 0:
        return 0.0
    done = counts["lessons_completed"] + counts["quizzes_passed"]
    return float(min(round_half_up(Decimal(done) / Decimal(total) * 100), Decimal(100)))


@dataclass
class ProgressUpdate:
    enrollment: dict
    certificate: Optional[dict] = None
    notifications: List[Notification] = field(default_factory=list)


class ProgressTracker:
    """Recompute enrollment progress and award the certificate at 100%."""

    def __init__(self, repo: ProgressRepoProtocol, cache: CacheProtocol) -> None:
        self._repo = repo
        self._cache = cache

    def refresh(self, enrollment: dict, *, email: Optional[str] = None) -> ProgressUpdate:
        student_id = enrollment["student_id"]
        course_id = enrollment["course_id"]
        counts = self._repo.progress_counts(student_id, course_id)
        pct = progress_percentage(counts)
        updated = self._repo.update_enrollment_progress(
            enrollment["id"],
            progress_percentage=pct,
            lessons_completed=counts["lessons_completed"],
            quizzes_passed=counts["quizzes_passed"],
        ) or enrollment
        forget(self._cache, keys.enrolled_courses(student_id))
        result = ProgressUpdate(enrollment=updated)
        if pct >= 100:
            certificate, created = self._repo.issue_certificate(student_id, course_id)
            result.certificate = certificate
            if created:
                result.notifications.append(
                    Notification(
                        type="certificate_issued",
                        title="Course completed",
                        message="Congratulations! Your certificate is ready.",
                        recipient_id=student_id,
                        data={"courseId": course_id, "certificateCode": certificate["certificate_code"]},
                        email=email,
                    )
                )
        return result


@dataclass
class CompleteLessonInput:
    student_id: str
    lesson_id: str
    email: Optional[str] = None


@dataclass
class CompleteLessonResult:
    completion: dict
    created: bool
    progress: ProgressUpdate


class CompleteLessonUseCase:
    def __init__(self, content: ContentReaderProtocol, repo: ProgressRepoProtocol, cache: CacheProtocol) -> None:
        self._content = content
        self._repo = repo
        self._tracker = ProgressTracker(repo, cache)

    def execute(self, req: CompleteLessonInput) -> CompleteLessonResult:
        """Mark a lesson completed (idempotent) and refresh course progress.

        Permissions:
            Caller must hold an ACTIVE enrollment in the lesson's course; the
            lesson's section must be published.
        """
        lesson = self._content.get_lesson(req.lesson_id)
        section = self._content.get_section(lesson["section_id"]) if lesson else None
        if lesson is None or section is None or not section.get("is_published"):
            raise NotFound("LESSON_NOT_FOUND", "Lesson not found")
        enrollment = require_active_enrollment(self._repo, req.student_id, lesson["course_id"])
        completion, created = self._repo.record_lesson_completion(req.student_id, req.lesson_id)
        progress = self._tracker.refresh(enrollment, email=req.email)
        return CompleteLessonResult(completion=completion, created=created, progress=progress)


class StudentCourseContentUseCase:
    """Published course structure for an enrolled student, with completion flags."""

    def __init__(self, content: ContentReaderProtocol, repo: ProgressRepoProtocol) -> None:
        self._content = content
        self._repo = repo

    def execute(self, student_id: str, course_id: str) -> Dict[str, Any]:
        enrollment = require_active_enrollment(self._repo, student_id, course_id)
        structure = self._content.get_course_structure(course_id)
        if structure is None:
            raise NotFound("COURSE_NOT_FOUND", "Course not found")
        completed = set(self._repo.list_completed_lesson_ids(student_id, course_id))
        passed = set(self._repo.list_passed_quiz_ids(student_id, course_id))
        sections = []
        for section in structure["sections"]:
            if not section.get("is_published"):
                continue
            for lesson in section["lessons"]:
                lesson["is_completed"] = lesson["id"] in completed
            for quiz in section["quizzes"]:
                quiz["is_passed"] = quiz["id"] in passed
            sections.append(section)
        structure["sections"] = sections
        return {"course": structure, "enrollment": enrollment}
