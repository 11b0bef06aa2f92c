from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from backend.cache import keys
from backend.cache.helpers import forget, read_through
from backend.cache.store import CacheProtocol
from backend.common.errors import AccessDenied, NotFound, StateConflict, ValidationFailed

ENROLLMENT_STATUSES = ("ACTIVE", "SUSPENDED", "CANCELLED")


class CourseReaderProtocol(Protocol):
    def get_course(self, course_id: str) -> Optional[dict]:
        ...


class EnrollmentRepoProtocol(Protocol):
    def get_enrollment(self, student_id: str, course_id: str) -> Optional[dict]:
        ...

    def create_enrollment(self, student_id: str, course_id: str, *, source: str, student_email: Optional[str] = None) -> dict:
        ...

    def set_enrollment_status(self, enrollment_id: str, status: str) -> Optional[dict]:
        ...

    def get_enrollment_by_id(self, enrollment_id: str) -> Optional[dict]:
        ...

    def list_enrollments_for_student(self, student_id: str) -> List[dict]:
        ...


def require_active_enrollment(repo: EnrollmentRepoProtocol, student_id: str, course_id: str) -> dict:
    """Return the caller's enrollment or raise 403 when missing or not ACTIVE."""
    enrollment = repo.get_enrollment(student_id, course_id)
    if enrollment is None:
        raise AccessDenied("NOT_ENROLLED", "You are not enrolled in this course")
    if enrollment.get("status") != "ACTIVE":
        raise AccessDenied("ENROLLMENT_INACTIVE", "Your enrollment in this course is not active")
    return enrollment


@dataclass
class EnrollInput:
    student_id: str
    course_id: str
    email: Optional[str] = None


class EnrollInCourseUseCase:
    def __init__(self, courses: CourseReaderProtocol, repo: EnrollmentRepoProtocol, cache: CacheProtocol) -> None:
        self._courses = courses
        self._repo = repo
        self._cache = cache

    def execute(self, req: EnrollInput) -> dict:
        """Self-enroll a student into a published, free course.

        Behavior:
            - 404 COURSE_NOT_FOUND for unknown courses.
            - COURSE_NOT_AVAILABLE for unpublished courses.
            - PAYMENT_REQUIRED for paid courses (checkout lives outside this service).
            - ALREADY_ENROLLED when an enrollment exists in any status.
        """
        course = self._courses.get_course(req.course_id)
        if course is None:
            raise NotFound("COURSE_NOT_FOUND", "Course not found")
        if course.get("status") != "PUBLISHED":
            raise StateConflict("COURSE_NOT_AVAILABLE", "Course is not open for enrollment")
        if float(course.get("price") or 0) > 0:
            raise StateConflict("PAYMENT_REQUIRED", "This course requires payment")
        enrollment = self._repo.create_enrollment(req.student_id, req.course_id, source="FREE", student_email=req.email)
        forget(self._cache, keys.enrolled_courses(req.student_id))
        return enrollment


class ListMyCoursesUseCase:
    def __init__(self, repo: EnrollmentRepoProtocol, cache: CacheProtocol) -> None:
        self._repo = repo
        self._cache = cache

    def execute(self, student_id: str) -> List[dict]:
        return read_through(
            self._cache,
            keys.enrolled_courses(student_id),
            keys.ENROLLED_TTL,
            lambda: self._repo.list_enrollments_for_student(student_id),
        )


class GrantEnrollmentUseCase:
    """Admin: enroll any student into any existing course, bypassing price and publication."""

    def __init__(self, courses: CourseReaderProtocol, repo: EnrollmentRepoProtocol, cache: CacheProtocol) -> None:
        self._courses = courses
        self._repo = repo
        self._cache = cache

    def execute(self, req: EnrollInput) -> dict:
        if self._courses.get_course(req.course_id) is None:
            raise NotFound("COURSE_NOT_FOUND", "Course not found")
        enrollment = self._repo.create_enrollment(req.student_id, req.course_id, source="ADMIN")
        forget(self._cache, keys.enrolled_courses(req.student_id))
        return enrollment


class SetEnrollmentStatusUseCase:
    def __init__(self, repo: EnrollmentRepoProtocol, cache: CacheProtocol) -> None:
        self._repo = repo
        self._cache = cache

    def execute(self, enrollment_id: str, status: object) -> dict:
        if not isinstance(status, str) or status.strip().upper() not in ENROLLMENT_STATUSES:
            raise ValidationFailed("INVALID_STATUS", f"status must be one of {', '.join(ENROLLMENT_STATUSES)}")
        updated = self._repo.set_enrollment_status(enrollment_id, status.strip().upper())
        if updated is None:
            raise NotFound("ENROLLMENT_NOT_FOUND", "Enrollment not found")
        forget(self._cache, keys.enrolled_courses(updated["student_id"]))
        return updated
