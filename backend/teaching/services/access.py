"""Ownership checks: instructors may only act on content of their own courses."""

from __future__ import annotations

from typing import Optional, Protocol

from backend.common.errors import AccessDenied, NotFound


class CourseLookupProtocol(Protocol):
    def get_course(self, course_id: str) -> Optional[dict]:
        ...


def require_owned_course(repo: CourseLookupProtocol, course_id: str, instructor_id: str) -> dict:
    course = repo.get_course(course_id)
    if course is None:
        raise NotFound("COURSE_NOT_FOUND", "Course not found")
    if course.get("instructor_id") != instructor_id:
        raise AccessDenied("COURSE_ACCESS_DENIED", "You do not have access to this course")
    return course


def require_owned_row(
    repo: CourseLookupProtocol,
    row: Optional[dict],
    instructor_id: str,
    *,
    code: str,
    message: str,
) -> dict:
    """Return `row` when it exists and belongs to a course owned by the caller."""
    if row is None:
        raise NotFound(code, message)
    require_owned_course(repo, str(row["course_id"]), instructor_id)
    return row
