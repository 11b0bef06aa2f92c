"""Teaching courses service: course lifecycle plus cached structure, stats and validation.

Why:
    Course structure, content statistics and the validation report are read
    far more often than content changes, so they are served read-through from
    the cache and dropped on every content write.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

from backend.assessment.scoring import CHOICE_TYPES, parse_question_type
from backend.cache import keys
from backend.cache.helpers import invalidate_course_content, read_through
from backend.cache.store import CacheProtocol
from backend.common.errors import NotFound, StateConflict
from backend.teaching.services import fields
from backend.teaching.services.access import require_owned_course
from backend.teaching.structure import content_counts

COURSE_LEVELS = ("BEGINNER", "INTERMEDIATE", "ADVANCED")


class CoursesRepoProtocol(Protocol):
    def create_course(self, *, instructor_id: str, title: str, description: Optional[str], price: float, level: Optional[str]) -> dict:
        ...

    def list_courses_for_instructor(self, instructor_id: str, *, limit: int, offset: int) -> List[dict]:
        ...

    def get_course(self, course_id: str) -> Optional[dict]:
        ...

    def update_course(self, course_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        ...

    def publish_course(self, course_id: str) -> Optional[dict]:
        ...

    def get_course_structure(self, course_id: str) -> Optional[dict]:
        ...


def validate_structure(structure: Mapping[str, Any]) -> Dict[str, Any]:
    """Build the publishability report for a course structure.

    Errors block publishing; warnings are informational.
    """
    errors: List[Dict[str, str]] = []
    warnings: List[Dict[str, str]] = []
    sections = structure.get("sections") or []
    if not sections:
        errors.append({"code": "NO_SECTIONS", "message": "Course has no sections"})
    for section in sections:
        if not section["lessons"]:
            warnings.append({"code": "SECTION_WITHOUT_LESSONS", "message": f"Section '{section['title']}' has no lessons", "id": section["id"]})
        for lesson in section["lessons"]:
            if lesson.get("type") == "VIDEO" and not lesson.get("video_url"):
                warnings.append({"code": "LESSON_WITHOUT_CONTENT", "message": f"Video lesson '{lesson['title']}' has no video", "id": lesson["id"]})
            elif lesson.get("type") != "VIDEO" and not lesson.get("content"):
                warnings.append({"code": "LESSON_WITHOUT_CONTENT", "message": f"Lesson '{lesson['title']}' has no content", "id": lesson["id"]})
        for quiz in section["quizzes"]:
            if not quiz["questions"]:
                errors.append({"code": "QUIZ_WITHOUT_QUESTIONS", "message": f"Quiz '{quiz['title']}' has no questions", "id": quiz["id"]})
            for question in quiz["questions"]:
                if parse_question_type(question.get("type")) in CHOICE_TYPES and len(question.get("options") or []) < 2:
                    errors.append(
                        {"code": "QUESTION_WITHOUT_OPTIONS", "message": "Choice question needs at least two options", "id": question["id"]}
                    )
        for assignment in section["assignments"]:
            if not assignment.get("due_date"):
                warnings.append(
                    {"code": "ASSIGNMENT_WITHOUT_DUE_DATE", "message": f"Assignment '{assignment['title']}' has no due date", "id": assignment["id"]}
                )
    return {"isValid": not errors, "errors": errors, "warnings": warnings}


def structure_stats(structure: Mapping[str, Any]) -> Dict[str, Any]:
    sections = structure.get("sections") or []
    counts = content_counts(dict(structure))
    lessons = [lesson for s in sections for lesson in s["lessons"]]
    quizzes = [quiz for s in sections for quiz in s["quizzes"]]
    return {
        **counts,
        "publishedSections": sum(1 for s in sections if s.get("is_published")),
        "freeLessons": sum(1 for lesson in lessons if lesson.get("is_free")),
        "totalDuration": sum(int(lesson.get("duration") or 0) for lesson in lessons),
        "totalQuizPoints": sum(int(q.get("points") or 0) for quiz in quizzes for q in quiz["questions"]),
    }


@dataclass
class CoursesService:
    repo: CoursesRepoProtocol
    cache: CacheProtocol

    def create_course(self, instructor_id: str, data: Mapping[str, Any]) -> dict:
        level = data.get("level")
        return self.repo.create_course(
            instructor_id=instructor_id,
            title=fields.required_text(data.get("title"), "title"),
            description=fields.optional_text(data.get("description"), "description"),
            price=fields.money(data.get("price", 0), "price"),
            level=fields.choice(level, "level", COURSE_LEVELS) if level is not None else None,
        )

    def list_courses(self, instructor_id: str, *, limit: int = 20, offset: int = 0) -> List[dict]:
        limit = max(1, min(int(limit), 50))
        offset = max(0, int(offset))
        return self.repo.list_courses_for_instructor(instructor_id, limit=limit, offset=offset)

    def update_course(self, instructor_id: str, course_id: str, data: Mapping[str, Any]) -> dict:
        require_owned_course(self.repo, course_id, instructor_id)
        changes: Dict[str, Any] = {}
        if "title" in data:
            changes["title"] = fields.required_text(data["title"], "title")
        if "description" in data:
            changes["description"] = fields.optional_text(data["description"], "description")
        if "price" in data:
            changes["price"] = fields.money(data["price"], "price")
        if "level" in data:
            changes["level"] = fields.choice(data["level"], "level", COURSE_LEVELS) if data["level"] is not None else None
        if not changes:
            raise fields.invalid("body", "No updatable fields supplied")
        updated = self.repo.update_course(course_id, changes)
        if updated is None:
            raise NotFound("COURSE_NOT_FOUND", "Course not found")
        invalidate_course_content(self.cache, course_id)
        return updated

    def _structure(self, course_id: str) -> dict:
        structure = read_through(
            self.cache, keys.course_structure(course_id), keys.STRUCTURE_TTL, lambda: self.repo.get_course_structure(course_id)
        )
        if structure is None:
            raise NotFound("COURSE_NOT_FOUND", "Course not found")
        return structure

    def get_structure(self, instructor_id: str, course_id: str) -> dict:
        require_owned_course(self.repo, course_id, instructor_id)
        return self._structure(course_id)

    def get_stats(self, instructor_id: str, course_id: str) -> dict:
        require_owned_course(self.repo, course_id, instructor_id)
        return read_through(
            self.cache, keys.content_stats(course_id), keys.STATS_TTL, lambda: structure_stats(self._structure(course_id))
        )

    def validate(self, instructor_id: str, course_id: str) -> dict:
        require_owned_course(self.repo, course_id, instructor_id)
        return read_through(
            self.cache,
            keys.course_validation(course_id),
            keys.VALIDATION_TTL,
            lambda: validate_structure(self._structure(course_id)),
        )

    def publish(self, instructor_id: str, course_id: str) -> dict:
        """Publish the course and all of its sections once the content validates."""
        require_owned_course(self.repo, course_id, instructor_id)
        report = validate_structure(self.repo.get_course_structure(course_id) or {})
        if not report["isValid"]:
            raise StateConflict("COURSE_CONTENT_INVALID", "Course content has validation errors", details={"errors": report["errors"]})
        published = self.repo.publish_course(course_id)
        if published is None:
            raise NotFound("COURSE_NOT_FOUND", "Course not found")
        invalidate_course_content(self.cache, course_id)
        return published
