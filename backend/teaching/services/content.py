"""Teaching content service for sections, lessons and assignments.

Why:
    Keeps validation, ownership and cache invalidation out of the web adapter.
    Ordering, delete policies and field locks run inside the repository so
    that the check and the write share one transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

from backend.cache.helpers import invalidate_course_content
from backend.cache.store import CacheProtocol
from backend.common.errors import NotFound
from backend.teaching.services import fields
from backend.teaching.services.access import require_owned_course, require_owned_row

LESSON_TYPES = ("VIDEO", "TEXT", "AUDIO", "DOCUMENT", "INTERACTIVE")


class ContentRepoProtocol(Protocol):
    def get_course(self, course_id: str) -> Optional[dict]:
        ...

    def get_section(self, section_id: str) -> Optional[dict]:
        ...

    def list_sections(self, course_id: str) -> List[dict]:
        ...

    def create_section(self, course_id: str, fields: Dict[str, Any]) -> dict:
        ...

    def update_section(self, section_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        ...

    def delete_section(self, section_id: str) -> bool:
        ...

    def reorder_sections(self, course_id: str, section_ids: List[str]) -> List[dict]:
        ...

    def get_lesson(self, lesson_id: str) -> Optional[dict]:
        ...

    def create_lesson(self, section_id: str, fields: Dict[str, Any]) -> dict:
        ...

    def update_lesson(self, lesson_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        ...

    def delete_lesson(self, lesson_id: str) -> bool:
        ...

    def reorder_lessons(self, section_id: str, lesson_ids: List[str]) -> List[dict]:
        ...

    def get_assignment(self, assignment_id: str) -> Optional[dict]:
        ...

    def create_assignment(self, section_id: str, fields: Dict[str, Any]) -> dict:
        ...

    def update_assignment(self, assignment_id: str, changes: Dict[str, Any]) -> Optional[dict]:
        ...

    def delete_assignment(self, assignment_id: str) -> bool:
        ...

    def reorder_assignments(self, section_id: str, assignment_ids: List[str]) -> List[dict]:
        ...


def _section_fields(data: Mapping[str, Any], *, partial: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if not partial or "title" in data:
        out["title"] = fields.required_text(data.get("title"), "title")
    if "description" in data:
        out["description"] = fields.optional_text(data["description"], "description", max_len=2000)
    if "is_published" in data:
        out["is_published"] = fields.boolean(data["is_published"], "isPublished")
    elif not partial:
        out["is_published"] = False
    return out


def _lesson_fields(data: Mapping[str, Any], *, partial: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if not partial or "title" in data:
        out["title"] = fields.required_text(data.get("title"), "title")
    if "description" in data:
        out["description"] = fields.optional_text(data["description"], "description", max_len=2000)
    if "type" in data:
        out["type"] = fields.choice(data["type"], "type", LESSON_TYPES)
    elif not partial:
        out["type"] = "TEXT"
    if "content" in data:
        out["content"] = fields.optional_text(data["content"], "content", max_len=100000)
    if "video_url" in data:
        out["video_url"] = fields.optional_text(data["video_url"], "videoUrl", max_len=2048)
    if "duration" in data:
        out["duration"] = fields.optional_integer(data["duration"], "duration", minimum=0)
    for name, label in (("is_free", "isFree"), ("is_published", "isPublished")):
        if name in data:
            out[name] = fields.boolean(data[name], label)
        elif not partial:
            out[name] = False
    return out


def _assignment_fields(data: Mapping[str, Any], *, partial: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if not partial or "title" in data:
        out["title"] = fields.required_text(data.get("title"), "title")
    if "description" in data:
        out["description"] = fields.optional_text(data["description"], "description", max_len=5000)
    if "instructions" in data:
        out["instructions"] = fields.optional_text(data["instructions"], "instructions", max_len=20000)
    if "due_date" in data:
        out["due_date"] = fields.timestamp(data["due_date"], "dueDate")
    if "total_points" in data:
        out["total_points"] = fields.integer(data["total_points"], "totalPoints", minimum=1, maximum=10000)
    elif not partial:
        out["total_points"] = 100
    for name, label in (("allow_late_submission", "allowLateSubmission"), ("is_published", "isPublished")):
        if name in data:
            out[name] = fields.boolean(data[name], label)
        elif not partial:
            out[name] = False
    return out


def _require_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    if not changes:
        raise fields.invalid("body", "No updatable fields supplied")
    return changes


@dataclass
class ContentService:
    repo: ContentRepoProtocol
    cache: CacheProtocol

    def _owned_section(self, section_id: str, instructor_id: str) -> dict:
        return require_owned_row(
            self.repo, self.repo.get_section(section_id), instructor_id, code="SECTION_NOT_FOUND", message="Section not found"
        )

    # --- sections -----------------------------------------------------------

    def create_section(self, instructor_id: str, course_id: str, data: Mapping[str, Any]) -> dict:
        require_owned_course(self.repo, course_id, instructor_id)
        section = self.repo.create_section(course_id, _section_fields(data, partial=False))
        invalidate_course_content(self.cache, course_id)
        return section

    def list_sections(self, instructor_id: str, course_id: str) -> List[dict]:
        require_owned_course(self.repo, course_id, instructor_id)
        return self.repo.list_sections(course_id)

    def update_section(self, instructor_id: str, section_id: str, data: Mapping[str, Any]) -> dict:
        section = self._owned_section(section_id, instructor_id)
        updated = self.repo.update_section(section_id, _require_changes(_section_fields(data, partial=True)))
        if updated is None:
            raise NotFound("SECTION_NOT_FOUND", "Section not found")
        invalidate_course_content(self.cache, section["course_id"])
        return updated

    def delete_section(self, instructor_id: str, section_id: str) -> None:
        section = self._owned_section(section_id, instructor_id)
        if not self.repo.delete_section(section_id):
            raise NotFound("SECTION_NOT_FOUND", "Section not found")
        invalidate_course_content(self.cache, section["course_id"])

    def reorder_sections(self, instructor_id: str, course_id: str, section_ids: object) -> List[dict]:
        require_owned_course(self.repo, course_id, instructor_id)
        ordered = self.repo.reorder_sections(course_id, fields.id_list(section_ids, "sectionIds"))
        invalidate_course_content(self.cache, course_id)
        return ordered

    # --- lessons ------------------------------------------------------------

    def create_lesson(self, instructor_id: str, section_id: str, data: Mapping[str, Any]) -> dict:
        section = self._owned_section(section_id, instructor_id)
        lesson = self.repo.create_lesson(section_id, _lesson_fields(data, partial=False))
        invalidate_course_content(self.cache, section["course_id"])
        return lesson

    def update_lesson(self, instructor_id: str, lesson_id: str, data: Mapping[str, Any]) -> dict:
        lesson = require_owned_row(
            self.repo, self.repo.get_lesson(lesson_id), instructor_id, code="LESSON_NOT_FOUND", message="Lesson not found"
        )
        updated = self.repo.update_lesson(lesson_id, _require_changes(_lesson_fields(data, partial=True)))
        if updated is None:
            raise NotFound("LESSON_NOT_FOUND", "Lesson not found")
        invalidate_course_content(self.cache, lesson["course_id"])
        return updated

    def delete_lesson(self, instructor_id: str, lesson_id: str) -> None:
        lesson = require_owned_row(
            self.repo, self.repo.get_lesson(lesson_id), instructor_id, code="LESSON_NOT_FOUND", message="Lesson not found"
        )
        if not self.repo.delete_lesson(lesson_id):
            raise NotFound("LESSON_NOT_FOUND", "Lesson not found")
        invalidate_course_content(self.cache, lesson["course_id"])

    def reorder_lessons(self, instructor_id: str, section_id: str, lesson_ids: object) -> List[dict]:
        section = self._owned_section(section_id, instructor_id)
        ordered = self.repo.reorder_lessons(section_id, fields.id_list(lesson_ids, "lessonIds"))
        invalidate_course_content(self.cache, section["course_id"])
        return ordered

    # --- assignments --------------------------------------------------------

    def create_assignment(self, instructor_id: str, section_id: str, data: Mapping[str, Any]) -> dict:
        section = self._owned_section(section_id, instructor_id)
        assignment = self.repo.create_assignment(section_id, _assignment_fields(data, partial=False))
        invalidate_course_content(self.cache, section["course_id"])
        return assignment

    def update_assignment(self, instructor_id: str, assignment_id: str, data: Mapping[str, Any]) -> dict:
        assignment = require_owned_row(
            self.repo,
            self.repo.get_assignment(assignment_id),
            instructor_id,
            code="ASSIGNMENT_NOT_FOUND",
            message="Assignment not found",
        )
        updated = self.repo.update_assignment(assignment_id, _require_changes(_assignment_fields(data, partial=True)))
        if updated is None:
            raise NotFound("ASSIGNMENT_NOT_FOUND", "Assignment not found")
        invalidate_course_content(self.cache, assignment["course_id"])
        return updated

    def delete_assignment(self, instructor_id: str, assignment_id: str) -> None:
        assignment = require_owned_row(
            self.repo,
            self.repo.get_assignment(assignment_id),
            instructor_id,
            code="ASSIGNMENT_NOT_FOUND",
            message="Assignment not found",
        )
        if not self.repo.delete_assignment(assignment_id):
            raise NotFound("ASSIGNMENT_NOT_FOUND", "Assignment not found")
        invalidate_course_content(self.cache, assignment["course_id"])

    def reorder_assignments(self, instructor_id: str, section_id: str, assignment_ids: object) -> List[dict]:
        section = self._owned_section(section_id, instructor_id)
        ordered = self.repo.reorder_assignments(section_id, fields.id_list(assignment_ids, "assignmentIds"))
        invalidate_course_content(self.cache, section["course_id"])
        return ordered
