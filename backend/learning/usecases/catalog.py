"""Public course catalog: published courses and their outlines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

from backend.cache import keys
from backend.cache.helpers import read_through
from backend.cache.store import CacheProtocol
from backend.common.errors import NotFound, ValidationFailed
from backend.teaching.services.courses import COURSE_LEVELS

DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 50


class CatalogReaderProtocol(Protocol):
    def list_published_courses(
        self, *, limit: int, offset: int, search: Optional[str] = None, level: Optional[str] = None
    ) -> Tuple[List[dict], int]:
        ...

    def get_course_structure(self, course_id: str) -> Optional[dict]:
        ...


def _page_number(value: object, default: int, *, maximum: Optional[int] = None) -> int:
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        number = default
    number = max(number, 1)
    return min(number, maximum) if maximum is not None else number


@dataclass
class CatalogQuery:
    page: object = 1
    limit: object = DEFAULT_PAGE_SIZE
    search: Optional[str] = None
    level: Optional[str] = None


class BrowseCatalogUseCase:
    def __init__(self, courses: CatalogReaderProtocol, cache: CacheProtocol) -> None:
        self._courses = courses
        self._cache = cache

    def execute(self, query: CatalogQuery) -> Dict[str, Any]:
        """Return one page of published courses, newest first.

        `limit` is clamped to 1..50 and `page` to >= 1; unparsable values fall
        back to the defaults. `level` must be a known course level.
        """
        page = _page_number(query.page, 1)
        limit = _page_number(query.limit, DEFAULT_PAGE_SIZE, maximum=MAX_PAGE_SIZE)
        search = (query.search or "").strip() or None
        level = (query.level or "").strip().upper() or None
        if level is not None and level not in COURSE_LEVELS:
            raise ValidationFailed("INVALID_LEVEL", f"level must be one of {', '.join(COURSE_LEVELS)}", details={"field": "level"})

        def load() -> Dict[str, Any]:
            offset = (page - 1) * limit
            courses, total = self._courses.list_published_courses(limit=limit, offset=offset, search=search, level=level)
            return {
                "courses": courses,
                "pagination": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "total_pages": -(-total // limit),
                    "has_next": offset + limit < total,
                    "has_prev": page > 1,
                },
            }

        return read_through(self._cache, keys.catalog_page(page, limit, search, level), keys.CATALOG_TTL, load)


def course_outline(structure: Dict[str, Any]) -> Dict[str, Any]:
    """Strip a course structure to what a prospective student may see.

    Only published sections are listed. Lessons keep their title and length
    but not their body unless marked free; quizzes expose a question count.
    """
    sections = []
    for section in structure.get("sections") or []:
        if not section.get("is_published"):
            continue
        lessons = []
        for lesson in section["lessons"]:
            item = {k: lesson.get(k) for k in ("id", "title", "type", "duration", "is_free", "position")}
            if lesson.get("is_free"):
                item["content"] = lesson.get("content")
                item["video_url"] = lesson.get("video_url")
            lessons.append(item)
        sections.append(
            {
                "id": section["id"],
                "title": section["title"],
                "description": section.get("description"),
                "position": section["position"],
                "lessons": lessons,
                "quizzes": [
                    {"id": q["id"], "title": q["title"], "position": q["position"], "question_count": len(q["questions"])}
                    for q in section["quizzes"]
                ],
                "assignments": [
                    {"id": a["id"], "title": a["title"], "position": a["position"], "total_points": a.get("total_points")}
                    for a in section["assignments"]
                ],
            }
        )
    course = {k: v for k, v in structure.items() if k != "sections"}
    return {
        **course,
        "sections": sections,
        "totals": {
            "sections": len(sections),
            "lessons": sum(len(s["lessons"]) for s in sections),
            "quizzes": sum(len(s["quizzes"]) for s in sections),
            "assignments": sum(len(s["assignments"]) for s in sections),
            "duration": sum(int(lesson.get("duration") or 0) for s in sections for lesson in s["lessons"]),
        },
    }


class CatalogCourseUseCase:
    def __init__(self, courses: CatalogReaderProtocol, cache: CacheProtocol) -> None:
        self._courses = courses
        self._cache = cache

    def execute(self, course_id: str) -> Dict[str, Any]:
        """Outline of a published course; drafts are reported as COURSE_NOT_FOUND."""

        def load() -> Optional[Dict[str, Any]]:
            structure = self._courses.get_course_structure(course_id)
            if structure is None or structure.get("status") != "PUBLISHED":
                return None
            return course_outline(structure)

        outline = read_through(self._cache, keys.catalog_course(course_id), keys.CATALOG_TTL, load)
        if outline is None:
            raise NotFound("COURSE_NOT_FOUND", "Course not found")
        return outline
