"""Cache key builders and TTLs (seconds)."""

from __future__ import annotations

from typing import Optional

STRUCTURE_TTL = 30 * 60
STATS_TTL = 10 * 60
VALIDATION_TTL = 15 * 60
ENROLLED_TTL = 5 * 60
ANALYTICS_TTL = 15 * 60
CATALOG_TTL = 5 * 60

SYSTEM_SETTINGS = "system_settings"
SYSTEM_SETTINGS_CHANGES = "system_settings_changes"
CATALOG_PAGES_PATTERN = "public_courses:*"


def course(course_id: str) -> str:
    return f"course:{course_id}"


def course_structure(course_id: str) -> str:
    return f"course_structure:{course_id}"


def course_content_pattern(course_id: str) -> str:
    return f"course_content:{course_id}*"


def course_structure_pattern(course_id: str) -> str:
    return f"course_structure:{course_id}*"


def content_stats(course_id: str) -> str:
    return f"content_stats:{course_id}"


def course_validation(course_id: str) -> str:
    return f"course_validation:{course_id}"


def catalog_page(page: int, limit: int, search: Optional[str], level: Optional[str]) -> str:
    return f"public_courses:{limit}:{page}:{level or ''}:{search or ''}"


def catalog_course(course_id: str) -> str:
    return f"public_course:{course_id}"


def enrolled_courses(student_id: str) -> str:
    return f"enrolled_courses:{student_id}"


def analytics(kind: str, period: str, group_by: Optional[str] = None) -> str:
    if group_by is None:
        return f"analytics:{kind}:{period}"
    return f"analytics:{kind}:{period}:{group_by}"
