"""
Input normalizers shared by the teaching services.

Each helper returns the normalized value or raises
`ValidationFailed("VALIDATION_ERROR")` naming the offending field, so web
adapters can answer 400 without knowing the rules.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from backend.common.errors import ValidationFailed


def invalid(field: str, message: str) -> ValidationFailed:
    return ValidationFailed("VALIDATION_ERROR", message, details={"field": field})


def required_text(value: object, field: str, *, max_len: int = 200) -> str:
    if not isinstance(value, str) or not value.strip():
        raise invalid(field, f"{field} is required")
    trimmed = value.strip()
    if len(trimmed) > max_len:
        raise invalid(field, f"{field} must be at most {max_len} characters")
    return trimmed


def optional_text(value: object, field: str, *, max_len: int = 10000) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise invalid(field, f"{field} must be a string")
    trimmed = value.strip()
    if len(trimmed) > max_len:
        raise invalid(field, f"{field} must be at most {max_len} characters")
    return trimmed or None


def boolean(value: object, field: str) -> bool:
    if not isinstance(value, bool):
        raise invalid(field, f"{field} must be a boolean")
    return value


def integer(value: object, field: str, *, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise invalid(field, f"{field} must be an integer")
    if isinstance(value, float) and not math.isfinite(value):
        raise invalid(field, f"{field} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise invalid(field, f"{field} must be an integer") from exc
    if isinstance(value, float) and number != value:
        raise invalid(field, f"{field} must be an integer")
    if minimum is not None and number < minimum:
        raise invalid(field, f"{field} must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise invalid(field, f"{field} must be at most {maximum}")
    return number


def optional_integer(value: object, field: str, *, minimum: Optional[int] = None, maximum: Optional[int] = None) -> Optional[int]:
    if value is None:
        return None
    return integer(value, field, minimum=minimum, maximum=maximum)


def money(value: object, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise invalid(field, f"{field} must be a number")
    try:
        number = float(value)
    except OverflowError as exc:
        raise invalid(field, f"{field} must be a finite number") from exc
    if not math.isfinite(number):
        raise invalid(field, f"{field} must be a finite number")
    if number < 0:
        raise invalid(field, f"{field} must not be negative")
    return round(number, 2)


def choice(value: object, field: str, allowed: Iterable[str]) -> str:
    options = list(allowed)
    if not isinstance(value, str) or value.strip().upper() not in options:
        raise invalid(field, f"{field} must be one of {', '.join(options)}")
    return value.strip().upper()


def timestamp(value: object, field: str) -> Optional[str]:
    """Parse an ISO-8601 timestamp with offset; returns UTC ISO without microseconds."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise invalid(field, f"{field} must be an ISO-8601 timestamp")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise invalid(field, f"{field} must be an ISO-8601 timestamp") from exc
    if parsed.tzinfo is None:
        raise invalid(field, f"{field} must include a timezone offset")
    return parsed.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def string_list(value: object, field: str, *, max_items: int = 20, max_len: int = 500) -> List[str]:
    if isinstance(value, str) or not isinstance(value, list):
        raise invalid(field, f"{field} must be a list of strings")
    out: List[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise invalid(field, f"{field} must contain non-empty strings")
        if len(item.strip()) > max_len:
            raise invalid(field, f"{field} entries must be at most {max_len} characters")
        out.append(item.strip())
    if len(out) > max_items:
        raise invalid(field, f"{field} must have at most {max_items} entries")
    return out


def id_list(value: object, field: str) -> List[str]:
    """Reorder payloads: a non-empty list of strings (membership is checked by the repo)."""
    if not isinstance(value, list) or not value:
        raise invalid(field, f"{field} must be a non-empty array")
    if any(not isinstance(item, str) or not item for item in value):
        raise invalid(field, f"{field} must contain ids")
    return list(value)
