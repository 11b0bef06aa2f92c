"""
Best-effort cache usage for services.

Cache failures are logged and swallowed: a broken cache degrades to direct
reads, and a failed invalidation leaves entries to expire by TTL.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from backend.cache import keys
from backend.cache.store import CacheProtocol

logger = logging.getLogger("educademy.cache")


def read_through(cache: CacheProtocol, key: str, ttl_seconds: int, loader: Callable[[], Any]) -> Any:
    """Return the cached value for `key` or load, store and return it.

    `None` results are not cached so a missing entity is re-checked next time.
    """
    try:
        hit = cache.get_json(key)
    except Exception as exc:
        logger.warning("Cache get failed key=%s err=%s", key, exc.__class__.__name__)
        hit = None
    if hit is not None:
        return hit
    value = loader()
    if value is not None:
        try:
            cache.set_json(key, value, ttl_seconds)
        except Exception as exc:
            logger.warning("Cache set failed key=%s err=%s", key, exc.__class__.__name__)
    return value


def forget(cache: CacheProtocol, *cache_keys: str, patterns: tuple[str, ...] = ()) -> None:
    try:
        if cache_keys:
            cache.delete(*cache_keys)
        for pattern in patterns:
            cache.delete_pattern(pattern)
    except Exception as exc:
        logger.warning("Cache invalidation failed keys=%s patterns=%s err=%s", cache_keys, patterns, exc.__class__.__name__)


def invalidate_course_content(cache: CacheProtocol, course_id: Optional[str]) -> None:
    """Drop every cached view derived from a course's content."""
    if not course_id:
        return
    forget(
        cache,
        keys.course(course_id),
        keys.content_stats(course_id),
        keys.course_validation(course_id),
        keys.catalog_course(course_id),
        patterns=(
            keys.course_content_pattern(course_id),
            keys.course_structure_pattern(course_id),
            keys.CATALOG_PAGES_PATTERN,
        ),
    )
