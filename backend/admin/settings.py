"""
System settings store.

Settings are kept as one immutable snapshot; an update builds a new snapshot
with the changed category merged in and `version + 1`. Readers always see a
complete snapshot. Concurrent writers to the same category resolve
last-writer-wins unless they pass `expected_version`.

The shared copy lives in the cache under `system_settings`, so every worker
process sees the same version: reads adopt a newer cached snapshot and updates
run as a compare-and-set on that key. Without a cache the process-local
snapshot is authoritative.
"""

from __future__ import annotations

import copy
import logging
import os
import threading
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Deque, Dict, List, Mapping, Optional

from backend.cache import keys
from backend.cache.store import CacheProtocol, NullCache
from backend.common.errors import DomainError, StateConflict, ValidationFailed
from backend.notifications import Notification
from backend.teaching.repo_memory import now_iso

logger = logging.getLogger("educademy.admin.settings")

CATEGORIES = ("platform", "features", "limits", "payments", "security", "maintenance")
CHANGE_LOG_SIZE = 100


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning("Ignoring non-integer %s", name)
        return default


def default_categories() -> Dict[str, Dict[str, Any]]:
    return {
        "platform": {
            "name": os.getenv("PLATFORM_NAME", "Educademy"),
            "supportEmail": os.getenv("SUPPORT_EMAIL", "support@educademy.local"),
            "defaultLanguage": "en",
        },
        "features": {"certificates": True, "notifications": True, "assignments": True},
        "limits": {
            "maxFileSizeMb": _env_int("MAX_FILE_SIZE_MB", 50),
            "maxCoursesPerInstructor": _env_int("MAX_COURSES_PER_INSTRUCTOR", 100),
        },
        "payments": {"currency": "USD", "enabled": False},
        "security": {"sessionTimeoutMinutes": 120, "requireEmailVerification": False},
        "maintenance": {"enabled": _env_bool("MAINTENANCE_MODE", False), "message": None},
    }


@dataclass(frozen=True)
class SettingsSnapshot:
    version: int
    categories: Mapping[str, Mapping[str, Any]]
    updated_at: str
    updated_by: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "settings": {name: dict(values) for name, values in self.categories.items()},
            "updatedAt": self.updated_at,
            "updatedBy": self.updated_by,
        }


def _freeze(categories: Mapping[str, Mapping[str, Any]]) -> Mapping[str, Mapping[str, Any]]:
    return MappingProxyType({name: MappingProxyType(copy.deepcopy(dict(values))) for name, values in categories.items()})


def snapshot_from_cache(stored: Any) -> Optional[SettingsSnapshot]:
    """Rebuild a snapshot from its cached `as_dict()` form; None when absent or malformed."""
    if stored is None:
        return None
    settings = stored.get("settings") if isinstance(stored, dict) else None
    if not isinstance(settings, dict):
        logger.warning("Ignoring malformed cached settings")
        return None
    try:
        version = int(stored["version"])
    except (KeyError, TypeError, ValueError):
        logger.warning("Ignoring malformed cached settings")
        return None
    categories = default_categories()
    for name in CATEGORIES:
        if isinstance(settings.get(name), dict):
            categories[name] = settings[name]
    return SettingsSnapshot(
        version=version,
        categories=_freeze(categories),
        updated_at=str(stored.get("updatedAt") or now_iso()),
        updated_by=stored.get("updatedBy"),
    )


@dataclass
class SettingsUpdate:
    snapshot: SettingsSnapshot
    change: Dict[str, Any]
    notifications: List[Notification] = field(default_factory=list)


class SettingsStore:
    def __init__(self, cache: Optional[CacheProtocol] = None, *, initial: Optional[Mapping[str, Mapping[str, Any]]] = None) -> None:
        self._cache: CacheProtocol = cache or NullCache()
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._snapshot = SettingsSnapshot(version=1, categories=_freeze(initial or default_categories()), updated_at=now_iso())
        self._changes: Deque[Dict[str, Any]] = deque(maxlen=CHANGE_LOG_SIZE)

    def _adopt(self, candidate: Optional[SettingsSnapshot]) -> SettingsSnapshot:
        with self._lock:
            if candidate is not None and candidate.version > self._snapshot.version:
                self._snapshot = candidate
            return self._snapshot

    def snapshot(self) -> SettingsSnapshot:
        try:
            stored = self._cache.get_json(keys.SYSTEM_SETTINGS)
        except Exception as exc:
            logger.warning("Settings cache read failed err=%s", exc.__class__.__name__)
            stored = None
        return self._adopt(snapshot_from_cache(stored))

    def changes(self, limit: int = CHANGE_LOG_SIZE) -> List[Dict[str, Any]]:
        try:
            shared = self._cache.list_json(keys.SYSTEM_SETTINGS_CHANGES, limit)
        except Exception as exc:
            logger.warning("Settings change log cache read failed err=%s", exc.__class__.__name__)
            shared = []
        if shared:
            return shared
        with self._lock:
            return list(self._changes)[:limit]

    def maintenance_enabled(self) -> bool:
        return bool(self.snapshot().categories["maintenance"].get("enabled"))

    def update(
        self,
        category: object,
        values: object,
        admin_id: str,
        *,
        expected_version: Optional[int] = None,
    ) -> SettingsUpdate:
        """Merge `values` into one category and publish a new snapshot.

        The version check and the write happen atomically against the cached
        snapshot; when the cache fails the update is applied locally only.

        Raises:
            ValidationFailed: INVALID_CATEGORY / INVALID_INPUT.
            StateConflict: SETTINGS_VERSION_CONFLICT when `expected_version` is stale.
        """
        if not isinstance(category, str) or category not in CATEGORIES:
            raise ValidationFailed("INVALID_CATEGORY", f"category must be one of {', '.join(CATEGORIES)}")
        if not isinstance(values, dict) or not values:
            raise ValidationFailed("INVALID_INPUT", "settings must be a non-empty object")

        outcome: Dict[str, Any] = {}

        def apply(stored: Any) -> Dict[str, Any]:
            current = self._adopt(snapshot_from_cache(stored))
            if expected_version is not None and expected_version != current.version:
                raise StateConflict(
                    "SETTINGS_VERSION_CONFLICT",
                    "Settings were changed by someone else; reload and retry",
                    details={"expectedVersion": expected_version, "currentVersion": current.version},
                )
            before = dict(current.categories[category])
            merged = {name: dict(vals) for name, vals in current.categories.items()}
            merged[category] = {**before, **copy.deepcopy(values)}
            snapshot = SettingsSnapshot(
                version=current.version + 1, categories=_freeze(merged), updated_at=now_iso(), updated_by=admin_id
            )
            outcome["snapshot"] = snapshot
            outcome["before"] = before
            outcome["change"] = {
                "version": snapshot.version,
                "category": category,
                "before": before,
                "after": merged[category],
                "changedBy": admin_id,
                "changedAt": snapshot.updated_at,
            }
            return snapshot.as_dict()

        with self._write_lock:
            try:
                self._cache.update_json(keys.SYSTEM_SETTINGS, apply)
            except DomainError:
                raise
            except Exception as exc:
                logger.warning("Settings cache write failed err=%s; applying locally", exc.__class__.__name__)
                apply(None)
            snapshot: SettingsSnapshot = outcome["snapshot"]
            change: Dict[str, Any] = outcome["change"]
            self._adopt(snapshot)
            with self._lock:
                self._changes.appendleft(change)

        try:
            self._cache.push_capped(keys.SYSTEM_SETTINGS_CHANGES, change, CHANGE_LOG_SIZE)
        except Exception as exc:
            logger.warning("Settings change log cache write failed err=%s", exc.__class__.__name__)
        logger.info("Settings updated category=%s version=%s by=%s", category, snapshot.version, admin_id)

        result = SettingsUpdate(snapshot=snapshot, change=change)
        after = snapshot.categories[category]
        if category == "maintenance" and after.get("enabled") and not outcome["before"].get("enabled"):
            result.notifications.append(
                Notification(
                    type="maintenance_mode",
                    title="Scheduled maintenance",
                    message=after.get("message") or "The platform is entering maintenance mode.",
                    data={"enabled": True},
                    channels=("websocket",),
                )
            )
        return result
