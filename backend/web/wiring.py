"""
Process-wide collaborators for the web adapters.

Why:
    Routers stay thin and import-time side effect free: repositories, cache,
    notification dispatcher and settings store are built lazily on first use.
    Tests swap any of them through the `set_*` helpers or `reset_for_tests`.

Persistence:
    Prefers the Postgres-backed repositories when a DSN is configured and
    reachable; falls back to the in-memory repositories (sharing one set of
    tables) for local offline work and tests.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Tuple

from backend.admin.settings import SettingsStore
from backend.cache.store import CacheProtocol, NullCache, build_cache_from_env
from backend.common.db import probe, resolve_dsn
from backend.identity_access.stores import SessionStore
from backend.learning.repo_memory import InMemoryLearningRepo
from backend.notifications import NotificationDispatcher
from backend.notifications.channels import EmailChannel, InAppChannel, WebSocketChannel
from backend.notifications.hub import NotificationHub
from backend.teaching.repo_memory import InMemoryTeachingRepo, MemoryTables
from backend.web.config import load_settings

logger = logging.getLogger("educademy.web")

_TEACHING_REPO: Any = None
_LEARNING_REPO: Any = None
_CACHE: Optional[CacheProtocol] = None
_HUB: Optional[NotificationHub] = None
_DISPATCHER: Optional[NotificationDispatcher] = None
_SETTINGS_STORE: Optional[SettingsStore] = None
SESSION_STORE = SessionStore()


def _memory_repos(tables: Optional[MemoryTables] = None) -> Tuple[InMemoryTeachingRepo, InMemoryLearningRepo]:
    shared = tables or MemoryTables()
    return InMemoryTeachingRepo(shared), InMemoryLearningRepo(shared)


def _build_default_repos() -> Tuple[Any, Any]:
    dsn = resolve_dsn()
    if dsn and probe(dsn):
        from backend.learning.repo_db import DBLearningRepo
        from backend.teaching.repo_db import DBTeachingRepo

        return DBTeachingRepo(dsn), DBLearningRepo(dsn)
    if dsn:
        logger.warning("Database unreachable; using in-memory repositories")
    return _memory_repos()


def _ensure_repos() -> None:
    global _TEACHING_REPO, _LEARNING_REPO
    if _TEACHING_REPO is None or _LEARNING_REPO is None:
        _TEACHING_REPO, _LEARNING_REPO = _build_default_repos()


def get_teaching_repo():
    _ensure_repos()
    return _TEACHING_REPO


def get_learning_repo():
    _ensure_repos()
    return _LEARNING_REPO


def get_cache() -> CacheProtocol:
    global _CACHE
    if _CACHE is None:
        _CACHE = build_cache_from_env()
    return _CACHE


def get_hub() -> NotificationHub:
    global _HUB
    if _HUB is None:
        _HUB = NotificationHub()
    return _HUB


def get_dispatcher() -> NotificationDispatcher:
    global _DISPATCHER
    if _DISPATCHER is None:
        channels: list = [InAppChannel(get_learning_repo()), WebSocketChannel(get_hub())]
        smtp = load_settings().smtp
        if smtp is not None:
            channels.append(EmailChannel(smtp))
        _DISPATCHER = NotificationDispatcher(channels)
        logger.info("Notification channels: %s", ",".join(_DISPATCHER.channel_names))
    return _DISPATCHER


def get_settings_store() -> SettingsStore:
    global _SETTINGS_STORE
    if _SETTINGS_STORE is None:
        _SETTINGS_STORE = SettingsStore(get_cache())
    return _SETTINGS_STORE


def set_repos(teaching_repo, learning_repo) -> None:
    """Allow tests to swap the repository implementations."""
    global _TEACHING_REPO, _LEARNING_REPO, _DISPATCHER
    _TEACHING_REPO, _LEARNING_REPO = teaching_repo, learning_repo
    _DISPATCHER = None


def set_cache(cache: CacheProtocol) -> None:
    global _CACHE, _SETTINGS_STORE
    _CACHE = cache
    _SETTINGS_STORE = None


def reset_for_tests(tables: Optional[MemoryTables] = None) -> MemoryTables:
    """Fresh in-memory repos, no cache, new hub/dispatcher/settings/sessions."""
    global _CACHE, _HUB, _DISPATCHER, _SETTINGS_STORE, SESSION_STORE
    shared = tables or MemoryTables()
    set_repos(*_memory_repos(shared))
    _CACHE = NullCache()
    _HUB = NotificationHub()
    _DISPATCHER = None
    _SETTINGS_STORE = None
    SESSION_STORE = SessionStore()
    return shared
