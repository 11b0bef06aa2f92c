"""
Cache adapters: JSON get/set-with-TTL, exact and pattern deletes, capped lists.

Why:
    Expensive reads (course structure, stats, validation reports, analytics)
    are cached read-through and invalidated after writes. The adapters raise
    on backend failures; `backend.cache.helpers` decides that those failures
    are never fatal to a request.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, List, Optional, Protocol

import redis

logger = logging.getLogger("educademy.cache")


class CacheProtocol(Protocol):
    def get_json(self, key: str) -> Any:
        ...

    def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ...

    def delete(self, *keys: str) -> int:
        ...

    def delete_pattern(self, pattern: str) -> int:
        ...

    def push_capped(self, key: str, value: Any, limit: int) -> None:
        ...

    def list_json(self, key: str, limit: int) -> List[Any]:
        ...

    def update_json(self, key: str, mutate: Callable[[Any], Any]) -> Any:
        ...

    def ping(self) -> bool:
        ...


class RedisCache:
    """Redis-backed cache storing compact JSON strings."""

    def __init__(self, client: Optional[redis.Redis] = None, *, url: Optional[str] = None) -> None:
        if client is None:
            if not url:
                raise ValueError("RedisCache requires a client or url")
            client = redis.from_url(url, decode_responses=True)
        self._r = client

    @staticmethod
    def _dump(value: Any) -> str:
        return json.dumps(value, separators=(",", ":"), default=str)

    def get_json(self, key: str) -> Any:
        raw = self._r.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry key=%s", key)
            self._r.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        payload = self._dump(value)
        if ttl_seconds:
            self._r.setex(key, int(ttl_seconds), payload)
        else:
            self._r.set(key, payload)

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self._r.delete(*keys))

    def delete_pattern(self, pattern: str) -> int:
        removed = 0
        batch: List[str] = []
        for key in self._r.scan_iter(match=pattern, count=500):
            batch.append(key)
            if len(batch) >= 500:
                removed += int(self._r.delete(*batch))
                batch = []
        if batch:
            removed += int(self._r.delete(*batch))
        return removed

    def push_capped(self, key: str, value: Any, limit: int) -> None:
        pipe = self._r.pipeline()
        pipe.lpush(key, self._dump(value))
        pipe.ltrim(key, 0, max(0, int(limit) - 1))
        pipe.execute()

    def list_json(self, key: str, limit: int) -> List[Any]:
        return [json.loads(item) for item in self._r.lrange(key, 0, max(0, int(limit) - 1))]

    def update_json(self, key: str, mutate: Callable[[Any], Any], retries: int = 10) -> Any:
        """Atomically replace the JSON value at `key` with `mutate(current)`.

        Runs under WATCH/MULTI and retries when another client writes the key
        in between. Exceptions raised by `mutate` propagate and nothing is written.
        """
        with self._r.pipeline() as pipe:
            for _ in range(retries):
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    try:
                        current = json.loads(raw) if raw is not None else None
                    except ValueError:
                        logger.warning("Replacing undecodable cache entry key=%s", key)
                        current = None
                    updated = mutate(current)
                    pipe.multi()
                    pipe.set(key, self._dump(updated))
                    pipe.execute()
                    return updated
                except redis.WatchError:
                    continue
        raise redis.WatchError(f"Too many concurrent writers for {key}")

    def ping(self) -> bool:
        return bool(self._r.ping())


class NullCache:
    """No-op cache used when no Redis is configured: every read misses."""

    def get_json(self, key: str) -> Any:
        return None

    def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        return None

    def delete(self, *keys: str) -> int:
        return 0

    def delete_pattern(self, pattern: str) -> int:
        return 0

    def push_capped(self, key: str, value: Any, limit: int) -> None:
        return None

    def list_json(self, key: str, limit: int) -> List[Any]:
        return []

    def update_json(self, key: str, mutate: Callable[[Any], Any]) -> Any:
        return mutate(None)

    def ping(self) -> bool:
        return False


def build_cache_from_env() -> CacheProtocol:
    url = (os.getenv("REDIS_URL") or "").strip()
    if not url:
        logger.info("REDIS_URL not set; caching disabled")
        return NullCache()
    return RedisCache(url=url)
