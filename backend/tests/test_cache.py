"""
Cache adapters and best-effort helpers.

`RedisCache` runs against fakeredis; failures of the cache backend must never
propagate out of `read_through` or `forget`.
"""
from __future__ import annotations

import fakeredis
import pytest

from backend.cache import keys
from backend.cache.helpers import forget, invalidate_course_content, read_through
from backend.cache.store import NullCache, RedisCache, build_cache_from_env


@pytest.fixture
def cache() -> RedisCache:
    return RedisCache(fakeredis.FakeRedis(decode_responses=True))


def test_set_and_get_json_with_ttl(cache: RedisCache):
    cache.set_json("k", {"a": [1, 2]}, 60)
    assert cache.get_json("k") == {"a": [1, 2]}
    assert 0 < cache._r.ttl("k") <= 60
    assert cache.get_json("missing") is None


def test_undecodable_entry_is_discarded(cache: RedisCache):
    cache._r.set("broken", "{not json")
    assert cache.get_json("broken") is None
    assert cache._r.exists("broken") == 0


def test_delete_pattern_only_touches_matching_keys(cache: RedisCache):
    cache.set_json("course_structure:c1", 1)
    cache.set_json("course_structure:c1:v2", 2)
    cache.set_json("course_structure:c2", 3)
    assert cache.delete_pattern(keys.course_structure_pattern("c1")) == 2
    assert cache.get_json("course_structure:c2") == 3


def test_push_capped_keeps_newest_first(cache: RedisCache):
    for i in range(5):
        cache.push_capped("log", {"n": i}, 3)
    assert cache.list_json("log", 10) == [{"n": 4}, {"n": 3}, {"n": 2}]


def test_read_through_caches_and_skips_none(cache: RedisCache):
    calls = []

    def loader():
        calls.append(1)
        return {"v": 1}

    assert read_through(cache, "rt", 60, loader) == {"v": 1}
    assert read_through(cache, "rt", 60, loader) == {"v": 1}
    assert len(calls) == 1
    assert read_through(cache, "none", 60, lambda: None) is None
    assert cache.get_json("none") is None


class _Broken(NullCache):
    def get_json(self, key):
        raise ConnectionError("down")

    def set_json(self, key, value, ttl_seconds=None):
        raise ConnectionError("down")

    def delete(self, *keys):
        raise ConnectionError("down")


def test_failing_cache_degrades_to_direct_reads(caplog):
    caplog.set_level("WARNING", logger="educademy.cache")
    assert read_through(_Broken(), "k", 60, lambda: 42) == 42
    forget(_Broken(), "a", "b")
    assert "Cache get failed" in caplog.text
    assert "Cache invalidation failed" in caplog.text


def test_invalidate_course_content_drops_all_views(cache: RedisCache):
    for key in (
        keys.course("c1"),
        keys.content_stats("c1"),
        keys.course_validation("c1"),
        keys.course_structure("c1"),
        keys.catalog_course("c1"),
        keys.catalog_page(1, 12, None, None),
        "course_content:c1:s",
    ):
        cache.set_json(key, 1)
    cache.set_json(keys.content_stats("c2"), 1)
    invalidate_course_content(cache, "c1")
    assert cache._r.keys("*") == [keys.content_stats("c2")]


def test_build_cache_from_env(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    assert isinstance(build_cache_from_env(), NullCache)
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    assert isinstance(build_cache_from_env(), RedisCache)


def test_update_json_is_atomic_read_modify_write(cache: RedisCache):
    assert cache.update_json("cfg", lambda current: {"n": 1 if current is None else current["n"] + 1}) == {"n": 1}
    seen = []

    def bump(current):
        seen.append(current["n"])
        if len(seen) == 1:
            cache._r.set("cfg", '{"n":5}')
        return {"n": current["n"] + 1}

    assert cache.update_json("cfg", bump) == {"n": 6}
    assert seen == [1, 5]

    def refuse(current):
        raise ValueError("no")

    with pytest.raises(ValueError):
        cache.update_json("cfg", refuse)
    assert cache.get_json("cfg") == {"n": 6}
    assert NullCache().update_json("cfg", lambda current: {"was": current}) == {"was": None}
