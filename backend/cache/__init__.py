"""Key-value cache collaborators (Redis in deployments, a no-op cache otherwise)."""

from .store import CacheProtocol, NullCache, RedisCache, build_cache_from_env

__all__ = ["CacheProtocol", "NullCache", "RedisCache", "build_cache_from_env"]
