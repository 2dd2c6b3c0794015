"""Result caching for sqlmapper.

Supports in-memory caching (default) and Redis (shared between processes).
Configure via ``settings.cache_url`` or the SQLMAPPER_CACHE_URL environment
variable.

Examples:
    In-memory (default): None or empty
    Redis: redis://localhost:6379/0
"""

from __future__ import annotations

from typing import Optional

from .base import CacheStats, CacheStore
from .manager import CacheManager
from .memory import MemoryCacheStore


def create_cache_store(
    url: Optional[str] = None,
    max_size: int = 10000,
    default_ttl: Optional[int] = None,
) -> CacheStore:
    """Build the cache store for ``url``: memory when empty, Redis for redis:// URLs."""
    if url and url.startswith(("redis://", "rediss://", "unix://")):
        from .redis import RedisCacheStore

        return RedisCacheStore(redis_url=url, default_ttl=default_ttl)
    if url:
        from ..errors import ConfigurationError

        raise ConfigurationError(f"Unsupported cache URL: {url}")
    return MemoryCacheStore(max_size=max_size, default_ttl=default_ttl)


__all__ = [
    "CacheManager",
    "CacheStats",
    "CacheStore",
    "MemoryCacheStore",
    "create_cache_store",
]
