"""Redis cache store for multi-process deployments."""

from __future__ import annotations

import logging
import pickle
import re
from typing import Any, Optional, Tuple

import redis

from .base import CacheStats, CacheStore

logger = logging.getLogger(__name__)


class RedisCacheStore(CacheStore):
    """Redis-backed cache shared between mapper instances.

    Values are pickled, so only processes that trust each other should share
    a Redis database.
    """

    def __init__(
        self,
        redis_url: str,
        prefix: str = "sqlmapper:",
        default_ttl: Optional[int] = 3600,
        client: Optional["redis.Redis"] = None,
    ):
        """Build the client; redis-py connects on the first command.

        Args:
            redis_url: redis://, rediss:// or unix:// URL
            prefix: Namespace prepended to every key
            default_ttl: Seconds applied when ``set`` gets no TTL
            client: Pre-built client (tests)
        """
        self._redis_url = redis_url
        self._prefix = prefix
        self._default_ttl = default_ttl
        self._hits = 0
        self._misses = 0
        logger.info(f"Connecting to Redis: {self._sanitize_url(redis_url)}")
        self._redis = client or redis.Redis.from_url(
            redis_url,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    def _make_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Remove password from URL for logging."""
        return re.sub(r":([^:@/]+)@", r":***@", url)

    def get(self, key: str) -> Tuple[bool, Any]:
        data = self._redis.get(self._make_key(key))
        if data is None:
            self._misses += 1
            return False, None

        self._hits += 1
        return True, pickle.loads(data)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = ttl or self._default_ttl
        self._redis.set(self._make_key(key), pickle.dumps(value), ex=ttl)

    def delete(self, key: str) -> bool:
        return self._redis.delete(self._make_key(key)) > 0

    def clear(self, prefix: Optional[str] = None) -> int:
        pattern = self._make_key(f"{_escape_glob(prefix or '')}*")
        count = 0

        # Incremental SCAN over the prefix
        for key in self._redis.scan_iter(match=pattern, count=100):
            count += self._redis.delete(key)

        return count

    def stats(self) -> CacheStats:
        info = self._redis.info("keyspace")
        db_info = info.get("db0", {})
        size = db_info.get("keys", 0) if isinstance(db_info, dict) else 0

        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=size,
            max_size=-1,  # Redis doesn't have fixed size
            backend_type="redis",
            connection_info=self._sanitize_url(self._redis_url),
        )

    def close(self) -> None:
        self._redis.close()
        logger.info("Redis connection closed")


def _escape_glob(text: str) -> str:
    return re.sub(r"([*?\[\]\\])", r"\\\1", text)
