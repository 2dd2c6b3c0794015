"""In-memory cache store for single-process deployments and testing."""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from .base import CacheStats, CacheStore

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Stored value plus its monotonic expiry deadline, if any."""

    value: Any
    expires_at: Optional[float] = None  # monotonic deadline

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return False
        return now > self.expires_at


class MemoryCacheStore(CacheStore):
    """Thread-safe in-memory LRU cache with TTL support.

    Entries live in this process only; mappers in other processes need Redis.
    Values are deep-copied on the way in and out, so callers never share
    the stored object.
    """

    def __init__(
        self,
        max_size: int = 10000,
        default_ttl: Optional[int] = None,
        clock=time.monotonic,
    ):
        """Create an empty store.

        Args:
            max_size: Entry bound; the least recently used entry is evicted past it
            default_ttl: TTL in seconds applied when ``set`` gets none
            clock: Monotonic time source
        """
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        logger.info(f"Initialized in-memory cache (max_size: {max_size})")

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, key: str) -> Tuple[bool, Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return False, None

            if entry.is_expired(self._clock()):
                del self._cache[key]
                self._misses += 1
                logger.debug(f"Cache EXPIRED: {key}")
                return False, None

            self._cache.move_to_end(key)
            self._hits += 1
            return True, copy.deepcopy(entry.value)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = ttl or self._default_ttl
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
            else:
                while len(self._cache) >= self._max_size:
                    evicted, _ = self._cache.popitem(last=False)
                    logger.debug(f"Cache EVICT: {evicted}")
            self._cache[key] = CacheEntry(value=copy.deepcopy(value), expires_at=expires_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self, prefix: Optional[str] = None) -> int:
        with self._lock:
            if prefix is None:
                count = len(self._cache)
                self._cache.clear()
                return count

            keys_to_delete = [key for key in self._cache if key.startswith(prefix)]
            for key in keys_to_delete:
                del self._cache[key]
            return len(keys_to_delete)

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=len(self._cache),
            max_size=self._max_size,
            backend_type="memory",
            connection_info="in-process",
        )

    def close(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.info("In-memory cache closed")
