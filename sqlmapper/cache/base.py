"""Cache store interface shared by the in-memory and Redis backends."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Counters reported by a cache store."""

    hits: int
    misses: int
    size: int
    max_size: int
    backend_type: str
    connection_info: str


class CacheStore(ABC):
    """Abstract base class for cache stores.

    Stores are synchronous and must tolerate concurrent use from many
    threads; cache probes never suspend the async calling convention.
    """

    @abstractmethod
    def get(self, key: str) -> Tuple[bool, Any]:
        """Get a value from the cache.

        Args:
            key: Cache key

        Returns:
            ``(True, value)`` on a hit, ``(False, None)`` when missing/expired.
            ``None`` is a valid cached value.
        """
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set a value in the cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds (None for the store default)
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a value; True if the key existed."""
        ...

    @abstractmethod
    def clear(self, prefix: Optional[str] = None) -> int:
        """Clear entries whose key starts with ``prefix`` (all when None).

        Returns:
            Number of entries cleared
        """
        ...

    @abstractmethod
    def stats(self) -> CacheStats:
        """Get cache statistics."""
        ...

    def close(self) -> None:
        """Release backend resources."""
