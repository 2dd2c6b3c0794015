"""Read-through, write-invalidating result cache coordination.

Invalidation policy: flushes triggered by writes inside a transaction are
deferred to commit; a rollback leaves the shared cache untouched. Results
read inside a transaction are staged on the session and published only at
commit, so uncommitted data never reaches the shared store.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set, Tuple

from ..config.models import CacheModelConfig, MapperConfig
from ..core.request import Intent, RequestContext
from ..core.session import DbSession
from .base import CacheStore

logger = logging.getLogger(__name__)

StagedEntry = Tuple[str, Any, Optional[int]]


class CacheManager:
    def __init__(self, config: MapperConfig, store: CacheStore):
        self._store = store
        self._models: Dict[str, CacheModelConfig] = {cache.id: cache for cache in config.caches}
        self._statement_caches: Dict[str, str] = {
            stmt.id: stmt.cache for stmt in config.statements if stmt.cache
        }
        self._flush_index: Dict[str, List[str]] = defaultdict(list)
        for cache in config.caches:
            for statement_id in cache.flush_on_execute:
                self._flush_index[statement_id].append(cache.id)
        self._pending: Dict[int, Set[str]] = {}
        self._staged: Dict[int, Dict[str, StagedEntry]] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def store(self) -> CacheStore:
        return self._store

    def cache_id_for(self, request: RequestContext) -> Optional[str]:
        if not request.use_cache or request.full_sql_id is None:
            return None
        return self._statement_caches.get(request.full_sql_id)

    def key_for(self, request: RequestContext, tag: str) -> Optional[str]:
        cache_id = self.cache_id_for(request)
        if cache_id is None:
            return None
        return f"{cache_id}:{tag}:{request.fingerprint()}"

    def try_get(
        self, request: RequestContext, tag: str, session: Optional[DbSession] = None
    ) -> Tuple[bool, Any]:
        """Probe the cache. ``session`` is the caller's ambient session, if any.

        Inside a transaction that already queued a flush of this cache, the
        shared entry is stale for that session, so only its own staged entries
        can hit.
        """
        key = self.key_for(request, tag)
        if key is None:
            return False, None

        if session is not None and session.in_transaction:
            cache_id = key.split(":", 1)[0]
            with self._lock:
                staged = self._staged.get(session.id, {}).get(key)
                flushed = cache_id in self._pending.get(session.id, ())
            if staged is not None:
                return True, staged[1]
            if flushed:
                return False, None

        hit, value = self._store.get(key)
        if hit:
            logger.debug(f"Cache HIT: {request.full_sql_id}")
        return hit, value

    def put(self, session: Optional[DbSession], request: RequestContext, tag: str, value: Any) -> None:
        key = self.key_for(request, tag)
        if key is None:
            return
        cache_id = key.split(":", 1)[0]
        ttl = self._models[cache_id].flush_interval

        if session is not None and session.in_transaction:
            with self._lock:
                self._staged.setdefault(session.id, {})[key] = (cache_id, value, ttl)
            return
        self._store.set(key, value, ttl)

    def record_execution(self, session: DbSession, request: RequestContext) -> None:
        """Note that ``session`` ran ``request``; writes schedule cache flushes."""
        if request.intent is not Intent.WRITE or request.full_sql_id is None:
            return
        cache_ids = self._flush_index.get(request.full_sql_id)
        if not cache_ids:
            return

        if session.in_transaction:
            with self._lock:
                self._pending.setdefault(session.id, set()).update(cache_ids)
                staged = self._staged.get(session.id)
                if staged:
                    for key in [k for k, entry in staged.items() if entry[0] in cache_ids]:
                        del staged[key]
            logger.debug(
                f"Deferred flush of {sorted(cache_ids)} until DbSession {session.id} commits"
            )
            return

        for cache_id in cache_ids:
            self.flush(cache_id)

    def record_commit(self, session: DbSession) -> None:
        """Apply the session's deferred flushes, then publish its staged results."""
        with self._lock:
            pending = self._pending.pop(session.id, set())
            staged = self._staged.pop(session.id, {})
        for cache_id in sorted(pending):
            self.flush(cache_id)
        for key, (_, value, ttl) in staged.items():
            self._store.set(key, value, ttl)

    def record_rollback(self, session: DbSession) -> None:
        """Drop everything the session deferred; the shared cache is not touched."""
        self.discard(session)

    def discard(self, session: DbSession) -> None:
        with self._lock:
            pending = self._pending.pop(session.id, set())
            staged = self._staged.pop(session.id, {})
        if pending or staged:
            logger.debug(
                f"Discarded {len(pending)} deferred flushes and {len(staged)} staged entries "
                f"of DbSession {session.id}"
            )

    def has_pending(self, session: DbSession) -> bool:
        with self._lock:
            return bool(self._pending.get(session.id) or self._staged.get(session.id))

    def flush(self, cache_id: str) -> int:
        count = self._store.clear(f"{cache_id}:")
        logger.debug(f"Flushed cache {cache_id} ({count} entries)")
        return count

    def flush_all(self) -> int:
        return sum(self.flush(cache_id) for cache_id in self._models)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._lock:
            self._pending.clear()
            self._staged.clear()
        self._store.close()
