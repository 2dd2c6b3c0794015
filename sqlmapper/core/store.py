"""Ambient session binding and session creation."""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Optional

from ..db.engine import DriverResolver
from ..errors import DuplicateSessionError, SessionStateError
from .datasource import DataSource
from .session import DbSession, SessionLifecycle

logger = logging.getLogger(__name__)


class ExecutionContext:
    """One logical unit of work.

    Holds at most one ambient (scoped) session. Callers create one context per
    logical flow (request handler, task, thread) and pass it to every mapper
    call; contexts are never shared between concurrent flows.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name
        self._session: Optional[DbSession] = None

    def __repr__(self) -> str:
        return f"ExecutionContext(name={self.name!r}, session={self._session!r})"

    @property
    def session(self) -> Optional[DbSession]:
        return self._session


class DbSessionStore:
    """Creates sessions and owns the ambient-session slot of each context."""

    def __init__(self, drivers: Optional[DriverResolver] = None):
        self._drivers = drivers or DriverResolver()
        self._contexts: "weakref.WeakSet[ExecutionContext]" = weakref.WeakSet()
        self._lock = threading.Lock()

    def local_session(self, ctx: ExecutionContext) -> Optional[DbSession]:
        return ctx._session

    def _new_session(self, data_source: DataSource, lifecycle: SessionLifecycle) -> DbSession:
        driver = self._drivers.resolve(data_source.url)
        return DbSession(data_source, driver, lifecycle)

    def get_or_create(self, ctx: ExecutionContext, data_source: DataSource) -> DbSession:
        """Return the ambient session, or a new transient one for ``data_source``."""
        session = ctx._session
        if session is not None:
            return session
        return self._new_session(data_source, SessionLifecycle.TRANSIENT)

    def create(self, ctx: ExecutionContext, data_source: DataSource) -> DbSession:
        """Create a scoped session and bind it as the context's ambient session."""
        if ctx._session is not None:
            raise DuplicateSessionError(
                f"ExecutionContext already has DbSession {ctx._session.id} bound"
            )
        session = self._new_session(data_source, SessionLifecycle.SCOPED)
        ctx._session = session
        with self._lock:
            self._contexts.add(ctx)
        logger.debug(f"Bound DbSession.Id:{session.id} to {ctx!r}")
        return session

    def _unbind(self, ctx: ExecutionContext) -> Optional[DbSession]:
        session, ctx._session = ctx._session, None
        with self._lock:
            self._contexts.discard(ctx)
        return session

    def dispose(self, ctx: ExecutionContext) -> None:
        """Unbind and dispose the ambient session, if any.

        A session holding an async connection stays bound; only ``adispose``
        can release it.
        """
        session = ctx._session
        if session is not None and session.is_async and session.is_open:
            raise SessionStateError(
                f"DbSession {session.id} holds an async connection; use adispose()"
            )
        session = self._unbind(ctx)
        if session is not None:
            session.dispose()

    async def adispose(self, ctx: ExecutionContext) -> None:
        session = self._unbind(ctx)
        if session is not None:
            await session.adispose()

    def release(self, session: DbSession) -> None:
        """Dispose a transient session at the end of the call that created it."""
        session.dispose()

    async def arelease(self, session: DbSession) -> None:
        await session.adispose()

    def _bound_contexts(self) -> list:
        with self._lock:
            return list(self._contexts)

    def close(self) -> None:
        """Dispose every ambient session still bound to a known context.

        Sessions holding async connections are left for ``aclose``.
        """
        for ctx in self._bound_contexts():
            session = ctx._session
            if session is None:
                continue
            if session.is_async and session.is_open:
                logger.warning(
                    f"DbSession {session.id} holds an async connection; call aclose() to release it"
                )
                continue
            self.dispose(ctx)

    def bound_sessions(self) -> list:
        return [ctx._session for ctx in self._bound_contexts() if ctx._session is not None]

    async def aclose(self) -> None:
        for ctx in self._bound_contexts():
            await self.adispose(ctx)
