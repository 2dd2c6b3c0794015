"""Unit-of-work sessions: one connection, optional transaction, strict state machine."""

from __future__ import annotations

import itertools
import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Iterator, Optional

from ..db.base import AsyncConnection, Connection, Driver, IsolationLevel
from ..errors import SessionBusyError, SessionStateError
from .datasource import DataSource

logger = logging.getLogger(__name__)

_session_ids = itertools.count(1)


class SessionLifecycle(str, Enum):
    TRANSIENT = "transient"
    SCOPED = "scoped"


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    DISPOSED = "disposed"


_TRANSITIONS = {
    SessionState.IDLE: {SessionState.ACTIVE, SessionState.DISPOSED},
    SessionState.ACTIVE: {SessionState.COMMITTED, SessionState.ROLLED_BACK, SessionState.DISPOSED},
    SessionState.COMMITTED: {SessionState.DISPOSED},
    SessionState.ROLLED_BACK: {SessionState.DISPOSED},
    SessionState.DISPOSED: set(),
}


class DbSession:
    """A unit of work against one data source.

    The connection is opened lazily on first use, either synchronously
    (``open``) or asynchronously (``aopen``); a session opened one way
    cannot be used the other way.
    """

    def __init__(self, data_source: DataSource, driver: Driver, lifecycle: SessionLifecycle):
        self.id = next(_session_ids)
        self.data_source = data_source
        self.lifecycle = lifecycle
        self.state = SessionState.IDLE
        self.isolation: Optional[IsolationLevel] = None
        self.in_transaction = False
        self._driver = driver
        self._connection: Any = None
        self._is_async: Optional[bool] = None
        self._guard = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"DbSession(id={self.id}, data_source={self.data_source.name!r}, "
            f"lifecycle={self.lifecycle.value}, state={self.state.value})"
        )

    @property
    def connection(self) -> Any:
        return self._connection

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    @property
    def is_async(self) -> bool:
        return bool(self._is_async)

    def _transition(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise SessionStateError(
                f"DbSession {self.id} cannot move from {self.state.value} to {target.value}"
            )
        self.state = target

    def _check_usable(self, want_async: bool) -> None:
        if self.state is SessionState.DISPOSED:
            raise SessionStateError(f"DbSession {self.id} is disposed")
        if self._is_async is not None and self._is_async != want_async:
            mode = "async" if self._is_async else "sync"
            raise SessionStateError(f"DbSession {self.id} is bound to a {mode} connection")

    @contextmanager
    def guard(self) -> Iterator["DbSession"]:
        """Hold exclusive use of the session for one operation."""
        if not self._guard.acquire(blocking=False):
            raise SessionBusyError(f"DbSession {self.id} is already in use by another operation")
        try:
            yield self
        finally:
            self._guard.release()

    # Connection

    def open(self) -> Connection:
        self._check_usable(want_async=False)
        if self._connection is None:
            self._connection = self._driver.connect(self.data_source.url)
            self._is_async = False
        return self._connection

    async def aopen(self) -> AsyncConnection:
        self._check_usable(want_async=True)
        if self._connection is None:
            self._connection = await self._driver.aconnect(self.data_source.url)
            self._is_async = True
        return self._connection

    # Lifecycle

    def begin(self) -> None:
        self._transition(SessionState.ACTIVE)

    def begin_transaction(self, isolation: IsolationLevel = IsolationLevel.UNSPECIFIED) -> None:
        if self.state is SessionState.IDLE:
            self.begin()
        conn = self.open()
        conn.begin(isolation)
        self.in_transaction = True
        self.isolation = isolation

    async def abegin_transaction(
        self, isolation: IsolationLevel = IsolationLevel.UNSPECIFIED
    ) -> None:
        if self.state is SessionState.IDLE:
            self.begin()
        conn = await self.aopen()
        await conn.begin(isolation)
        self.in_transaction = True
        self.isolation = isolation

    def commit(self) -> None:
        self._check_usable(want_async=False)
        if self.in_transaction:
            self._connection.commit()
            self.in_transaction = False
        self._transition(SessionState.COMMITTED)

    async def acommit(self) -> None:
        self._check_usable(want_async=True)
        if self.in_transaction:
            await self._connection.commit()
            self.in_transaction = False
        self._transition(SessionState.COMMITTED)

    def rollback(self) -> None:
        self._check_usable(want_async=False)
        if self.in_transaction:
            self.in_transaction = False
            self._connection.rollback()
        self._transition(SessionState.ROLLED_BACK)

    async def arollback(self) -> None:
        self._check_usable(want_async=True)
        if self.in_transaction:
            self.in_transaction = False
            await self._connection.rollback()
        self._transition(SessionState.ROLLED_BACK)

    def end(self) -> None:
        """Finish a scoped session; an unfinished transaction is rolled back."""
        if self.in_transaction:
            logger.warning(f"DbSession {self.id} ended with an open transaction; rolling back")
            self.rollback()

    async def aend(self) -> None:
        if self.in_transaction:
            logger.warning(f"DbSession {self.id} ended with an open transaction; rolling back")
            await self.arollback()

    def dispose(self) -> bool:
        """Close the connection and mark the session disposed.

        Returns False if the session was already disposed.
        """
        if self.state is SessionState.DISPOSED:
            return False
        if self._is_async and self._connection is not None:
            raise SessionStateError(
                f"DbSession {self.id} holds an async connection; use adispose()"
            )
        connection, self._connection = self._connection, None
        self.in_transaction = False
        self._transition(SessionState.DISPOSED)
        if connection is not None:
            connection.close()
        logger.debug(f"Disposed DbSession.Id:{self.id}")
        return True

    async def adispose(self) -> bool:
        if self.state is SessionState.DISPOSED:
            return False
        connection, self._connection = self._connection, None
        self.in_transaction = False
        self._transition(SessionState.DISPOSED)
        if connection is not None:
            if self._is_async:
                await connection.close()
            else:
                connection.close()
        logger.debug(f"Disposed DbSession.Id:{self.id}")
        return True
