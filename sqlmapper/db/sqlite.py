"""SQLite driver: sqlite3 for the sync path, aiosqlite for the async path."""

from __future__ import annotations

import logging
import os
import sqlite3
from typing import Any

import aiosqlite

from .base import Driver, IsolationLevel

logger = logging.getLogger(__name__)

_PRAGMAS = (
    "PRAGMA synchronous=NORMAL",
    "PRAGMA temp_store=memory",
    "PRAGMA busy_timeout=5000",
)


def _begin_statement(isolation: IsolationLevel) -> str:
    # SQLite is always serializable; IMMEDIATE takes the write lock up front.
    if isolation in (IsolationLevel.REPEATABLE_READ, IsolationLevel.SERIALIZABLE):
        return "BEGIN IMMEDIATE"
    return "BEGIN"


def _is_memory(path: str) -> bool:
    return path == ":memory:" or path.startswith("file::memory:")


def _parameters(parameters: Any) -> Any:
    return () if parameters is None else parameters


class SQLiteConnection:
    """Wrapper around a sqlite3 connection in autocommit mode."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    @property
    def raw(self) -> sqlite3.Connection:
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    def begin(self, isolation: IsolationLevel = IsolationLevel.UNSPECIFIED) -> None:
        self._conn.execute(_begin_statement(isolation))

    def execute(self, sql: str, parameters: Any = None) -> sqlite3.Cursor:
        return self._conn.execute(sql, _parameters(parameters))

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()


class AsyncSQLiteConnection:
    """Wrapper around aiosqlite connection to match our interface."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    @property
    def raw(self) -> aiosqlite.Connection:
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    async def begin(self, isolation: IsolationLevel = IsolationLevel.UNSPECIFIED) -> None:
        await self._conn.execute(_begin_statement(isolation))

    async def execute(self, sql: str, parameters: Any = None) -> aiosqlite.Cursor:
        return await self._conn.execute(sql, _parameters(parameters))

    async def commit(self) -> None:
        await self._conn.commit()

    async def rollback(self) -> None:
        await self._conn.rollback()

    async def close(self) -> None:
        await self._conn.close()


class SQLiteDriver(Driver):
    """SQLite driver for development and small-scale deployments.

    Connections run with ``isolation_level=None`` so statements outside an
    explicit transaction commit immediately.
    """

    name = "sqlite"

    def __init__(self, timeout: float = 30.0):
        self._timeout = timeout

    @staticmethod
    def path_from_url(url: str) -> str:
        from .engine import parse_database_url

        return parse_database_url(url)["path"]

    def _prepare_path(self, path: str) -> None:
        if not _is_memory(path):
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    def connect(self, url: str) -> SQLiteConnection:
        path = self.path_from_url(url)
        self._prepare_path(path)
        conn = sqlite3.connect(
            path,
            timeout=self._timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        if not _is_memory(path):
            conn.execute("PRAGMA journal_mode=WAL")
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        logger.debug(f"Opened SQLite connection: {path}")
        return SQLiteConnection(conn)

    async def aconnect(self, url: str) -> AsyncSQLiteConnection:
        path = self.path_from_url(url)
        self._prepare_path(path)
        conn = await aiosqlite.connect(
            path,
            timeout=self._timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        if not _is_memory(path):
            await conn.execute("PRAGMA journal_mode=WAL")
        for pragma in _PRAGMAS:
            await conn.execute(pragma)
        logger.debug(f"Opened aiosqlite connection: {path}")
        return AsyncSQLiteConnection(conn)
