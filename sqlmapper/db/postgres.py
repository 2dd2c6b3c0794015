"""PostgreSQL driver for the async calling convention."""

from __future__ import annotations

import logging
import re
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import asyncpg

from ..errors import ConfigurationError
from .base import Driver, IsolationLevel, Row, Rows, sanitize_connection_string

logger = logging.getLogger(__name__)

_NAMED_PARAM = re.compile(r"(?<![:\w]):([A-Za-z_][A-Za-z0-9_]*)")


def _translate_sql(sql: str, parameters: Any = None) -> Tuple[str, List[Any]]:
    """Translate SQLite-style SQL to PostgreSQL.

    - Converts :name placeholders (mapping parameters) to $1, $2, etc.
    - Converts ? placeholders (sequence parameters) to $1, $2, etc.

    Placeholders inside string literals are not recognised.
    """
    if parameters is None:
        return sql, []

    if isinstance(parameters, Mapping):
        order: List[str] = []

        def _replace(match: "re.Match[str]") -> str:
            name = match.group(1)
            if name not in order:
                order.append(name)
            return f"${order.index(name) + 1}"

        translated = _NAMED_PARAM.sub(_replace, sql)
        try:
            return translated, [parameters[name] for name in order]
        except KeyError as e:
            raise ConfigurationError(f"Missing SQL parameter: {e.args[0]}") from e

    result = []
    param_count = 0
    for ch in sql:
        if ch == "?":
            param_count += 1
            result.append(f"${param_count}")
        else:
            result.append(ch)
    return "".join(result), list(parameters)


class PostgreSQLCursor:
    """Materialised result of one statement, exposed through the async cursor protocol."""

    def __init__(self, records: Sequence[Any], columns: Sequence[str], rowcount: int):
        self._rows: List[Row] = [tuple(r) for r in records]
        self._position = 0
        self.rowcount = rowcount
        self.description = [(name, None, None, None, None, None, None) for name in columns] or None

    async def fetchone(self) -> Optional[Row]:
        if self._position >= len(self._rows):
            return None
        row = self._rows[self._position]
        self._position += 1
        return row

    async def fetchall(self) -> Rows:
        rows = self._rows[self._position :]
        self._position = len(self._rows)
        return rows

    async def close(self) -> None:
        self._rows = []


def _rowcount(status: Optional[str], fetched: int) -> int:
    # Status looks like "UPDATE 5" or "INSERT 0 1"
    try:
        return int(status.split()[-1]) if status else fetched
    except (ValueError, IndexError):
        return fetched


class PostgreSQLConnection:
    """Wrapper around asyncpg connection to match the async connection protocol."""

    def __init__(self, conn: "asyncpg.Connection"):
        self._conn = conn
        self._transaction: Optional[Any] = None

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    async def begin(self, isolation: IsolationLevel = IsolationLevel.UNSPECIFIED) -> None:
        level = None if isolation is IsolationLevel.UNSPECIFIED else isolation.value
        self._transaction = self._conn.transaction(isolation=level)
        await self._transaction.start()

    async def execute(self, sql: str, parameters: Any = None) -> PostgreSQLCursor:
        translated, args = _translate_sql(sql, parameters)
        statement = await self._conn.prepare(translated)
        records = await statement.fetch(*args)
        columns = [attr.name for attr in statement.get_attributes()]
        rowcount = _rowcount(statement.get_statusmsg(), len(records))
        return PostgreSQLCursor(records, columns, rowcount)

    async def commit(self) -> None:
        """Commit the open transaction; outside one PostgreSQL auto-commits."""
        if self._transaction is not None:
            transaction, self._transaction = self._transaction, None
            await transaction.commit()

    async def rollback(self) -> None:
        if self._transaction is not None:
            transaction, self._transaction = self._transaction, None
            await transaction.rollback()

    async def close(self) -> None:
        await self._conn.close()


class PostgreSQLDriver(Driver):
    """PostgreSQL driver using asyncpg. Only the async calling convention is supported."""

    name = "postgresql"

    def __init__(self, command_timeout: float = 60):
        self._command_timeout = command_timeout

    def connect(self, url: str):
        raise ConfigurationError(
            f"PostgreSQL endpoint {sanitize_connection_string(url)} is async-only; "
            "use the *_async mapper operations"
        )

    async def aconnect(self, url: str) -> PostgreSQLConnection:
        conn = await asyncpg.connect(url, command_timeout=self._command_timeout)
        logger.debug(f"Opened PostgreSQL connection: {sanitize_connection_string(url)}")
        return PostgreSQLConnection(conn)
