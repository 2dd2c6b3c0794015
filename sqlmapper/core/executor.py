"""Statement execution against a session's connection."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Iterator, List

from ..db.base import AsyncCursor, Cursor
from ..errors import ExecutionError, MapperError
from .request import RequestContext
from .session import DbSession

logger = logging.getLogger(__name__)


def split_statements(sql: str) -> List[str]:
    """Split a batch on top-level semicolons, ignoring quoted text."""
    statements: List[str] = []
    current: List[str] = []
    quote = None
    for ch in sql:
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == ";":
            text = "".join(current).strip()
            if text:
                statements.append(text)
            current = []
            continue
        current.append(ch)
    text = "".join(current).strip()
    if text:
        statements.append(text)
    return statements


def _fault(request: RequestContext, session: DbSession, e: Exception) -> ExecutionError:
    return ExecutionError(
        f"Failed to execute {request.full_sql_id or 'statement'} on "
        f"{session.data_source.name} (DbSession {session.id}): {e}",
        cause=e,
        sql=request.real_sql,
    )


class CommandExecutor:
    """Runs a resolved request on a session; opens the connection on first use.

    Driver faults are raised as ``ExecutionError`` with the original
    exception chained.
    """

    def _run(self, session: DbSession, request: RequestContext, sql: str) -> Cursor:
        try:
            conn = session.open()
            return conn.execute(sql, request.parameters)
        except MapperError:
            raise
        except Exception as e:
            raise _fault(request, session, e) from e

    async def _run_async(self, session: DbSession, request: RequestContext, sql: str) -> AsyncCursor:
        try:
            conn = await session.aopen()
            return await conn.execute(sql, request.parameters)
        except MapperError:
            raise
        except Exception as e:
            raise _fault(request, session, e) from e

    def execute_non_query(self, session: DbSession, request: RequestContext) -> int:
        cursor = self._run(session, request, request.real_sql)
        try:
            return cursor.rowcount
        finally:
            cursor.close()

    async def execute_non_query_async(self, session: DbSession, request: RequestContext) -> int:
        cursor = await self._run_async(session, request, request.real_sql)
        try:
            return cursor.rowcount
        finally:
            await cursor.close()

    def execute_scalar(self, session: DbSession, request: RequestContext) -> Any:
        cursor = self._run(session, request, request.real_sql)
        try:
            row = cursor.fetchone()
        except Exception as e:
            raise _fault(request, session, e) from e
        finally:
            cursor.close()
        return row[0] if row else None

    async def execute_scalar_async(self, session: DbSession, request: RequestContext) -> Any:
        cursor = await self._run_async(session, request, request.real_sql)
        try:
            row = await cursor.fetchone()
        except Exception as e:
            raise _fault(request, session, e) from e
        finally:
            await cursor.close()
        return row[0] if row else None

    def execute_reader(self, session: DbSession, request: RequestContext) -> Cursor:
        return self._run(session, request, request.real_sql)

    async def execute_reader_async(self, session: DbSession, request: RequestContext) -> AsyncCursor:
        return await self._run_async(session, request, request.real_sql)

    def execute_multiple(self, session: DbSession, request: RequestContext) -> Iterator[Cursor]:
        """Yield one cursor per statement of the batch, executing each on demand."""
        for sql in split_statements(request.real_sql or ""):
            yield self._run(session, request, sql)

    async def execute_multiple_async(
        self, session: DbSession, request: RequestContext
    ) -> AsyncIterator[AsyncCursor]:
        for sql in split_statements(request.real_sql or ""):
            yield await self._run_async(session, request, sql)
