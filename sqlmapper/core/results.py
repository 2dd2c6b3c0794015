"""Tabular results and streamed multi-result handles."""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Tuple,
)

from ..db.base import AsyncCursor, Cursor
from ..errors import ExecutionError
from .materializer import RowMaterializer, column_names
from .request import RequestContext
from .session import DbSession

logger = logging.getLogger(__name__)


@dataclass
class DataTable:
    """Column names plus raw rows of one result set."""

    columns: List[str] = field(default_factory=list)
    rows: List[Tuple[Any, ...]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Tuple[Any, ...]]:
        return iter(self.rows)

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]

    def column(self, name: str) -> List[Any]:
        index = self.columns.index(name)
        return [row[index] for row in self.rows]

    @classmethod
    def from_cursor(cls, cursor: Cursor) -> "DataTable":
        try:
            return cls(column_names(cursor), [tuple(row) for row in cursor.fetchall()])
        finally:
            cursor.close()

    @classmethod
    async def from_cursor_async(cls, cursor: AsyncCursor) -> "DataTable":
        try:
            return cls(column_names(cursor), [tuple(row) for row in await cursor.fetchall()])
        finally:
            await cursor.close()


@dataclass
class DataSet:
    tables: List[DataTable] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.tables)

    def __getitem__(self, index: int) -> DataTable:
        return self.tables[index]

    def __iter__(self) -> Iterator[DataTable]:
        return iter(self.tables)


class MultipleResult:
    """Live handle over the result sets of a statement batch.

    Each ``read*`` call executes and consumes the next statement. The
    session stays reserved until ``close()``; a transient session is
    released then.
    """

    def __init__(
        self,
        request: RequestContext,
        session: DbSession,
        cursors: Iterator[Cursor],
        materializer: RowMaterializer,
        release: Optional[Callable[[DbSession], None]] = None,
    ):
        self.request = request
        self.session = session
        self._cursors = cursors
        self._materializer = materializer
        self._release = release
        self._stack = ExitStack()
        self._stack.enter_context(session.guard())
        self.closed = False

    def __enter__(self) -> "MultipleResult":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _next_cursor(self) -> Cursor:
        if self.closed:
            raise ExecutionError("MultipleResult is closed")
        cursor = next(self._cursors, None)
        if cursor is None:
            raise ExecutionError(
                f"No more result sets for {self.request.full_sql_id or 'statement'}"
            )
        return cursor

    def read(self, result_type: Any = None) -> list:
        cursor = self._next_cursor()
        try:
            return self._materializer.to_list(self.request, cursor, result_type)
        finally:
            cursor.close()

    def read_single(self, result_type: Any = None) -> Any:
        cursor = self._next_cursor()
        try:
            return self._materializer.to_single(self.request, cursor, result_type)
        finally:
            cursor.close()

    def read_table(self) -> DataTable:
        return DataTable.from_cursor(self._next_cursor())

    def read_all_tables(self) -> DataSet:
        tables = []
        for cursor in self._cursors:
            tables.append(DataTable.from_cursor(cursor))
        return DataSet(tables)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            close = getattr(self._cursors, "close", None)
            if close is not None:
                close()
            self._stack.close()
        finally:
            if self._release is not None:
                self._release(self.session)


class AsyncMultipleResult:
    """Async twin of :class:`MultipleResult`."""

    def __init__(
        self,
        request: RequestContext,
        session: DbSession,
        cursors: AsyncIterator[AsyncCursor],
        materializer: RowMaterializer,
        release: Optional[Callable[[DbSession], Awaitable[None]]] = None,
    ):
        self.request = request
        self.session = session
        self._cursors = cursors
        self._materializer = materializer
        self._release = release
        self._stack = ExitStack()
        self._stack.enter_context(session.guard())
        self.closed = False

    async def __aenter__(self) -> "AsyncMultipleResult":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _next_cursor(self) -> AsyncCursor:
        if self.closed:
            raise ExecutionError("MultipleResult is closed")
        try:
            return await self._cursors.__anext__()
        except StopAsyncIteration:
            raise ExecutionError(
                f"No more result sets for {self.request.full_sql_id or 'statement'}"
            ) from None

    async def read(self, result_type: Any = None) -> list:
        cursor = await self._next_cursor()
        try:
            return await self._materializer.to_list_async(self.request, cursor, result_type)
        finally:
            await cursor.close()

    async def read_single(self, result_type: Any = None) -> Any:
        cursor = await self._next_cursor()
        try:
            return await self._materializer.to_single_async(self.request, cursor, result_type)
        finally:
            await cursor.close()

    async def read_table(self) -> DataTable:
        return await DataTable.from_cursor_async(await self._next_cursor())

    async def read_all_tables(self) -> DataSet:
        tables = []
        async for cursor in self._cursors:
            tables.append(await DataTable.from_cursor_async(cursor))
        return DataSet(tables)

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            aclose = getattr(self._cursors, "aclose", None)
            if aclose is not None:
                await aclose()
            self._stack.close()
        finally:
            if self._release is not None:
                await self._release(self.session)
