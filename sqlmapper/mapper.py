"""SqlMapper: request execution, sessions, transactions and result caching.

Every operation takes an :class:`ExecutionContext` that carries the
caller's ambient session, and a :class:`RequestContext` describing the
statement. Sync and ``*_async`` operations run the same pipeline:

1. default the intent (Write for mutations, Read for queries) unless set;
2. resolve the statement text;
3. probe the cache; a hit returns without touching any session;
4. reuse the ambient session, or elect a data source and open a transient one;
5. execute and materialize (the only place the async path suspends);
6. record the execution and cache the result;
7. log and re-raise any fault from steps 4-6;
8. dispose a transient session on every exit path.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, ExitStack, asynccontextmanager, contextmanager
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterator,
    Mapping,
    Optional,
    Type,
    TypeVar,
)

from .config.loader import DictConfigLoader
from .config.models import MapperConfig
from .core.convert import convert_value
from .core.request import Intent, RequestContext
from .core.results import AsyncMultipleResult, DataSet, DataTable, MultipleResult
from .core.session import DbSession, SessionLifecycle
from .core.store import ExecutionContext
from .db.base import IsolationLevel
from .errors import (
    DuplicateSessionError,
    MapperError,
    NoActiveSessionError,
    SessionStateError,
)
from .options import MapperOptions

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _tag(kind: str, result_type: Any = None) -> str:
    if result_type is None:
        return kind
    name = getattr(result_type, "__qualname__", None) or repr(result_type)
    module = getattr(result_type, "__module__", "")
    return f"{kind}:{module}.{name}" if module and module != "builtins" else f"{kind}:{name}"


class SqlMapper:
    def __init__(self, options: Optional[MapperOptions] = None):
        self.options = (options or MapperOptions()).setup()
        self._closed = False

    @classmethod
    def from_config(cls, data: Mapping[str, Any], **kwargs: Any) -> "SqlMapper":
        """Build a mapper from an in-memory configuration mapping."""
        return cls(MapperOptions(config_loader=DictConfigLoader(data), **kwargs))

    @property
    def config(self) -> MapperConfig:
        return self.options.config

    @property
    def session_store(self):
        return self.options.session_store

    @property
    def data_source_filter(self):
        return self.options.data_source_filter

    @property
    def command_executor(self):
        return self.options.command_executor

    @property
    def materializer(self):
        return self.options.materializer

    @property
    def cache_manager(self):
        return self.options.cache_manager

    @property
    def sql_builder(self):
        return self.options.sql_builder

    @property
    def closed(self) -> bool:
        return self._closed

    def new_context(self, name: Optional[str] = None) -> ExecutionContext:
        return ExecutionContext(name)

    # Pipeline

    def _check_open(self) -> None:
        if self._closed:
            raise MapperError("SqlMapper is closed")

    def _setup_request(self, request: RequestContext) -> None:
        self._check_open()
        self.sql_builder.build_sql(request, self.config)
        request.mark_resolved()

    def _acquire_session(self, ctx: ExecutionContext, request: RequestContext) -> DbSession:
        session = self.session_store.local_session(ctx)
        if session is not None:
            return session
        data_source = self.data_source_filter.elect(request)
        return self.session_store.get_or_create(ctx, data_source)

    def _log_failure(self, request: RequestContext, session: Optional[DbSession]) -> None:
        logger.exception(
            f"SqlMapper failed to run {request.full_sql_id or request.real_sql!r} "
            f"(intent={request.intent.value}, "
            f"session={session.id if session else None}, "
            f"data_source={session.data_source.name if session else None})"
        )

    def _execute_wrap(
        self,
        ctx: ExecutionContext,
        request: RequestContext,
        tag: str,
        execute: Callable[[DbSession], T],
    ) -> T:
        self._setup_request(request)
        hit, cached = self.cache_manager.try_get(
            request, tag, self.session_store.local_session(ctx)
        )
        if hit:
            return cached

        session = None
        try:
            session = self._acquire_session(ctx, request)
            with session.guard():
                result = execute(session)
            self.cache_manager.record_execution(session, request)
            self.cache_manager.put(session, request, tag, result)
            return result
        except Exception:
            self._log_failure(request, session)
            raise
        finally:
            if session is not None and session.lifecycle is SessionLifecycle.TRANSIENT:
                self.session_store.release(session)

    async def _execute_wrap_async(
        self,
        ctx: ExecutionContext,
        request: RequestContext,
        tag: str,
        execute: Callable[[DbSession], Awaitable[T]],
    ) -> T:
        self._setup_request(request)
        hit, cached = self.cache_manager.try_get(
            request, tag, self.session_store.local_session(ctx)
        )
        if hit:
            return cached

        session = None
        try:
            session = self._acquire_session(ctx, request)
            with session.guard():
                result = await execute(session)
            self.cache_manager.record_execution(session, request)
            self.cache_manager.put(session, request, tag, result)
            return result
        except Exception:
            self._log_failure(request, session)
            raise
        finally:
            if session is not None and session.lifecycle is SessionLifecycle.TRANSIENT:
                await self.session_store.arelease(session)

    # Sync operations

    def execute(self, ctx: ExecutionContext, request: RequestContext) -> int:
        """Run a statement and return the affected row count."""
        request.default_intent(Intent.WRITE)
        return self._execute_wrap(
            ctx,
            request,
            _tag("execute"),
            lambda session: self.command_executor.execute_non_query(session, request),
        )

    def execute_scalar(
        self, ctx: ExecutionContext, request: RequestContext, result_type: Optional[Type[T]] = None
    ) -> Any:
        """Return the first column of the first row, converted to ``result_type``."""
        request.default_intent(Intent.WRITE)

        def run(session: DbSession) -> Any:
            value = self.command_executor.execute_scalar(session, request)
            return convert_value(value, result_type)

        return self._execute_wrap(ctx, request, _tag("scalar", result_type), run)

    def query(
        self, ctx: ExecutionContext, request: RequestContext, result_type: Any = None
    ) -> list:
        request.default_intent(Intent.READ)

        def run(session: DbSession) -> list:
            cursor = self.command_executor.execute_reader(session, request)
            try:
                return self.materializer.to_list(request, cursor, result_type)
            finally:
                cursor.close()

        return self._execute_wrap(ctx, request, _tag("query", result_type), run)

    def query_single(
        self, ctx: ExecutionContext, request: RequestContext, result_type: Any = None
    ) -> Any:
        """Return the first row, or None when the result is empty."""
        request.default_intent(Intent.READ)

        def run(session: DbSession) -> Any:
            cursor = self.command_executor.execute_reader(session, request)
            try:
                return self.materializer.to_single(request, cursor, result_type)
            finally:
                cursor.close()

        return self._execute_wrap(ctx, request, _tag("single", result_type), run)

    def get_data_table(self, ctx: ExecutionContext, request: RequestContext) -> DataTable:
        request.default_intent(Intent.READ)
        return self._execute_wrap(
            ctx,
            request,
            _tag("table"),
            lambda session: DataTable.from_cursor(
                self.command_executor.execute_reader(session, request)
            ),
        )

    def get_data_set(self, ctx: ExecutionContext, request: RequestContext) -> DataSet:
        """Run every statement of a batch and collect each result set."""
        request.default_intent(Intent.READ)
        return self._execute_wrap(
            ctx,
            request,
            _tag("dataset"),
            lambda session: DataSet(
                [
                    DataTable.from_cursor(cursor)
                    for cursor in self.command_executor.execute_multiple(session, request)
                ]
            ),
        )

    def query_multiple(self, ctx: ExecutionContext, request: RequestContext) -> MultipleResult:
        """Return a live handle over a statement batch. Never cached.

        The caller must close the handle (or use it as a context manager);
        a transient session is released then.
        """
        request.default_intent(Intent.READ)
        self._setup_request(request)
        session = None
        try:
            session = self._acquire_session(ctx, request)
            transient = session.lifecycle is SessionLifecycle.TRANSIENT
            return MultipleResult(
                request,
                session,
                self.command_executor.execute_multiple(session, request),
                self.materializer,
                self.session_store.release if transient else None,
            )
        except Exception:
            self._log_failure(request, session)
            if session is not None and session.lifecycle is SessionLifecycle.TRANSIENT:
                self.session_store.release(session)
            raise

    # Async operations

    async def execute_async(self, ctx: ExecutionContext, request: RequestContext) -> int:
        request.default_intent(Intent.WRITE)
        return await self._execute_wrap_async(
            ctx,
            request,
            _tag("execute"),
            lambda session: self.command_executor.execute_non_query_async(session, request),
        )

    async def execute_scalar_async(
        self, ctx: ExecutionContext, request: RequestContext, result_type: Optional[Type[T]] = None
    ) -> Any:
        request.default_intent(Intent.WRITE)

        async def run(session: DbSession) -> Any:
            value = await self.command_executor.execute_scalar_async(session, request)
            return convert_value(value, result_type)

        return await self._execute_wrap_async(ctx, request, _tag("scalar", result_type), run)

    async def query_async(
        self, ctx: ExecutionContext, request: RequestContext, result_type: Any = None
    ) -> list:
        request.default_intent(Intent.READ)

        async def run(session: DbSession) -> list:
            cursor = await self.command_executor.execute_reader_async(session, request)
            try:
                return await self.materializer.to_list_async(request, cursor, result_type)
            finally:
                await cursor.close()

        return await self._execute_wrap_async(ctx, request, _tag("query", result_type), run)

    async def query_single_async(
        self, ctx: ExecutionContext, request: RequestContext, result_type: Any = None
    ) -> Any:
        request.default_intent(Intent.READ)

        async def run(session: DbSession) -> Any:
            cursor = await self.command_executor.execute_reader_async(session, request)
            try:
                return await self.materializer.to_single_async(request, cursor, result_type)
            finally:
                await cursor.close()

        return await self._execute_wrap_async(ctx, request, _tag("single", result_type), run)

    async def get_data_table_async(
        self, ctx: ExecutionContext, request: RequestContext
    ) -> DataTable:
        request.default_intent(Intent.READ)

        async def run(session: DbSession) -> DataTable:
            cursor = await self.command_executor.execute_reader_async(session, request)
            return await DataTable.from_cursor_async(cursor)

        return await self._execute_wrap_async(ctx, request, _tag("table"), run)

    async def get_data_set_async(self, ctx: ExecutionContext, request: RequestContext) -> DataSet:
        request.default_intent(Intent.READ)

        async def run(session: DbSession) -> DataSet:
            tables = []
            async for cursor in self.command_executor.execute_multiple_async(session, request):
                tables.append(await DataTable.from_cursor_async(cursor))
            return DataSet(tables)

        return await self._execute_wrap_async(ctx, request, _tag("dataset"), run)

    async def query_multiple_async(
        self, ctx: ExecutionContext, request: RequestContext
    ) -> AsyncMultipleResult:
        request.default_intent(Intent.READ)
        self._setup_request(request)
        session = None
        try:
            session = self._acquire_session(ctx, request)
            transient = session.lifecycle is SessionLifecycle.TRANSIENT
            return AsyncMultipleResult(
                request,
                session,
                self.command_executor.execute_multiple_async(session, request),
                self.materializer,
                self.session_store.arelease if transient else None,
            )
        except Exception:
            self._log_failure(request, session)
            if session is not None and session.lifecycle is SessionLifecycle.TRANSIENT:
                await self.session_store.arelease(session)
            raise

    # Scoped sessions

    def _require_session(self, ctx: ExecutionContext, operation: str) -> DbSession:
        session = self.session_store.local_session(ctx)
        if session is None:
            raise NoActiveSessionError(
                f"SqlMapper could not invoke {operation}(). No session was started. "
                "Call begin_session() or begin_transaction() first."
            )
        return session

    def _require_sync_session(self, ctx: ExecutionContext, operation: str) -> DbSession:
        session = self._require_session(ctx, operation)
        if session.is_async and session.is_open:
            raise SessionStateError(
                f"SqlMapper could not invoke {operation}(). DbSession {session.id} holds an "
                f"async connection; call {operation}_async() instead."
            )
        return session

    def begin_session(
        self, ctx: ExecutionContext, request: Optional[RequestContext] = None
    ) -> DbSession:
        """Bind a scoped session to ``ctx``; statements then share its connection."""
        self._check_open()
        existing = self.session_store.local_session(ctx)
        if existing is not None:
            raise DuplicateSessionError(
                f"SqlMapper could not invoke begin_session(). DbSession {existing.id} "
                "is already bound to this context."
            )
        request = request or RequestContext()
        request.default_intent(Intent.READ)
        data_source = self.data_source_filter.elect(request)
        session = self.session_store.create(ctx, data_source)
        session.begin()
        logger.debug(f"BeginSession DbSession.Id:{session.id} on {data_source.name}")
        return session

    async def begin_session_async(
        self, ctx: ExecutionContext, request: Optional[RequestContext] = None
    ) -> DbSession:
        return self.begin_session(ctx, request)

    def end_session(self, ctx: ExecutionContext) -> None:
        session = self._require_sync_session(ctx, "end_session")
        try:
            session.end()
        finally:
            self.cache_manager.discard(session)
            self.session_store.dispose(ctx)
        logger.debug(f"EndSession DbSession.Id:{session.id}")

    async def end_session_async(self, ctx: ExecutionContext) -> None:
        session = self._require_session(ctx, "end_session_async")
        try:
            await session.aend()
        finally:
            self.cache_manager.discard(session)
            await self.session_store.adispose(ctx)
        logger.debug(f"EndSession DbSession.Id:{session.id}")

    # Transactions

    def begin_transaction(
        self,
        ctx: ExecutionContext,
        request: Optional[RequestContext] = None,
        isolation: IsolationLevel = IsolationLevel.UNSPECIFIED,
    ) -> DbSession:
        request = request or RequestContext()
        request.default_intent(Intent.WRITE)
        session = self.begin_session(ctx, request)
        try:
            session.begin_transaction(isolation)
        except Exception:
            logger.exception(f"BeginTransaction failed for DbSession.Id:{session.id}")
            self.session_store.dispose(ctx)
            raise
        logger.debug(f"BeginTransaction DbSession.Id:{session.id}")
        return session

    async def begin_transaction_async(
        self,
        ctx: ExecutionContext,
        request: Optional[RequestContext] = None,
        isolation: IsolationLevel = IsolationLevel.UNSPECIFIED,
    ) -> DbSession:
        request = request or RequestContext()
        request.default_intent(Intent.WRITE)
        session = self.begin_session(ctx, request)
        try:
            await session.abegin_transaction(isolation)
        except BaseException:
            logger.exception(f"BeginTransaction failed for DbSession.Id:{session.id}")
            await self.session_store.adispose(ctx)
            raise
        logger.debug(f"BeginTransaction DbSession.Id:{session.id}")
        return session

    def commit_transaction(self, ctx: ExecutionContext) -> None:
        session = self._require_sync_session(ctx, "commit_transaction")
        try:
            logger.debug(f"CommitTransaction DbSession.Id:{session.id}")
            session.commit()
            self.cache_manager.record_commit(session)
        finally:
            self.cache_manager.discard(session)
            self.session_store.dispose(ctx)

    async def commit_transaction_async(self, ctx: ExecutionContext) -> None:
        session = self._require_session(ctx, "commit_transaction_async")
        try:
            logger.debug(f"CommitTransaction DbSession.Id:{session.id}")
            await session.acommit()
            self.cache_manager.record_commit(session)
        finally:
            self.cache_manager.discard(session)
            await self.session_store.adispose(ctx)

    def rollback_transaction(self, ctx: ExecutionContext) -> None:
        session = self._require_sync_session(ctx, "rollback_transaction")
        try:
            logger.debug(f"RollbackTransaction DbSession.Id:{session.id}")
            session.rollback()
        finally:
            self.cache_manager.record_rollback(session)
            self.session_store.dispose(ctx)

    async def rollback_transaction_async(self, ctx: ExecutionContext) -> None:
        session = self._require_session(ctx, "rollback_transaction_async")
        try:
            logger.debug(f"RollbackTransaction DbSession.Id:{session.id}")
            await session.arollback()
        finally:
            self.cache_manager.record_rollback(session)
            await self.session_store.adispose(ctx)

    @contextmanager
    def transaction(
        self,
        ctx: ExecutionContext,
        request: Optional[RequestContext] = None,
        isolation: IsolationLevel = IsolationLevel.UNSPECIFIED,
    ) -> Iterator[DbSession]:
        """Commit on normal exit, roll back and re-raise on any exception."""
        session = self.begin_transaction(ctx, request, isolation)
        try:
            yield session
        except BaseException:
            self.rollback_transaction(ctx)
            raise
        else:
            self.commit_transaction(ctx)

    @asynccontextmanager
    async def transaction_async(
        self,
        ctx: ExecutionContext,
        request: Optional[RequestContext] = None,
        isolation: IsolationLevel = IsolationLevel.UNSPECIFIED,
    ) -> AsyncIterator[DbSession]:
        session = await self.begin_transaction_async(ctx, request, isolation)
        try:
            yield session
        except BaseException:
            await self.rollback_transaction_async(ctx)
            raise
        else:
            await self.commit_transaction_async(ctx)

    @contextmanager
    def session(
        self, ctx: ExecutionContext, request: Optional[RequestContext] = None
    ) -> Iterator[DbSession]:
        session = self.begin_session(ctx, request)
        try:
            yield session
        finally:
            if self.session_store.local_session(ctx) is session:
                self.end_session(ctx)

    @asynccontextmanager
    async def session_async(
        self, ctx: ExecutionContext, request: Optional[RequestContext] = None
    ) -> AsyncIterator[DbSession]:
        session = await self.begin_session_async(ctx, request)
        try:
            yield session
        finally:
            if self.session_store.local_session(ctx) is session:
                await self.end_session_async(ctx)

    # Disposal

    def close(self) -> None:
        """Release the config loader, the session store, then the cache. Safe to repeat."""
        if self._closed:
            return
        self._closed = True
        # Callbacks run in reverse registration order
        with ExitStack() as stack:
            stack.callback(self.cache_manager.close)
            stack.callback(self.session_store.close)
            stack.callback(self.options.config_loader.close)
        logger.warning("SqlMapper Dispose.")

    async def close_async(self) -> None:
        if self._closed:
            # A sync close() leaves async sessions bound
            if self.session_store.bound_sessions():
                await self.session_store.aclose()
            return
        self._closed = True
        async with AsyncExitStack() as stack:
            stack.callback(self.cache_manager.close)
            stack.push_async_callback(self.session_store.aclose)
            stack.callback(self.options.config_loader.close)
        logger.warning("SqlMapper Dispose.")

    def __enter__(self) -> "SqlMapper":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def __aenter__(self) -> "SqlMapper":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_async()
