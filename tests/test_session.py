import pytest
from unittest.mock import AsyncMock, MagicMock

from sqlmapper import (
    DataSource,
    DataSourceRole,
    DbSession,
    DuplicateSessionError,
    ExecutionContext,
    IsolationLevel,
    SessionBusyError,
    SessionLifecycle,
    SessionState,
    SessionStateError,
)
from sqlmapper.core.store import DbSessionStore
from sqlmapper.db.engine import DriverResolver

SOURCE = DataSource(name="primary", url="sqlite:///:memory:", role=DataSourceRole.WRITE)


def _sync_driver():
    driver = MagicMock()
    driver.connect.return_value = MagicMock()
    return driver


def _async_driver():
    driver = MagicMock()
    driver.aconnect = AsyncMock(return_value=AsyncMock())
    return driver


def _session(driver=None, lifecycle=SessionLifecycle.SCOPED):
    return DbSession(SOURCE, driver or _sync_driver(), lifecycle)


class TestDbSessionStateMachine:
    """Test session transitions."""

    def test_new_session_is_idle_and_unopened(self):
        session = _session()
        assert session.state is SessionState.IDLE
        assert session.is_open is False

    def test_ids_are_unique(self):
        assert _session().id != _session().id

    def test_connection_opened_lazily_once(self):
        driver = _sync_driver()
        session = _session(driver)

        first = session.open()
        second = session.open()

        assert first is second
        driver.connect.assert_called_once_with(SOURCE.url)

    def test_transaction_commit_flow(self):
        session = _session()
        session.begin()
        session.begin_transaction(IsolationLevel.SERIALIZABLE)

        assert session.in_transaction is True
        session.connection.begin.assert_called_once_with(IsolationLevel.SERIALIZABLE)

        session.commit()
        assert session.state is SessionState.COMMITTED
        assert session.in_transaction is False
        session.connection.commit.assert_called_once()

        connection = session.connection
        assert session.dispose() is True
        assert session.state is SessionState.DISPOSED
        connection.close.assert_called_once()

    def test_begin_transaction_from_idle(self):
        session = _session()
        session.begin_transaction()
        assert session.state is SessionState.ACTIVE

    def test_rollback_flow(self):
        session = _session()
        session.begin_transaction()
        session.rollback()

        assert session.state is SessionState.ROLLED_BACK
        session.connection.rollback.assert_called_once()

    def test_cannot_commit_twice(self):
        session = _session()
        session.begin_transaction()
        session.commit()

        with pytest.raises(SessionStateError):
            session.commit()

    def test_cannot_commit_idle_session(self):
        with pytest.raises(SessionStateError):
            _session().commit()

    def test_idle_session_disposes_without_connection(self):
        driver = _sync_driver()
        session = _session(driver)

        assert session.dispose() is True
        driver.connect.assert_not_called()

    def test_dispose_is_idempotent(self):
        session = _session()
        session.open()
        assert session.dispose() is True
        assert session.dispose() is False

    def test_disposed_session_cannot_be_used(self):
        session = _session()
        session.dispose()
        with pytest.raises(SessionStateError):
            session.open()

    def test_end_rolls_back_open_transaction(self):
        session = _session()
        session.begin_transaction()
        session.end()

        assert session.state is SessionState.ROLLED_BACK
        session.connection.rollback.assert_called_once()

    def test_guard_is_exclusive(self):
        session = _session()
        with session.guard():
            with pytest.raises(SessionBusyError):
                with session.guard():
                    pass
        with session.guard():
            pass


class TestAsyncDbSession:
    """Test the async half of the session."""

    @pytest.mark.asyncio
    async def test_async_transaction_flow(self):
        driver = _async_driver()
        session = _session(driver)

        await session.abegin_transaction()
        await session.acommit()
        connection = session.connection

        assert await session.adispose() is True
        connection.begin.assert_awaited_once()
        connection.commit.assert_awaited_once()
        connection.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mode_is_locked_after_async_open(self):
        session = _session(_async_driver())
        await session.aopen()

        with pytest.raises(SessionStateError):
            session.open()
        with pytest.raises(SessionStateError):
            session.dispose()

        await session.adispose()

    @pytest.mark.asyncio
    async def test_aend_rolls_back(self):
        session = _session(_async_driver())
        await session.abegin_transaction()
        await session.aend()

        assert session.state is SessionState.ROLLED_BACK
        session.connection.rollback.assert_awaited_once()


class TestDbSessionStore:
    """Test ambient binding and transient session creation."""

    @pytest.fixture
    def store(self):
        drivers = DriverResolver()
        drivers.register("sqlite", _sync_driver())
        return DbSessionStore(drivers)

    def test_get_or_create_returns_transient(self, store):
        ctx = ExecutionContext()
        session = store.get_or_create(ctx, SOURCE)

        assert session.lifecycle is SessionLifecycle.TRANSIENT
        assert store.local_session(ctx) is None

    def test_get_or_create_prefers_ambient(self, store):
        ctx = ExecutionContext()
        scoped = store.create(ctx, SOURCE)

        assert store.get_or_create(ctx, SOURCE) is scoped
        assert scoped.lifecycle is SessionLifecycle.SCOPED

    def test_create_twice_raises(self, store):
        ctx = ExecutionContext()
        store.create(ctx, SOURCE)
        with pytest.raises(DuplicateSessionError):
            store.create(ctx, SOURCE)

    def test_contexts_are_independent(self, store):
        a, b = ExecutionContext("a"), ExecutionContext("b")
        store.create(a, SOURCE)

        assert store.local_session(b) is None
        assert store.create(b, SOURCE) is not store.local_session(a)

    def test_dispose_unbinds(self, store):
        ctx = ExecutionContext()
        session = store.create(ctx, SOURCE)
        store.dispose(ctx)

        assert store.local_session(ctx) is None
        assert session.state is SessionState.DISPOSED

    def test_release_disposes_transient(self, store):
        session = store.get_or_create(ExecutionContext(), SOURCE)
        store.release(session)
        assert session.state is SessionState.DISPOSED

    def test_close_disposes_bound_sessions(self, store):
        ctx = ExecutionContext()
        session = store.create(ctx, SOURCE)
        session.open()

        store.close()

        assert session.state is SessionState.DISPOSED
        assert ctx.session is None

    @pytest.mark.asyncio
    async def test_aclose_disposes_async_sessions(self):
        drivers = DriverResolver()
        drivers.register("sqlite", _async_driver())
        store = DbSessionStore(drivers)
        ctx = ExecutionContext()
        session = store.create(ctx, SOURCE)
        await session.aopen()

        store.close()
        assert session.state is not SessionState.DISPOSED

        await store.aclose()
        assert session.state is SessionState.DISPOSED

    @pytest.mark.asyncio
    async def test_sync_dispose_keeps_async_session_bound(self):
        drivers = DriverResolver()
        drivers.register("sqlite", _async_driver())
        store = DbSessionStore(drivers)
        ctx = ExecutionContext()
        session = store.create(ctx, SOURCE)
        await session.aopen()

        with pytest.raises(SessionStateError):
            store.dispose(ctx)
        assert ctx.session is session
        assert store.bound_sessions() == [session]

        await store.adispose(ctx)
        assert ctx.session is None
        assert session.state is SessionState.DISPOSED
        assert store.bound_sessions() == []
