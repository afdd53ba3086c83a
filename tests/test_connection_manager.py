import asyncio

import pytest
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from devevent import errors
from devevent.connection import ConnectionManager
from devevent.main import warm_connection

from conftest import sqlite_url


class _FakeEngine:
    def __init__(self, number: int, dispose_delay: float = 0) -> None:
        self.number = number
        self.dispose_delay = dispose_delay
        self.disposed = False

    async def dispose(self):
        await asyncio.sleep(self.dispose_delay)
        self.disposed = True


class _FakeSession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


def _fake_session_factory(engine):
    return _FakeSession


class _CountingConnector:
    def __init__(
        self,
        *,
        delay: float = 0.01,
        failures: list[BaseException] | None = None,
        dispose_delay: float = 0,
    ):
        self.calls = 0
        self.delay = delay
        self.failures = list(failures or [])
        self.dispose_delay = dispose_delay
        self.kwargs = None

    async def __call__(self, database_url, **kwargs):
        self.calls += 1
        self.kwargs = kwargs
        await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        return _FakeEngine(self.calls, self.dispose_delay)


def _manager(connector, url="sqlite+aiosqlite:///unused.db", **kwargs) -> ConnectionManager:
    return ConnectionManager(url, connect_timeout=2.0, socket_timeout=7.0, connector=connector, **kwargs)


def test_concurrent_first_acquire_opens_one_connection():
    async def _run():
        connector = _CountingConnector(delay=0.05)
        manager = _manager(connector)

        engines = await asyncio.gather(*(manager.acquire() for _ in range(25)))

        assert connector.calls == 1
        assert all(engine is engines[0] for engine in engines)
        assert manager.is_connected
        assert connector.kwargs["connect_timeout"] == 2.0
        assert connector.kwargs["socket_timeout"] == 7.0

        assert await manager.acquire() is engines[0]
        assert connector.calls == 1

    asyncio.run(_run())


def test_missing_database_url_is_a_configuration_error():
    async def _run():
        connector = _CountingConnector()
        manager = _manager(connector, url=None)

        with pytest.raises(errors.ConfigurationError):
            await manager.acquire()
        assert connector.calls == 0

    asyncio.run(_run())


def test_failed_attempt_reaches_every_waiter_and_is_retried():
    async def _run():
        connector = _CountingConnector(delay=0.02, failures=[OSError("connection refused")])
        manager = _manager(connector)

        results = await asyncio.gather(*(manager.acquire() for _ in range(5)), return_exceptions=True)

        assert connector.calls == 1
        assert all(isinstance(r, errors.ConnectionError) for r in results)
        assert not manager.is_connected

        engine = await manager.acquire()
        assert connector.calls == 2
        assert engine.number == 2

    asyncio.run(_run())


def test_timeout_becomes_connection_error():
    async def _run():
        manager = _manager(_CountingConnector(failures=[asyncio.TimeoutError()]))

        with pytest.raises(errors.ConnectionError) as excinfo:
            await manager.acquire()
        assert "Timed out" in excinfo.value.error

    asyncio.run(_run())


def test_invalidated_connection_is_reestablished():
    async def _run():
        connector = _CountingConnector()
        manager = _manager(connector)

        first = await manager.acquire()
        manager.invalidate()
        assert not manager.is_connected

        second = await manager.acquire()
        assert second is not first
        assert first.disposed
        assert connector.calls == 2

    asyncio.run(_run())


def test_reconnect_is_shared_while_stale_engine_disposes():
    async def _run():
        connector = _CountingConnector(dispose_delay=0.1)
        manager = _manager(connector)

        stale = await manager.acquire()
        manager.invalidate()

        first = asyncio.ensure_future(manager.acquire())
        await asyncio.sleep(0)
        second = await manager.acquire()

        assert await first is second
        assert connector.calls == 2
        assert second.number == 2
        assert stale.disposed
        assert not second.disposed
        assert manager.is_connected

    asyncio.run(_run())


def test_invalidated_connection_in_session_reconnects_on_next_acquire():
    async def _run():
        connector = _CountingConnector()
        manager = _manager(connector, session_factory=_fake_session_factory)

        with pytest.raises(DBAPIError):
            async with manager.session():
                raise DBAPIError(
                    "SELECT 1", None, OSError("server closed the connection"), connection_invalidated=True
                )
        assert not manager.is_connected

        engine = await manager.acquire()
        assert engine.number == 2
        assert connector.calls == 2
        assert manager.is_connected

    asyncio.run(_run())


def test_ordinary_database_error_keeps_connection():
    async def _run():
        connector = _CountingConnector()
        manager = _manager(connector, session_factory=_fake_session_factory)

        with pytest.raises(DBAPIError):
            async with manager.session():
                raise DBAPIError("SELECT 1", None, ValueError("syntax error"))
        assert manager.is_connected

        async with manager.session():
            pass
        assert connector.calls == 1

    asyncio.run(_run())


def test_cancelled_caller_does_not_cancel_shared_attempt():
    async def _run():
        connector = _CountingConnector(delay=0.05)
        manager = _manager(connector)

        impatient = asyncio.ensure_future(manager.acquire())
        await asyncio.sleep(0.01)
        impatient.cancel()

        engine = await manager.acquire()
        assert engine.number == 1
        assert connector.calls == 1

    asyncio.run(_run())


def test_close_disposes_engine():
    async def _run():
        manager = _manager(_CountingConnector())
        engine = await manager.acquire()

        await manager.close()

        assert engine.disposed
        assert not manager.is_connected

    asyncio.run(_run())


def test_real_sqlite_session(tmp_path):
    async def _run():
        manager = ConnectionManager(sqlite_url(tmp_path), connect_timeout=5.0)
        try:
            async with manager.session() as db:
                assert (await db.execute(text("SELECT 1"))).scalar_one() == 1
                tables = (
                    await db.execute(text("SELECT name FROM sqlite_master WHERE type = 'table'"))
                ).scalars().all()
            assert {"events", "bookings"} <= set(tables)
            assert manager.is_connected
        finally:
            await manager.close()

    asyncio.run(_run())


def test_startup_warmup_retries_until_connected():
    async def _run():
        connector = _CountingConnector(failures=[OSError("not yet"), OSError("still not")])
        manager = _manager(connector)

        assert await warm_connection(manager, max_attempts=5, base_delay=0)
        assert connector.calls == 3
        assert manager.is_connected

    asyncio.run(_run())


def test_startup_warmup_gives_up_without_raising():
    async def _run():
        manager = _manager(_CountingConnector(), url=None)

        assert not await warm_connection(manager, max_attempts=2, base_delay=0)

    asyncio.run(_run())
