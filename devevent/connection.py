"""Shared, lazily established database connection.

The application creates one :class:`ConnectionManager` at startup and hands
it to every router. The first request to need the database opens the
engine; requests arriving while that is in progress wait on the same
attempt instead of opening their own.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from devevent import errors
from devevent.database import build_engine, build_session_factory, init_models

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[AsyncEngine]]
SessionFactory = Callable[[AsyncEngine], Callable[[], AsyncSession]]


async def open_engine(
    database_url: str,
    *,
    connect_timeout: float,
    socket_timeout: float,
    pool_size: int,
    echo: bool = False,
) -> AsyncEngine:
    """Build an engine, prove it can talk to the server and ensure tables exist."""

    engine = build_engine(
        database_url,
        connect_timeout=connect_timeout,
        socket_timeout=socket_timeout,
        pool_size=pool_size,
        echo=echo,
    )

    async def _probe() -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await init_models(engine)

    try:
        await asyncio.wait_for(_probe(), timeout=connect_timeout)
    except BaseException:
        await engine.dispose()
        raise
    return engine


class ConnectionManager:
    """Single-flight owner of the process-wide :class:`AsyncEngine`.

    Bound to the event loop that first calls :meth:`acquire`.
    """

    def __init__(
        self,
        database_url: Optional[str],
        *,
        connect_timeout: float = 5.0,
        socket_timeout: float = 45.0,
        pool_size: int = 10,
        echo: bool = False,
        connector: Connector = open_engine,
        session_factory: SessionFactory = build_session_factory,
    ) -> None:
        self.database_url = database_url
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout
        self.pool_size = pool_size
        self.echo = echo
        self._connector = connector
        self._session_factory = session_factory
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[Callable[[], AsyncSession]] = None
        self._alive = False
        self._pending: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None and self._alive

    async def acquire(self) -> AsyncEngine:
        if self.is_connected:
            return self._engine

        # No await between the check and publishing _pending.
        if self._pending is None:
            if not self.database_url:
                raise errors.ConfigurationError(
                    "Database is not configured.",
                    error="Database connection string not configured. "
                    "Please set the DATABASE_URL environment variable.",
                )
            stale = self._detach_engine()
            self._pending = asyncio.ensure_future(self._establish(stale))

        # A cancelled caller must not cancel the attempt the others wait on.
        return await asyncio.shield(self._pending)

    async def _establish(self, stale: Optional[AsyncEngine] = None) -> AsyncEngine:
        if stale is not None:
            logger.warning("Database connection is no longer active; reconnecting")
            await self._dispose(stale)
        logger.info("Opening database connection")
        try:
            engine = await self._connector(
                self.database_url,
                connect_timeout=self.connect_timeout,
                socket_timeout=self.socket_timeout,
                pool_size=self.pool_size,
                echo=self.echo,
            )
        except asyncio.TimeoutError as exc:
            self._reset()
            logger.error("Database connection timed out after %.1fs", self.connect_timeout)
            raise errors.ConnectionError(
                "Database connection failed.", error="Timed out connecting to the database."
            ) from exc
        except (SQLAlchemyError, OSError) as exc:
            self._reset()
            logger.error("Database connection failed: %s", exc)
            raise errors.ConnectionError("Database connection failed.", error=str(exc)) from exc
        except BaseException:
            self._reset()
            raise

        self._engine = engine
        self._sessions = self._session_factory(engine)
        self._alive = True
        self._pending = None
        logger.info("Database connection ready")
        return engine

    def _reset(self) -> None:
        self._engine = None
        self._sessions = None
        self._alive = False
        self._pending = None

    def _detach_engine(self) -> Optional[AsyncEngine]:
        engine = self._engine
        self._engine = None
        self._sessions = None
        self._alive = False
        return engine

    @staticmethod
    async def _dispose(engine: AsyncEngine) -> None:
        try:
            await engine.dispose()
        except Exception:  # pragma: no cover - best effort cleanup
            logger.warning("Disposing stale engine failed", exc_info=True)

    def invalidate(self) -> None:
        """Mark the cached engine as dead; the next acquire reconnects."""

        self._alive = False

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        await self.acquire()
        async with self._sessions() as db:
            try:
                yield db
            except DBAPIError as exc:
                if exc.connection_invalidated:
                    self.invalidate()
                raise

    async def close(self) -> None:
        pending = self._pending
        if pending is not None and not pending.done():
            pending.cancel()
        self._pending = None
        engine = self._detach_engine()
        if engine is not None:
            await self._dispose(engine)


def get_connections(request: Request) -> ConnectionManager:
    """FastAPI dependency returning the app's connection manager."""

    return request.app.state.connections
