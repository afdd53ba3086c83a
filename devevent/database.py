# devevent/database.py
from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _connect_args(database_url: str, *, connect_timeout: float, socket_timeout: float) -> dict[str, Any]:
    """Driver specific timeout arguments."""

    driver = make_url(database_url).drivername
    if driver == "postgresql+asyncpg":
        return {"timeout": connect_timeout, "command_timeout": socket_timeout}
    if driver.startswith("sqlite"):
        # sqlite3 "timeout" is how long a locked database is waited on.
        return {"timeout": socket_timeout}
    return {}


def build_engine(
    database_url: str,
    *,
    connect_timeout: float = 5.0,
    socket_timeout: float = 45.0,
    pool_size: int = 10,
    echo: bool = False,
) -> AsyncEngine:
    kwargs: dict[str, Any] = {
        "echo": echo,
        "pool_pre_ping": True,
        "connect_args": _connect_args(
            database_url, connect_timeout=connect_timeout, socket_timeout=socket_timeout
        ),
    }
    if not make_url(database_url).drivername.startswith("sqlite"):
        kwargs["pool_size"] = pool_size
        kwargs["pool_timeout"] = connect_timeout
    return create_async_engine(database_url, **kwargs)


def build_session_factory(bind_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


async def init_models(bind_engine: AsyncEngine) -> None:
    """Import all model modules so they register with Base, then create tables."""

    import devevent.models  # noqa: F401

    async with bind_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
