"""Engine and session lifecycle for the quota store."""

from __future__ import annotations

from typing import Any, AsyncIterator

from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ..core.config import get_settings

# Explicit names keep init_db and the alembic migration in agreement.
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_N_name)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database_url: str) -> dict[str, Any]:
    if make_url(database_url).get_backend_name() == "sqlite":
        # Writers queue on the database lock instead of failing immediately.
        return {"connect_args": {"timeout": 15}}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """Process-wide engine. The first caller decides the URL."""

    global _engine
    if _engine is None:
        url = database_url or get_settings().database_url
        if not url:
            raise RuntimeError("CANQUOTA_DATABASE_URL is not configured")
        _engine = create_async_engine(url, **_engine_options(url))
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _sessions
    if _sessions is None:
        _sessions = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _sessions


async def get_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session.

    Work that is not committed is rolled back on close, so a `record` that
    fails half way never publishes its increment.
    """

    async with get_sessionmaker()() as session:
        yield session


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create any missing tables on `engine` (default: the process engine)."""

    from .. import models  # noqa: F401  registers the tables on Base.metadata

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global _engine, _sessions
    if _engine is not None:
        await _engine.dispose()
    _engine, _sessions = None, None
