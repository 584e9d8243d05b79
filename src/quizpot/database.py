"""Async SQLAlchemy engine, sessions and the unit-of-work boundary."""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

_NOT_INITIALIZED = "Database not initialized. Call init_db() first."


async def init_db(url: str, pool_size: int = 20, **engine_kwargs: Any) -> None:  # noqa: ANN401
    """Create the engine and session factory.

    Extra keyword arguments replace the Postgres pool options entirely
    (tests pass a ``StaticPool`` for in-memory SQLite).
    """
    global _engine, _session_factory  # noqa: PLW0603
    options: dict[str, Any] = engine_kwargs or {
        "pool_size": pool_size,
        "max_overflow": pool_size // 2,
        "pool_pre_ping": True,
        # asyncpg prepared statements break behind pgbouncer
        "connect_args": {"statement_cache_size": 0},
    }
    _engine = create_async_engine(url, **options)
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)


async def close_db() -> None:
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for code running outside a request (workers, tests)."""
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request (FastAPI dependency)."""
    async with get_session_factory()() as session:
        yield session


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit once on success, roll back everything on any exception.

    Ledger primitives never commit; every balance change and its
    transaction row land in the caller's unit of work.
    """
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise
