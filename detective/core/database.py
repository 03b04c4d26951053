"""PostgreSQL access for persisted URL Metrics (SQLAlchemy 2.0 async + asyncpg).

The schema is a single ``url_metrics`` table, created on startup by
``init_db()``. Sessions commit when the request or ``get_session()`` block
finishes and roll back on any exception, which is then re-raised.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from detective.core.config import get_settings

POOL_SIZE = 5
POOL_MAX_OVERFLOW = 10


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def init_db() -> None:
    """Create the engine and session factory, then create missing tables."""
    global _engine, _session_factory  # noqa: PLW0603

    settings = get_settings()
    _engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=POOL_SIZE,
        max_overflow=POOL_MAX_OVERFLOW,
        pool_pre_ping=True,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False, autoflush=False)

    # Registers UrlMetricsRecord on Base.metadata
    from detective.models import UrlMetricsRecord  # noqa: F401

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory  # noqa: PLW0603

    if _engine is None:
        return
    try:
        await _engine.dispose()
    finally:
        _engine = None
        _session_factory = None


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Session scope outside of requests.

    Usage:
        async with get_session() as session:
            url_metrics = await UrlMetricsRepository(session).get_url_metrics(slug)

    Raises:
        RuntimeError: If init_db() has not run
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency: one committed-or-rolled-back session per request."""
    async with get_session() as session:
        yield session
