"""Database engine and session management using SQLModel async."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

# Import all models so they are registered with SQLModel metadata
import dejackpot.models  # noqa: F401
from dejackpot.config import DatabaseConfig, get_settings

logger = structlog.get_logger()

# Lazy initialization - engine created on first use
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async engine with bounded pool acquisition.

    SQLite uses a single-connection pool, so pool sizing only applies to
    server databases.
    """
    kwargs: dict = {"echo": config.echo, "pool_pre_ping": True}
    if not config.url.startswith("sqlite"):
        kwargs.update(
            pool_size=config.pool_size,
            max_overflow=0,
            pool_timeout=config.pool_timeout_seconds,
        )
    return create_async_engine(config.url, **kwargs)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _get_engine() -> AsyncEngine:
    """Get or create the async engine."""
    global _engine
    if _engine is None:
        _engine = create_engine(get_settings().database)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = make_session_factory(_get_engine())
    return _async_session_factory


async def init_db() -> None:
    """Create missing tables.

    Note: the main bot owns the schema in production; this is for
    development/testing convenience.
    """
    engine = _get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("db.initialized", url=engine.url.render_as_string(hide_password=True))


async def close_db() -> None:
    """Dispose the engine and return all pooled connections."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("db.closed")

