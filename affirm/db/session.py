"""
Database Session Management
===========================

Provides async database session factory and dependency injection,
plus the dialect-aware ``insert`` used for keyed upserts.
"""

import logging
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from affirm.config import settings

logger = logging.getLogger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get or create the async database engine.

    PostgreSQL connections are pooled (20 + 40 overflow) and recycled
    every 5 minutes to stay under typical PgBouncer idle timeouts.
    SQLite URLs (local development) use the driver defaults.
    """
    global _engine

    if _engine is None:
        url = settings.database_url_async
        if not url:
            raise ValueError(
                "Database URL not configured. "
                "Please set DATABASE_URL environment variable."
            )

        if url.startswith("sqlite"):
            _engine = create_async_engine(url, echo=False)
        else:
            _engine = create_async_engine(
                url,
                echo=False,
                pool_size=20,
                max_overflow=40,
                pool_pre_ping=False,
                pool_recycle=300,
                pool_use_lifo=True,
                pool_timeout=30,
            )

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _async_session_factory

    if _async_session_factory is None:
        engine = get_engine()
        _async_session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    return _async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Usage:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...

    The session is automatically committed on success or rolled back on error.
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def upsert_insert(session: AsyncSession, model):
    """
    Return an ``INSERT`` construct for ``model`` that supports
    ``on_conflict_do_update`` / ``on_conflict_do_nothing`` on the
    session's dialect.
    """
    if session.bind is not None and session.bind.dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


async def init_db() -> None:
    """
    Initialize database connection.

    Called on application startup; runs a trivial query so the first
    real request doesn't pay connection setup latency.
    """
    engine = get_engine()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    print("✅ Database connection established")


async def close_db() -> None:
    """
    Close database connections.

    Called on application shutdown to clean up resources.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        print("✅ Database connections closed")
