"""
Shared Test Fixtures
====================

- ``db_session``: a real AsyncSession on a throwaway SQLite file, with the
  full schema created from model metadata.
- ``client``: httpx AsyncClient bound to the app, with the DB session and
  caller identity overridden.
- Redis is never touched: CacheManager reads miss and writes succeed.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REVENUECAT_WEBHOOK_AUTH", "")
os.environ.setdefault("LEGACY_BILLING_API_URL", "")
os.environ.setdefault("IDENTITY_API_URL", "")

from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import affirm.models  # noqa: F401
from affirm.db.base import Base
from affirm.db.session import get_db
from affirm.dependencies import get_current_user_id
from affirm.main import app
from affirm.services.cache import CacheManager

TEST_USER_ID = "user_2test0000000000000001"


@pytest_asyncio.fixture
async def db_session(tmp_path) -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture(autouse=True)
def no_redis():
    """Cache always misses; writes and deletes report success."""
    with patch.object(CacheManager, "get", AsyncMock(return_value=None)), \
         patch.object(CacheManager, "set", AsyncMock(return_value=True)), \
         patch.object(CacheManager, "delete", AsyncMock(return_value=True)):
        yield


@pytest.fixture
def user_id() -> str:
    return TEST_USER_ID


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, user_id: str) -> AsyncGenerator[AsyncClient, None]:
    async def _get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    async def _current_user_id():
        return user_id

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_user_id] = _current_user_id

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
