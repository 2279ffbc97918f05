"""
Shared fixtures for Cognick backend integration tests.

Runs against a throw-away SQLite file through aiosqlite, so no database
server is needed.  Each test function gets its own session; tables are
created before the test and dropped after it.  The LLM key is blanked so
nothing reaches a real provider; tests that need generation override the
service dependencies with fakes.
"""
from __future__ import annotations

import os
from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override DATABASE_URL *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine point at the test DB.
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///./cognick_test.db",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["LLM_API_KEY"] = ""

from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import database_models  # noqa: E402,F401
from app.services.pipeline_manager import PipelineManager  # noqa: E402


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a DB session for each test. After the test, all tables are dropped
    so each test starts with a clean slate.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB dependency
    overridden to use the per-test session.
    """

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    PipelineManager._tasks.clear()
    PipelineManager._status.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {
    "X-User-Id": "test-user-1",
    "X-User-Email": "test1@example.com",
    "X-User-Name": "Test User 1",
}

AUTH_HEADERS_USER2 = {
    "X-User-Id": "test-user-2",
    "X-User-Email": "test2@example.com",
    "X-User-Name": "Test User 2",
}


class FakeLLM:
    """
    Stand-in for ``LLMService`` that replays queued answers.

    Items that are exceptions are raised instead of returned.  Every call's
    messages are recorded in ``calls`` / ``json_calls``.
    """

    def __init__(self, texts=None, json_values=None, configured: bool = True):
        self.texts = list(texts or [])
        self.json_values = list(json_values or [])
        self.configured = configured
        self.calls = []
        self.json_calls = []

    @staticmethod
    def _next(queue, default):
        item = queue.pop(0) if queue else default
        if isinstance(item, Exception):
            raise item
        return item

    async def complete(self, messages, **kwargs):
        self.calls.append(messages)
        return self._next(self.texts, "texto gerado")

    async def complete_json(self, messages, **kwargs):
        self.json_calls.append(messages)
        return self._next(self.json_values, {})

    async def check_health(self):
        return self.configured
