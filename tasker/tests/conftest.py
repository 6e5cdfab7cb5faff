"""
Centralized Test Configuration.
"""

import os

# Point the app's own engine at SQLite before anything imports settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from tasker.app.main import app
from tasker.app.db.session import get_session_factory, Base
from tasker.app.services.supersession import SupersessionChecker
from tasker.app.services.task_registry import TaskRegistry
from tasker.app.services.task_service import TaskService
from tasker.app.services.task_store import TaskStore

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return TaskStore(session_factory)


@pytest.fixture
def service(store):
    return TaskService(store)


@pytest.fixture
def checker(store):
    return SupersessionChecker(store)


@pytest.fixture
def registry():
    return TaskRegistry()


@pytest.fixture
async def client(session_factory):
    """Async client for testing."""
    async def override_get_session_factory():
        return session_factory

    app.dependency_overrides[get_session_factory] = override_get_session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides = {}
