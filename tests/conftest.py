"""
Pytest configuration and shared fixtures.
"""

import os
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

# Settings are read once and cached, so the environment must be in place
# before any extraction_queue import.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="extraction-queue-tests-"))

# Test database URL - SQLite file by default, PostgreSQL when pointed at one
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{_TMP_DIR / 'test.db'}",
)

os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["DATABASE_AUTO_CREATE"] = "true"
os.environ["OTEL_ENABLED"] = "false"
os.environ["PROGRESS_DIR"] = str(_TMP_DIR / "progress")
os.environ["WORKER_POLL_INTERVAL_SECONDS"] = "0.05"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import delete, update  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from extraction_queue.api.main import create_app  # noqa: E402
from extraction_queue.constants import JobStatus  # noqa: E402
from extraction_queue.db import close_db, create_schema, create_session_factory, init_db  # noqa: E402
from extraction_queue.db.models import Job, utcnow  # noqa: E402


@pytest.fixture(scope="session")
def database_url() -> str:
    """Get the test database URL."""
    return TEST_DATABASE_URL


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine with an empty jobs table."""
    engine = create_async_engine(database_url, echo=False)
    await create_schema(engine)

    async with engine.begin() as conn:
        await conn.execute(delete(Job))

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes
        await session.rollback()


@pytest_asyncio.fixture
async def app(async_engine: AsyncEngine) -> AsyncGenerator[FastAPI]:
    """Create a FastAPI app for testing with initialized database."""
    await init_db()

    app = create_app()
    yield app

    await close_db()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def idempotency_key() -> str:
    """Generate a unique idempotency key."""
    return f"test-{uuid4().hex}"


@pytest.fixture
def echo_payload() -> dict[str, Any]:
    """Create a sample echo payload."""
    return {"message": "Hello, World!"}


@pytest.fixture
def force_state(session_factory: async_sessionmaker[AsyncSession]):
    """
    Write job columns directly, bypassing the transition guards.

    Used to put jobs into states (terminal, stale claim) that would otherwise
    take a worker to reach.
    """

    async def _force(job_id: UUID, **values: Any) -> None:
        async with session_factory() as session:
            await session.execute(update(Job).where(Job.id == job_id).values(**values))
            await session.commit()

    return _force


@pytest.fixture
def terminal_values():
    """Column values of a job that finished with the given status."""

    def _values(status: JobStatus, **extra: Any) -> dict[str, Any]:
        values: dict[str, Any] = {
            "status": status,
            "claimed_at": None,
            "claimed_by": None,
            "completed_at": utcnow(),
        }
        if status == JobStatus.FAILED:
            values["error"] = "boom"
        else:
            values["result"] = {"ok": True}
        values.update(extra)
        return values

    return _values
