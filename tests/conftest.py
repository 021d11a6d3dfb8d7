"""
Pytest configuration and fixtures for Promptloop tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- Factory fixtures for users and jobs
- Fakes for the generation service and delivery transports
"""

import os

# Must be set before promptloop settings are first read
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CHANNEL_SECRET_KEY", "test-channel-secret")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from promptloop.config import Settings, get_settings
from promptloop.core.datetime_utils import utc_now
from promptloop.dependencies import get_session_factory
from promptloop.main import app
from promptloop.models import Base, Job, RunHistory, User
from promptloop.schemas.channel import Channel, InAppChannel
from promptloop.schemas.common import Citation
from promptloop.services.channels import to_db_channel_config
from promptloop.services.llm import GenerationResult

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    openai_api_key: str = "test-key"
    channel_secret_key: str = "test-channel-secret"
    cron_secret: str = ""
    scheduler_enabled: bool = False


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine (what the runner receives)."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(db_session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with db_session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client running against the test database."""

    def override_get_settings():
        return TestSettings()

    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_session_factory] = lambda: db_session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def user_factory(db_session_factory):
    """Factory for creating committed test users."""

    async def _create_user(email: str | None = None, daily_run_limit: int | None = None) -> User:
        if email is None:
            email = f"test-{uuid.uuid4().hex[:8]}@example.com"

        async with db_session_factory() as db:
            user = User(email=email, daily_run_limit=daily_run_limit)
            db.add(user)
            await db.commit()
            return user

    return _create_user


@pytest_asyncio.fixture
async def job_factory(db_session_factory, user_factory):
    """Factory for creating committed, due test jobs."""

    async def _create_job(
        owner: User | None = None,
        name: str = "Morning brief",
        prompt: str = "Summarize the news for {{ date }}",
        channel: Channel | None = None,
        schedule_type: str = "daily",
        schedule_time: str | None = "09:00",
        schedule_day_of_week: int | None = None,
        schedule_cron: str | None = None,
        next_run_at: datetime | None = None,
        fail_count: int = 0,
        **fields: Any,
    ) -> Job:
        if owner is None:
            owner = await user_factory()
        if next_run_at is None:
            next_run_at = (utc_now() - timedelta(minutes=1)).replace(microsecond=0)

        channel_type, channel_config = to_db_channel_config(channel or InAppChannel())

        async with db_session_factory() as db:
            job = Job(
                owner_id=owner.id,
                name=name,
                prompt=prompt,
                schedule_type=schedule_type,
                schedule_time=schedule_time,
                schedule_day_of_week=schedule_day_of_week,
                schedule_cron=schedule_cron,
                channel_type=channel_type,
                channel_config=channel_config,
                enabled=True,
                next_run_at=next_run_at,
                fail_count=fail_count,
                **fields,
            )
            db.add(job)
            await db.commit()
            return job

    return _create_job


@pytest_asyncio.fixture
async def load_job(db_session_factory):
    """Read a job's current state in a fresh session."""

    async def _load(job_id: uuid.UUID) -> Job:
        async with db_session_factory() as db:
            return await db.get(Job, job_id)

    return _load


@pytest_asyncio.fixture
async def load_runs(db_session_factory):
    """Read all run rows of a job (with their delivery receipts) in a fresh session."""

    async def _load(job_id: uuid.UUID) -> list[RunHistory]:
        async with db_session_factory() as db:
            result = await db.execute(
                select(RunHistory).where(RunHistory.job_id == job_id).order_by(RunHistory.run_at)
            )
            return list(result.scalars().all())

    return _load


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def make_generation_result() -> Callable[..., GenerationResult]:
    """Factory for normalized generation results."""

    def _make(
        text: str = "Generated output",
        used_tool: bool = False,
        model: str = "gpt-5-mini",
        citations: list[Citation] | None = None,
        usage: dict | None = None,
    ) -> GenerationResult:
        return GenerationResult(
            text=text,
            used_tool=used_tool,
            model=model,
            citations=citations or [],
            usage=usage if usage is not None else {"total_tokens": 42},
        )

    return _make


@pytest.fixture
def mock_generate(make_generation_result):
    """Patch the single-call generation function; returns the AsyncMock."""
    with patch(
        "promptloop.services.llm.generate",
        new=AsyncMock(return_value=make_generation_result()),
    ) as mocked:
        yield mocked


@pytest.fixture
def no_backoff(monkeypatch):
    """Make retry backoff instant."""
    monkeypatch.setattr("promptloop.core.retry.backoff_delay", lambda *args, **kwargs: 0.0)


@pytest.fixture
def mock_http():
    """
    Factory for httpx clients backed by MockTransport.

    Returns (client, requests) where requests collects every request sent.
    `responses` may be a single response, a list consumed in order (the
    last one repeats), or a callable taking the request.
    """

    def _create(responses: Any = None) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
        requests: list[httpx.Request] = []
        queue = list(responses) if isinstance(responses, list) else None

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if callable(responses):
                return responses(request)
            if queue is not None:
                template = queue.pop(0) if len(queue) > 1 else queue[0]
            elif responses is not None:
                template = responses
            else:
                template = httpx.Response(204)
            # Fresh response per request
            return httpx.Response(
                template.status_code, headers=template.headers, content=template.content
            )

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return http_client, requests

    yield _create
