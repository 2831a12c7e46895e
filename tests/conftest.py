"""
Pytest configuration and fixtures for Jobwatch tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- Factory fixtures for creating executions in any lifecycle state
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from jobwatch.config import AppConfig, Settings, get_config, get_settings
from jobwatch.core.database import get_db
from jobwatch.core.datetime_utils import utc_now
from jobwatch.main import app
from jobwatch.models import Base
from jobwatch.models.execution import ExecutionStatus, JobExecution, TriggeredBy
from jobwatch.services.query_cache import QueryCache, reset_query_cache
from jobwatch.services.retry_dispatch import (
    LogOnlyRetryDispatcher,
    get_retry_dispatcher,
    reset_retry_dispatcher,
)

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Job 1 has an SLA and a timeout, job 2 only a timeout, job 3 nothing.
TEST_CONFIG = {
    "jobs": {
        1: {"sla_minutes": 1, "timeout_minutes": 5},
        2: {"timeout_minutes": 30},
    },
    "analytics": {
        "memory_threshold_mb": 1024,
        "cpu_threshold_percent": 80,
    },
    "retention": {
        "archive_after_days": 90,
        "cleanup_after_days": 365,
        "estimated_row_bytes": 1024,
    },
}


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    scheduler_enabled: bool = False
    bulk_batch_size: int = 2
    retry_webhook_url: str = ""


@pytest.fixture
def test_settings() -> TestSettings:
    return TestSettings()


@pytest.fixture
def app_config() -> AppConfig:
    config = AppConfig(data=TEST_CONFIG)
    config.settings = TestSettings()
    return config


@pytest.fixture
def query_cache() -> QueryCache:
    return QueryCache(ttl_seconds=60)


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
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, app_config: AppConfig
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database and config overrides."""
    from jobwatch.core.rate_limit import limiter

    async def override_get_db():
        yield db_session

    def override_get_settings():
        return TestSettings()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_config] = lambda: app_config
    app.dependency_overrides[get_retry_dispatcher] = LogOnlyRetryDispatcher

    # Fresh process-wide state for every test
    limiter.reset()
    reset_query_cache()
    reset_retry_dispatcher()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    reset_query_cache()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def execution_factory(db_session: AsyncSession):
    """
    Factory for inserting executions directly in a given state.

    Started executions default to starting at `created_at`; terminal ones get
    a completion time `duration_seconds` (default 60) after their start.
    """

    async def _create_execution(
        job_id: int = 1,
        status: ExecutionStatus = ExecutionStatus.PENDING,
        created_at: datetime = None,
        started_at: datetime = None,
        duration_seconds: float = None,
        triggered_by: TriggeredBy = TriggeredBy.SCHEDULER,
        **fields,
    ) -> JobExecution:
        created_at = created_at or utc_now()
        if started_at is None and not status.is_waiting and status != ExecutionStatus.CANCELLED:
            started_at = created_at

        completed_at = None
        if status.is_terminal:
            if started_at is not None:
                if duration_seconds is None:
                    duration_seconds = 60.0
                completed_at = started_at + timedelta(seconds=duration_seconds)
            else:
                completed_at = created_at

        values = {
            "triggered_by_user_id": 7,
            "execution_date": (started_at or created_at).date(),
            "completed_at": completed_at,
            "sla_breached": False,
            "archived": False,
            "version": 1,
            "updated_at": created_at,
            **fields,
        }
        execution = JobExecution(
            job_id=job_id,
            execution_status=status,
            created_at=created_at,
            started_at=started_at,
            duration_seconds=duration_seconds,
            triggered_by=triggered_by,
            **values,
        )
        db_session.add(execution)
        await db_session.flush()
        return execution

    return _create_execution


@pytest.fixture
def days_ago():
    """Naive UTC timestamp N days (and optional hours) in the past."""

    def _days_ago(days: float, hours: float = 0) -> datetime:
        return utc_now() - timedelta(days=days, hours=hours)

    return _days_ago
