"""Pytest configuration and fixtures for quota service tests."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from canquota.api.dependencies import get_attempt_log_repository, get_usage_repository
from canquota.core.config import Settings
from canquota.core.security import create_access_token
from canquota.db import init_db
from canquota.main import create_app
from canquota.repositories import InMemoryAttemptLogRepository, InMemoryUsageRepository
from canquota.services.quota import QuotaEnforcer

TEST_SECRET = "test-secret-key"
ADMIN_EMAIL = "admin@example.com"


class FakeClock:
    """Mutable clock so tests can cross the UTC day boundary."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url=None,
        auto_create_schema=False,
        jwt_secret=TEST_SECRET,
        admin_emails_raw=ADMIN_EMAIL,
        enable_prometheus_metrics=False,
        store_timeout_seconds=2.0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def usage_repo() -> InMemoryUsageRepository:
    return InMemoryUsageRepository()


@pytest.fixture
def attempt_repo(clock) -> InMemoryAttemptLogRepository:
    return InMemoryAttemptLogRepository(clock=clock)


@pytest.fixture
def enforcer(usage_repo, attempt_repo, settings, clock) -> QuotaEnforcer:
    return QuotaEnforcer(usage_repo, attempt_repo, settings, clock=clock)


@pytest.fixture
def app(settings, usage_repo, attempt_repo):
    application = create_app(settings)
    application.dependency_overrides[get_usage_repository] = lambda: usage_repo
    application.dependency_overrides[get_attempt_log_repository] = lambda: attempt_repo
    return application


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def user_token(settings) -> str:
    return create_access_token({"sub": "user-123", "email": "user@example.com"}, settings=settings)


@pytest.fixture
def admin_token(settings) -> str:
    return create_access_token({"sub": "admin-1", "email": ADMIN_EMAIL}, settings=settings)


@pytest.fixture
async def sql_engine():
    """In-memory SQLite engine shared across connections."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def sql_session(sql_engine):
    session_factory = async_sessionmaker(sql_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session
