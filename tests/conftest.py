"""
tests/conftest.py

Shared fixtures for the JudgeSync test suite.

Every test runs against a clean environment: settings cache cleared, API
keys and webhook secrets set to known values, the shared Redis client
replaced by an in-memory FakeRedis, and circuit breaker state forgotten.
Nothing here touches a real database, Redis or CourtListener.
"""

from __future__ import annotations

from typing import Any, Callable, Generator, Type
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from judgesync.config import get_settings, reset_settings
from judgesync.services.circuit_breaker import CircuitBreakerRegistry, CircuitEventBuffer
from judgesync.services.job_queue import JobQueue
from judgesync.services.rate_limiter import set_redis_client
from judgesync.sync.base import SyncManager
from judgesync.sync.runner import reset_breakers
from tests.fakes import (
    FakeFreshnessRepository,
    FakeMetricsRepository,
    FakeQueueDB,
    FakeRedis,
    FakeSyncLogRepository,
    ScriptedLimiter,
)

SYNC_KEY = "test-sync-key"
ADMIN_KEY = "test-admin-key"
WEBHOOK_SECRET = "test-webhook-secret"
VERIFY_TOKEN = "test-verify-token"


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "integration: marks tests as requiring external services (Postgres, Redis)",
    )


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Known settings for every test."""
    monkeypatch.setenv("ENVIRONMENT", "dev")
    monkeypatch.setenv("SYNC_API_KEY", SYNC_KEY)
    monkeypatch.setenv("ADMIN_API_KEY", ADMIN_KEY)
    monkeypatch.setenv("COURTLISTENER_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("COURTLISTENER_WEBHOOK_VERIFY_TOKEN", VERIFY_TOKEN)
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("SYNC_INTER_BATCH_DELAY_SECONDS", "0")
    monkeypatch.setenv("SYNC_RETRY_BASE_DELAY_SECONDS", "0.01")
    monkeypatch.delenv("SUPABASE_DB_URL", raising=False)
    monkeypatch.delenv("RATE_LIMIT_FAIL_OPEN", raising=False)
    reset_settings()
    reset_breakers()
    yield
    reset_settings()
    reset_breakers()


@pytest.fixture
def fake_redis() -> Generator[FakeRedis, None, None]:
    redis = FakeRedis()
    set_redis_client(redis)  # type: ignore[arg-type]
    yield redis
    set_redis_client(None)


@pytest.fixture
def queue_db() -> FakeQueueDB:
    return FakeQueueDB()


@pytest.fixture
def queue(queue_db: FakeQueueDB) -> JobQueue:
    return JobQueue(connection=queue_db.connection, lease_seconds=900, max_attempts=3)


@pytest.fixture
def make_manager() -> Callable[..., SyncManager]:
    """
    Build a sync manager wired to in-memory collaborators.

    Usage:
        manager = make_manager(JudgeSyncManager, client, judges=FakeJudgeRepository())
        manager.logs.entries  # audit rows written
    """

    def factory(cls: Type[SyncManager], client: Any, **overrides: Any) -> SyncManager:
        events = overrides.pop("events", CircuitEventBuffer())
        kwargs: dict = {
            "rate_limiter": ScriptedLimiter(),
            "events": events,
            "breakers": CircuitBreakerRegistry(
                failure_threshold=5, cooldown_seconds=60, event_sink=events
            ),
            "logs": FakeSyncLogRepository(),
            "freshness": FakeFreshnessRepository(),
            "metrics": FakeMetricsRepository(),
            "settings": get_settings(),
            "sleep": AsyncMock(),
        }
        kwargs.update(overrides)
        return cls(client, **kwargs)

    return factory


@pytest.fixture
def app(fake_redis: FakeRedis):
    """A fresh app per test. The lifespan (DB pool, scheduler) is not run."""
    from judgesync.main import create_app

    application = create_app()
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def sync_headers() -> dict:
    return {"X-API-Key": SYNC_KEY}


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Admin-Key": ADMIN_KEY}
