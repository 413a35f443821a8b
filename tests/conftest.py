"""Shared fixtures for the postflow test suite."""

import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from postflow.config import Settings, reset_settings
from postflow.scheduling.job_store import InMemoryJobStore
from postflow.scheduling.models import Job, PublishResult
from postflow.scheduling.scheduling_system import SchedulingSystem


# ---------------------------------------------------------------------------
# Ensure we don't hit real services during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear credentials and POSTFLOW_* overrides so tests are hermetic."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "POSTFLOW_PUBLISHER_TOKEN",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)

    for key in list(os.environ):
        if key.startswith("POSTFLOW_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


# ---------------------------------------------------------------------------
# Controllable clock
# ---------------------------------------------------------------------------
class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(sample_utc_now):
    return FakeClock(sample_utc_now)


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def settings():
    """Default settings, independent of config/settings.yaml."""
    return Settings()


@pytest.fixture
def store(clock):
    return InMemoryJobStore(clock=clock)


@pytest.fixture
def system(store, settings, clock):
    return SchedulingSystem(store, settings=settings, clock=clock)


def make_job(
    job_id: str,
    scheduled_time: datetime,
    content_ref: str = "content-1",
    platform: str = "facebook",
    **kwargs,
) -> Job:
    """Build a Job with sensible test defaults."""
    return Job(
        id=job_id,
        content_ref=content_ref,
        platform=platform,
        scheduled_time=scheduled_time,
        **kwargs,
    )


@pytest.fixture
def job_factory():
    return make_job


# ---------------------------------------------------------------------------
# Publishers
# ---------------------------------------------------------------------------
class ScriptedPublisher:
    """Publisher returning queued results, recording every call.

    Each entry of *script* is a ``PublishResult``, an exception instance to
    raise, or a coroutine function awaited in place of publishing.
    """

    def __init__(self, script: Optional[List] = None, default: Optional[PublishResult] = None) -> None:
        self.script = list(script or [])
        self.default = default or PublishResult.ok("post-1")
        self.calls: List[Job] = []
        self.per_job: Dict[str, int] = {}

    async def publish(self, job: Job) -> PublishResult:
        self.calls.append(job)
        self.per_job[job.id] = self.per_job.get(job.id, 0) + 1
        step = self.script.pop(0) if self.script else self.default
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return await step(job)
        return step


@pytest.fixture
def scripted_publisher():
    return ScriptedPublisher


@pytest.fixture
def mock_publisher():
    """A mock publisher whose publish() succeeds."""
    publisher = MagicMock()
    publisher.publish = AsyncMock(return_value=PublishResult.ok("post-123"))
    return publisher


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client with a chainable query builder."""
    client = MagicMock()
    table_mock = MagicMock()
    for name in ("select", "insert", "upsert", "update", "delete", "eq", "in_", "lte", "order", "limit"):
        getattr(table_mock, name).return_value = table_mock

    table_mock.execute = AsyncMock(return_value=MagicMock(data=[], count=0))
    client.table.return_value = table_mock
    return client
