"""Tests for the postflow.database module.

Covers:
- SupabaseConfig construction and environment-based creation.
- validate_not_empty and validate_positive helper functions.
- SupabaseJobStore query chains against a mocked async client.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from postflow.database import (
    JOBS_TABLE,
    SupabaseConfig,
    SupabaseJobStore,
    validate_not_empty,
    validate_positive,
)
from postflow.exceptions import DatabaseError, ValidationError
from postflow.scheduling.models import JobFilter, JobState, job_to_row
from tests.conftest import make_job


# =============================================================================
# SupabaseConfig tests
# =============================================================================


class TestSupabaseConfig:
    """Tests for the SupabaseConfig dataclass."""

    def test_from_env_raises_when_vars_missing(self):
        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"):
            SupabaseConfig.from_env()

    def test_from_env_raises_when_key_missing(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")

        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"):
            SupabaseConfig.from_env()

    def test_from_env_succeeds_when_vars_set(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://test-project.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_KEY", "service-key")

        config = SupabaseConfig.from_env()

        assert config.url == "https://test-project.supabase.co"
        assert config.key == "service-key"


# =============================================================================
# Validation helper tests
# =============================================================================


class TestValidators:
    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_validate_not_empty_rejects(self, value):
        with pytest.raises(ValidationError):
            validate_not_empty(value, "job_id")

    def test_validate_not_empty_accepts(self):
        validate_not_empty("abc", "job_id")
        validate_not_empty(0, "count")

    @pytest.mark.parametrize("value", [None, 0, -3])
    def test_validate_positive_rejects(self, value):
        with pytest.raises(ValidationError):
            validate_positive(value, "max_attempts")

    def test_validate_positive_accepts(self):
        validate_positive(1, "max_attempts")


# =============================================================================
# SupabaseJobStore tests
# =============================================================================


@pytest.fixture
def db(mock_supabase_client):
    return SupabaseJobStore(mock_supabase_client)


def query(mock_supabase_client):
    return mock_supabase_client.table.return_value


class TestListJobs:
    @pytest.mark.asyncio
    async def test_filter_becomes_query_chain(self, db, mock_supabase_client, sample_utc_now):
        job_filter = JobFilter(
            states=frozenset({JobState.SCHEDULED, JobState.QUEUED}),
            due_before=sample_utc_now,
            platform="facebook",
            content_ref="content-1",
        )

        await db.list_jobs(job_filter)

        q = query(mock_supabase_client)
        mock_supabase_client.table.assert_called_with(JOBS_TABLE)
        q.in_.assert_called_once_with("state", ["queued", "scheduled"])
        q.lte.assert_called_once_with("scheduled_time", "2025-06-15T12:00:00+00:00")
        q.eq.assert_any_call("platform", "facebook")
        q.eq.assert_any_call("content_ref", "content-1")

    @pytest.mark.asyncio
    async def test_empty_filter_adds_no_predicates(self, db, mock_supabase_client):
        assert await db.list_jobs() == []
        q = query(mock_supabase_client)
        q.in_.assert_not_called()
        q.lte.assert_not_called()
        q.eq.assert_not_called()

    @pytest.mark.asyncio
    async def test_rows_become_jobs_in_due_order(self, db, mock_supabase_client, sample_utc_now):
        rows = [
            job_to_row(make_job("b", sample_utc_now, created_at=sample_utc_now)),
            job_to_row(make_job("a", sample_utc_now, created_at=sample_utc_now)),
            job_to_row(make_job("c", sample_utc_now - timedelta(hours=1), created_at=sample_utc_now)),
        ]
        query(mock_supabase_client).execute.return_value = MagicMock(data=rows)

        jobs = await db.list_jobs()

        assert [j.id for j in jobs] == ["c", "a", "b"]


class TestGetSaveDelete:
    @pytest.mark.asyncio
    async def test_get_job_found(self, db, mock_supabase_client, sample_utc_now):
        row = job_to_row(make_job("j1", sample_utc_now, state=JobState.SCHEDULED))
        query(mock_supabase_client).execute.return_value = MagicMock(data=[row])

        job = await db.get_job("j1")

        assert job.id == "j1"
        assert job.state is JobState.SCHEDULED
        query(mock_supabase_client).eq.assert_called_once_with("id", "j1")

    @pytest.mark.asyncio
    async def test_get_job_missing(self, db):
        assert await db.get_job("j1") is None

    @pytest.mark.asyncio
    async def test_get_job_rejects_blank_id(self, db):
        with pytest.raises(ValidationError):
            await db.get_job("")

    @pytest.mark.asyncio
    async def test_save_job_upserts_by_id(self, db, mock_supabase_client, sample_utc_now):
        job = make_job("j1", sample_utc_now, state=JobState.SCHEDULED)
        query(mock_supabase_client).execute.return_value = MagicMock(data=[job_to_row(job)])

        saved = await db.save_job(job)

        args, kwargs = query(mock_supabase_client).upsert.call_args
        assert args[0]["id"] == "j1"
        assert args[0]["state"] == "scheduled"
        assert kwargs == {"on_conflict": "id"}
        assert saved.id == "j1"

    @pytest.mark.asyncio
    async def test_save_job_without_returned_row_raises(self, db, sample_utc_now):
        with pytest.raises(DatabaseError, match="j1"):
            await db.save_job(make_job("j1", sample_utc_now))

    @pytest.mark.asyncio
    async def test_delete_job(self, db, mock_supabase_client):
        query(mock_supabase_client).execute.return_value = MagicMock(data=[{"id": "j1"}])
        assert await db.delete_job("j1") is True

    @pytest.mark.asyncio
    async def test_delete_missing_job(self, db):
        assert await db.delete_job("j1") is False


class TestInsert:
    @pytest.mark.asyncio
    async def test_insert_returns_id(self, db, mock_supabase_client):
        query(mock_supabase_client).execute.return_value = MagicMock(data=[{"id": "log-1"}])

        assert await db.insert("posting_logs", {"message": "Published"}) == "log-1"
        mock_supabase_client.table.assert_called_with("posting_logs")

    @pytest.mark.asyncio
    async def test_insert_rejects_empty_data(self, db):
        with pytest.raises(ValidationError):
            await db.insert("posting_logs", {})
