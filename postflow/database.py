"""
Supabase-backed Content Store for publishing jobs.

ALL database operations go through the ``SupabaseJobStore`` class defined
here.  No direct Supabase calls should appear anywhere else in the codebase.

Usage::

    from postflow.database import get_db

    # In async context:
    store = await get_db()
    system = SchedulingSystem(store)

Expected schema (``posting_jobs``)::

    id               uuid primary key
    content_ref      text not null
    platform         text not null
    scheduled_time   timestamptz not null
    state            text not null
    attempt_count    int not null default 0
    max_attempts     int not null default 3
    last_error       text
    content          text
    media_files      jsonb default '[]'
    published_at     timestamptz
    platform_post_id text
    conflict_override boolean default false
    created_at       timestamptz default now()
    updated_at       timestamptz default now()
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from supabase import AsyncClient, create_async_client

from postflow.exceptions import DatabaseError, ValidationError
from postflow.scheduling.job_store import sort_key
from postflow.scheduling.models import Job, JobFilter, job_to_row, row_to_job
from postflow.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

JOBS_TABLE = "posting_jobs"


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Args:
        value: The value to check.
        name: Human-readable field name used in error messages.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive (> 0).

    Raises:
        ValidationError: If *value* is ``None`` or not positive.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key for full server-side access
            (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE JOB STORE
# =============================================================================


class SupabaseJobStore:
    """Async :class:`~postflow.scheduling.job_store.JobStore` on Supabase.

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create` factory method."""
        self.client = client

    @classmethod
    async def create(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseJobStore":
        """Factory method to create an async :class:`SupabaseJobStore`.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.
        """
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    # -----------------------------------------------------------------
    # JOBS
    # -----------------------------------------------------------------

    async def list_jobs(self, job_filter: Optional[JobFilter] = None) -> List[Job]:
        """Query jobs matching *job_filter* in due order.

        Returns:
            Jobs ordered by ``scheduled_time``, then ``created_at``.
        """
        job_filter = job_filter or JobFilter()
        query = self.client.table(JOBS_TABLE).select("*")

        if job_filter.states is not None:
            query = query.in_("state", sorted(s.value for s in job_filter.states))
        if job_filter.due_before is not None:
            query = query.lte("scheduled_time", ensure_utc(job_filter.due_before).isoformat())
        if job_filter.platform is not None:
            query = query.eq("platform", job_filter.platform)
        if job_filter.content_ref is not None:
            query = query.eq("content_ref", job_filter.content_ref)

        result = await (
            query.order("scheduled_time", desc=False)
            .order("created_at", desc=False)
            .execute()
        )
        jobs = [row_to_job(row) for row in result.data or []]
        # Identical timestamps are ordered by id, as in the in-memory store
        jobs.sort(key=sort_key)
        return jobs

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID, or ``None`` if not found."""
        validate_not_empty(job_id, "job_id")

        result = await (
            self.client.table(JOBS_TABLE)
            .select("*")
            .eq("id", job_id)
            .execute()
        )
        return row_to_job(result.data[0]) if result.data else None

    async def save_job(self, job: Job) -> Job:
        """Upsert *job* by id.

        Raises:
            ValidationError: On missing identifiers.
            DatabaseError: When the upsert returns no data.
        """
        validate_not_empty(job.id, "job.id")
        validate_not_empty(job.content_ref, "job.content_ref")
        validate_positive(job.max_attempts, "job.max_attempts")

        row = job_to_row(job)
        row["updated_at"] = utc_now().isoformat()

        result = await (
            self.client.table(JOBS_TABLE)
            .upsert(row, on_conflict="id")
            .execute()
        )
        if not result.data:
            raise DatabaseError(f"Upsert of job {job.id} returned no data")

        logger.debug("[STORE] Saved job %s (state=%s)", job.id, job.state.value)
        return row_to_job(result.data[0])

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job; ``True`` if a row was removed."""
        validate_not_empty(job_id, "job_id")

        result = await (
            self.client.table(JOBS_TABLE)
            .delete()
            .eq("id", job_id)
            .execute()
        )
        deleted = bool(result.data)
        if deleted:
            logger.debug("[STORE] Deleted job %s", job_id)
        return deleted

    # -----------------------------------------------------------------
    # POSTING LOGS
    # -----------------------------------------------------------------

    async def insert(self, table: str, data: Dict[str, Any]) -> str:
        """Insert one row into *table* (used by the event log).

        Returns:
            UUID of the inserted row.

        Raises:
            ValidationError: If *data* is empty.
            DatabaseError: When the insert returns no data.
        """
        validate_not_empty(table, "table")
        if not data:
            raise ValidationError("data cannot be None or empty")

        result = await self.client.table(table).insert(data).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0].get("id", "")


# =============================================================================
# GLOBAL SINGLETON
# =============================================================================

_db_instance: Optional[SupabaseJobStore] = None
_db_lock: Optional[asyncio.Lock] = None

# Thread lock for safe initialisation of the async lock itself.
_init_lock = threading.Lock()


async def get_db() -> SupabaseJobStore:
    """Get the global Supabase job store.

    The first call creates the :class:`SupabaseJobStore` singleton;
    subsequent calls return the same instance.
    """
    global _db_instance, _db_lock

    if _db_lock is None:
        with _init_lock:
            if _db_lock is None:
                _db_lock = asyncio.Lock()

    if _db_instance is None:
        async with _db_lock:
            if _db_instance is None:
                _db_instance = await SupabaseJobStore.create()

    return _db_instance


def reset_db() -> None:
    """Drop the global singleton (tests)."""
    global _db_instance, _db_lock
    _db_instance = None
    _db_lock = None


__all__ = [
    "JOBS_TABLE",
    "SupabaseConfig",
    "SupabaseJobStore",
    "get_db",
    "reset_db",
    "validate_not_empty",
    "validate_positive",
]
