"""
Content Store interface for publishing jobs, plus an in-memory implementation.

The engine only needs four operations: ``list_jobs``, ``get_job``,
``save_job`` (upsert by id) and ``delete_job``.  ``JobStore`` describes that
surface; :class:`InMemoryJobStore` implements it for tests and single-process
runs and :class:`~postflow.database.SupabaseJobStore` implements it against
Supabase.

Stores hand out copies, never their internal records, so callers always
work on a snapshot that may be stale and must re-read before committing.
"""

import asyncio
import copy
import logging
import weakref
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol

from postflow.exceptions import ValidationError
from postflow.scheduling.models import Job, JobFilter
from postflow.utils import utc_now

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    """Durable record storage for jobs."""

    async def list_jobs(self, job_filter: Optional[JobFilter] = None) -> List[Job]:
        """Return jobs matching *job_filter*, ordered by ``scheduled_time`` then ``created_at``."""
        ...

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Return the job with *job_id*, or ``None``."""
        ...

    async def save_job(self, job: Job) -> Job:
        """Create or update *job* (upsert by id) and return the stored copy."""
        ...

    async def delete_job(self, job_id: str) -> bool:
        """Delete the job; ``True`` if a row was removed."""
        ...


def sort_key(job: Job) -> tuple:
    """Due order: ``scheduled_time``, then ``created_at``, then ``id``."""
    return (job.scheduled_time, job.created_at, job.id)


class InMemoryJobStore:
    """Dict-backed :class:`JobStore`.

    Args:
        clock: Source of ``created_at`` / ``updated_at`` stamps.  Defaults
            to :func:`~postflow.utils.utc_now`.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or utc_now
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()

    async def list_jobs(self, job_filter: Optional[JobFilter] = None) -> List[Job]:
        job_filter = job_filter or JobFilter()
        async with self._lock:
            matched = [copy.deepcopy(j) for j in self._jobs.values() if job_filter.matches(j)]
        matched.sort(key=sort_key)
        return matched

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    async def save_job(self, job: Job) -> Job:
        if not job.id:
            raise ValidationError("job must have an id")
        if not job.content_ref:
            raise ValidationError("job must have a content_ref")

        now = self._clock()
        async with self._lock:
            existing = self._jobs.get(job.id)
            stored = copy.deepcopy(job)
            # created_at is owned by the store once the row exists
            stored.created_at = existing.created_at if existing is not None else now
            stored.updated_at = now
            self._jobs[job.id] = stored

        logger.debug("[STORE] Saved job %s (state=%s)", job.id, job.state.value)
        return copy.deepcopy(stored)

    async def delete_job(self, job_id: str) -> bool:
        async with self._lock:
            removed = self._jobs.pop(job_id, None) is not None
        if removed:
            logger.debug("[STORE] Deleted job %s", job_id)
        return removed

    def __len__(self) -> int:
        return len(self._jobs)


class JobLocks:
    """Per-job ``asyncio.Lock`` registry serialising writes to one job.

    Locks are held weakly: an entry disappears once no coroutine holds or
    waits on it, so the registry does not grow with the job history.

    Usage::

        async with locks.hold(job_id):
            job = await store.get_job(job_id)   # re-read under the lock
            ...
            await store.save_job(job)
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def hold(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        return lock


__all__ = [
    "JobStore",
    "InMemoryJobStore",
    "JobLocks",
    "sort_key",
]
