"""
Slot conflict detection for placements and reschedules.

Granularity is platform-scoped and time-of-day based: two placements
collide when they target the same platform and their times are closer than
``min_spacing``.  With the default ``min_spacing`` of zero only identical
timestamps collide.  Only ``SCHEDULED`` jobs occupy slots.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from postflow.config import Settings
from postflow.scheduling.job_store import JobStore
from postflow.scheduling.models import Job, JobFilter, JobState, Slot

logger = logging.getLogger(__name__)

OCCUPYING_STATES = frozenset({JobState.SCHEDULED})


class ConflictDetector:
    """Decides whether a candidate slot collides with an existing job.

    Args:
        store: Job store to query.
        min_spacing: Minimum distance between two posts on the same
            platform.  ``timedelta(0)`` means exact-time collisions only.
    """

    def __init__(self, store: JobStore, min_spacing: timedelta = timedelta(0)) -> None:
        if min_spacing < timedelta(0):
            raise ValueError(f"min_spacing cannot be negative, got {min_spacing}")
        self.store = store
        self.min_spacing = min_spacing

    @classmethod
    def from_settings(cls, store: JobStore, settings: Settings) -> "ConflictDetector":
        return cls(store, min_spacing=timedelta(minutes=settings.min_spacing_minutes))

    def collides(self, slot: Slot, job: Job) -> bool:
        """Whether *job*'s slot collides with *slot*."""
        if job.platform != slot.platform:
            return False
        if self.min_spacing == timedelta(0):
            return job.scheduled_time == slot.time
        return abs(job.scheduled_time - slot.time) < self.min_spacing

    async def find_conflicts(
        self,
        slot: Slot,
        excluding_job_id: Optional[str] = None,
    ) -> List[Job]:
        """All jobs colliding with *slot*, earliest ``created_at`` first."""
        candidates = await self.store.list_jobs(
            JobFilter(states=OCCUPYING_STATES, platform=slot.platform)
        )
        conflicts = [
            job for job in candidates
            if job.id != excluding_job_id and self.collides(slot, job)
        ]
        conflicts.sort(key=lambda j: (j.created_at, j.id))
        return conflicts

    async def find_conflict(
        self,
        slot: Slot,
        excluding_job_id: Optional[str] = None,
    ) -> Optional[Job]:
        """Return the job *slot* collides with, or ``None`` if the slot is free.

        When several jobs collide the one created first wins, so repeated
        queries return the same job.

        Args:
            slot: Candidate ``(platform, time)``.
            excluding_job_id: Job being moved; it never conflicts with itself.

        Returns:
            The colliding ``Job`` or ``None``.
        """
        conflicts = await self.find_conflicts(slot, excluding_job_id)
        if not conflicts:
            return None

        logger.debug(
            "[RESCHEDULE] Conflict at %s on %s (%d colliding jobs, first=%s)",
            slot.time.isoformat(),
            slot.platform,
            len(conflicts),
            conflicts[0].id,
        )
        return conflicts[0]


__all__ = [
    "ConflictDetector",
    "OCCUPYING_STATES",
]
