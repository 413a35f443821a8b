"""
User-initiated placement and rescheduling with conflict checks.

``RescheduleCoordinator`` handles every move a human makes on the calendar:
dropping a draft onto a slot for the first time (:meth:`place_new`), moving
a job to a new date/time (:meth:`reschedule`) and dropping a job on a
calendar day while keeping its time of day (:meth:`move_to_day`).

A conflicting slot is never resolved automatically.  The conflicting job is
returned to the caller, which either picks another slot or repeats the
request with ``override=True``.
"""

import asyncio
import logging
from datetime import date, datetime, timezone, tzinfo
from typing import Callable, List, Optional

from postflow.exceptions import InvalidTransitionError, ValidationError
from postflow.scheduling.conflict_detector import ConflictDetector
from postflow.scheduling.job_store import JobLocks, JobStore
from postflow.scheduling.models import (
    DEFAULT_MAX_ATTEMPTS,
    Job,
    JobState,
    RescheduleResult,
    ResultStatus,
    Slot,
)
from postflow.scheduling.state_machine import JobStateMachine
from postflow.tools.platform_formats import get_platform_format, validate_content
from postflow.utils import generate_id, utc_now

logger = logging.getLogger(__name__)


class RescheduleCoordinator:
    """Applies user moves after checking the target slot.

    Conflict check and commit happen under one placement lock so two
    concurrent moves cannot both claim the same free slot.

    Args:
        store: Job store.
        detector: Conflict detector over the same store.
        state_machine: Lifecycle rules.
        locks: Per-job write locks shared with the scheduler loop.
        clock: Source of "now".
    """

    def __init__(
        self,
        store: JobStore,
        detector: ConflictDetector,
        state_machine: JobStateMachine,
        locks: JobLocks,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.detector = detector
        self.state_machine = state_machine
        self.locks = locks
        self.clock = clock
        self._placement_lock = asyncio.Lock()

    # ================================================================
    # NEW PLACEMENTS
    # ================================================================

    async def place_new(
        self,
        content_ref: str,
        platform: str,
        scheduled_time: datetime,
        content: Optional[str] = None,
        media_files: Optional[List[str]] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        override: bool = False,
    ) -> RescheduleResult:
        """Create a ``QUEUED`` job and try to promote it to ``SCHEDULED``.

        The job is persisted either way.  On conflict it stays ``QUEUED``
        and the result carries the conflicting job.

        Raises:
            ValidationError: On empty identifiers, a non-positive
                ``max_attempts`` or content that breaks the platform rules.
        """
        if not content_ref or not content_ref.strip():
            raise ValidationError("content_ref cannot be empty")
        if not platform or not platform.strip():
            raise ValidationError("platform cannot be empty")
        if max_attempts < 1:
            raise ValidationError(f"max_attempts must be at least 1, got {max_attempts}")

        media = list(media_files or [])
        if content is not None and get_platform_format(platform) is not None:
            valid, errors = validate_content(content, platform, media)
            if not valid:
                raise ValidationError(f"Content rejected for {platform}: {errors}")

        job = Job(
            id=generate_id(),
            content_ref=content_ref,
            platform=platform.lower(),
            scheduled_time=scheduled_time,
            state=JobState.QUEUED,
            max_attempts=max_attempts,
            content=content,
            media_files=media,
        )

        async with self._placement_lock:
            async with self.locks.hold(job.id):
                job = await self.store.save_job(job)
                logger.info(
                    "[RESCHEDULE] Queued job %s (content=%s, platform=%s, time=%s)",
                    job.id,
                    job.content_ref,
                    job.platform,
                    job.scheduled_time.isoformat(),
                )
                return await self._place(job, job.slot, override)

    # ================================================================
    # MOVES
    # ================================================================

    async def reschedule(
        self,
        job_id: str,
        new_slot: Slot,
        override: bool = False,
    ) -> RescheduleResult:
        """Move a ``QUEUED`` or ``SCHEDULED`` job to *new_slot*.

        Args:
            job_id: Job to move.
            new_slot: Target ``(platform, time)``.
            override: Commit even if the slot is taken.

        Returns:
            ``APPLIED`` with the updated job, ``CONFLICT`` with the job
            occupying the slot, ``NOT_FOUND`` or ``INVALID_TRANSITION``.
        """
        async with self._placement_lock:
            async with self.locks.hold(job_id):
                job = await self.store.get_job(job_id)
                if job is None:
                    logger.info("[RESCHEDULE] Job %s not found, nothing to move", job_id)
                    return RescheduleResult(
                        status=ResultStatus.NOT_FOUND,
                        message=f"Job {job_id} not found",
                    )
                return await self._place(job, new_slot, override)

    async def move_to_day(
        self,
        job_id: str,
        target_date: date,
        override: bool = False,
        tz: tzinfo = timezone.utc,
    ) -> RescheduleResult:
        """Calendar-day drop: move the job to *target_date*, keeping its time of day and platform.

        Day and time of day are read in *tz*, the zone of the calendar the
        operator sees.  The default is UTC, the zone jobs are stored in.
        """
        job = await self.store.get_job(job_id)
        if job is None:
            return RescheduleResult(
                status=ResultStatus.NOT_FOUND,
                message=f"Job {job_id} not found",
            )
        local_time = job.scheduled_time.astimezone(tz).timetz()
        new_time = datetime.combine(target_date, local_time)
        return await self.reschedule(job_id, Slot(platform=job.platform, time=new_time), override)

    # ================================================================
    # INTERNAL HELPERS
    # ================================================================

    async def _place(self, job: Job, slot: Slot, override: bool) -> RescheduleResult:
        """Conflict-check *slot* and commit *job* there.

        Caller holds the placement lock and the job's write lock.
        """
        if not self.state_machine.can(job, "confirm placement"):
            error = InvalidTransitionError(job.id, job.state.value, "reschedule")
            logger.info("[RESCHEDULE] %s", error)
            return RescheduleResult(
                status=ResultStatus.INVALID_TRANSITION,
                job=job,
                message=str(error),
            )

        normalised = Slot(platform=slot.platform.lower(), time=slot.time)
        conflict = await self.detector.find_conflict(normalised, excluding_job_id=job.id)

        if conflict is not None and not override:
            logger.info(
                "[RESCHEDULE] Job %s not moved: slot %s on %s taken by job %s (%s)",
                job.id,
                normalised.time.isoformat(),
                normalised.platform,
                conflict.id,
                conflict.summary(),
            )
            return RescheduleResult(
                status=ResultStatus.CONFLICT,
                job=job,
                conflict=conflict,
                message=f"Slot taken by job {conflict.id}",
            )

        if conflict is not None:
            logger.warning(
                "[RESCHEDULE] Job %s placed on %s at %s despite conflict with job %s (user override)",
                job.id,
                normalised.platform,
                normalised.time.isoformat(),
                conflict.id,
            )

        previous = job.scheduled_time
        self.state_machine.confirm_placement(job, normalised, override=conflict is not None)
        saved = await self.store.save_job(job)

        logger.info(
            "[RESCHEDULE] Job %s scheduled for %s on %s (was %s)",
            saved.id,
            saved.scheduled_time.isoformat(),
            saved.platform,
            previous.isoformat(),
        )
        if saved.scheduled_time <= self.clock():
            logger.info("[RESCHEDULE] Job %s is already due and runs on the next tick", saved.id)

        return RescheduleResult(status=ResultStatus.APPLIED, job=saved)


__all__ = [
    "RescheduleCoordinator",
]
