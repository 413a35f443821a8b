"""
Scheduling system: the engine facade used by the presentation layer and the loop.

``SchedulingSystem`` owns the collaborators of the engine (store, conflict
detector, state machine, exclusivity guard, per-job locks) and exposes:

- user operations: ``enqueue``, ``reschedule``, ``move_to_day``, ``retry``,
  ``cancel``, ``get_job``, ``get_queue_snapshot``;
- loop operations: ``due_jobs``, ``claim``, ``finish``, ``recover_running``.

Every write to a job happens under that job's lock after re-reading it from
the store, so user actions and the scheduler loop never overwrite each
other.  User operations return structured results instead of raising.
"""

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, List, Optional

from postflow.config import Settings, get_settings
from postflow.scheduling.backoff import BackoffPolicy
from postflow.scheduling.conflict_detector import ConflictDetector
from postflow.scheduling.job_store import JobLocks, JobStore
from postflow.scheduling.models import (
    Job,
    JobFilter,
    JobState,
    PublishResult,
    QueueSnapshot,
    RescheduleResult,
    ResultStatus,
    Slot,
    TransitionResult,
)
from postflow.scheduling.reschedule_coordinator import RescheduleCoordinator
from postflow.scheduling.state_machine import ExclusivityGuard, JobStateMachine
from postflow.utils import utc_now

logger = logging.getLogger(__name__)


class SchedulingSystem:
    """Manages the publishing job lifecycle.

    Args:
        store: Content Store implementation (:class:`InMemoryJobStore` or
            :class:`~postflow.database.SupabaseJobStore`).
        settings: Engine settings.  Defaults to :func:`get_settings`.
        backoff: Retry delay policy.  Defaults to the settings' policy.
        min_spacing: Conflict spacing.  Defaults to the settings' value.
        clock: Source of "now".  Tests pass a controllable clock.
    """

    def __init__(
        self,
        store: JobStore,
        settings: Optional[Settings] = None,
        backoff: Optional[BackoffPolicy] = None,
        min_spacing: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.clock = clock
        self.default_max_attempts = settings.max_attempts
        self.stuck_timeout = timedelta(minutes=settings.stuck_timeout_minutes)

        self.locks = JobLocks()
        self.guard = ExclusivityGuard()
        self.state_machine = JobStateMachine(backoff or BackoffPolicy.from_settings(settings))
        if min_spacing is None:
            self.detector = ConflictDetector.from_settings(store, settings)
        else:
            self.detector = ConflictDetector(store, min_spacing=min_spacing)
        self.coordinator = RescheduleCoordinator(
            store=store,
            detector=self.detector,
            state_machine=self.state_machine,
            locks=self.locks,
            clock=clock,
        )

    # ================================================================
    # USER OPERATIONS
    # ================================================================

    async def enqueue(
        self,
        content_ref: str,
        platform: str,
        scheduled_time: datetime,
        content: Optional[str] = None,
        media_files: Optional[List[str]] = None,
        max_attempts: Optional[int] = None,
        override: bool = False,
    ) -> Job:
        """Create a job and place it on its slot.

        The returned job is ``SCHEDULED`` when the slot was free (or
        *override* was set) and ``QUEUED`` when it collided; use
        :meth:`place_new` to get the conflicting job as well.

        Raises:
            ValidationError: On invalid input.
        """
        result = await self.place_new(
            content_ref,
            platform,
            scheduled_time,
            content=content,
            media_files=media_files,
            max_attempts=max_attempts,
            override=override,
        )
        return result.job

    async def place_new(
        self,
        content_ref: str,
        platform: str,
        scheduled_time: datetime,
        content: Optional[str] = None,
        media_files: Optional[List[str]] = None,
        max_attempts: Optional[int] = None,
        override: bool = False,
    ) -> RescheduleResult:
        """Like :meth:`enqueue` but returns the full placement result."""
        return await self.coordinator.place_new(
            content_ref,
            platform,
            scheduled_time,
            content=content,
            media_files=media_files,
            max_attempts=max_attempts if max_attempts is not None else self.default_max_attempts,
            override=override,
        )

    async def reschedule(
        self,
        job_id: str,
        new_slot: Slot,
        override: bool = False,
    ) -> RescheduleResult:
        """Move a job to *new_slot* (see :meth:`RescheduleCoordinator.reschedule`)."""
        return await self.coordinator.reschedule(job_id, new_slot, override=override)

    async def move_to_day(
        self,
        job_id: str,
        target_date: date,
        override: bool = False,
        tz: tzinfo = timezone.utc,
    ) -> RescheduleResult:
        """Move a job to another calendar day in *tz*, keeping its time of day."""
        return await self.coordinator.move_to_day(job_id, target_date, override=override, tz=tz)

    async def retry(self, job_id: str, at: Optional[datetime] = None) -> TransitionResult:
        """Re-arm a ``FAILED`` job.

        The job goes back to ``SCHEDULED`` at *at* (default: now) with its
        ``attempt_count`` kept and one more attempt allowed.

        Returns:
            ``APPLIED`` with the re-armed job, ``NOT_FOUND`` or
            ``INVALID_TRANSITION`` when the job is not ``FAILED``.
        """
        async with self.locks.hold(job_id):
            job = await self.store.get_job(job_id)
            if job is None:
                return TransitionResult(
                    status=ResultStatus.NOT_FOUND,
                    message=f"Job {job_id} not found",
                )
            if not self.state_machine.can(job, "retry"):
                return TransitionResult(
                    status=ResultStatus.INVALID_TRANSITION,
                    job=job,
                    message=f"Only failed jobs can be retried (job {job_id} is {job.state.value})",
                )

            self.state_machine.retry(job, now=self.clock(), at=at)
            saved = await self.store.save_job(job)

        logger.info(
            "[SCHEDULER] Job %s re-armed for %s (attempt %d of %d)",
            saved.id,
            saved.scheduled_time.isoformat(),
            saved.attempt_count + 1,
            saved.max_attempts,
        )
        return TransitionResult(status=ResultStatus.APPLIED, job=saved)

    async def cancel(self, job_id: str) -> bool:
        """Delete a job.

        Idempotent: cancelling a missing job returns ``False``.  Completed
        jobs are kept as history and also return ``False``.  Cancelling a
        running job deletes the row; the in-flight result is discarded.
        """
        async with self.locks.hold(job_id):
            job = await self.store.get_job(job_id)
            if job is None:
                logger.debug("[SCHEDULER] Cancel of unknown job %s ignored", job_id)
                return False
            if not self.state_machine.can(job, "cancel"):
                logger.warning(
                    "[SCHEDULER] Job %s is %s and cannot be cancelled",
                    job_id,
                    job.state.value,
                )
                return False

            deleted = await self.store.delete_job(job_id)

        if deleted:
            if job.state is JobState.RUNNING:
                logger.warning(
                    "[SCHEDULER] Job %s cancelled while running; its publish result will be discarded",
                    job_id,
                )
            else:
                logger.info("[SCHEDULER] Job %s cancelled", job_id)
        return deleted

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self.store.get_job(job_id)

    async def get_queue_snapshot(self) -> QueueSnapshot:
        """All jobs grouped by state, plus the next due time."""
        snapshot = QueueSnapshot()
        buckets = {
            JobState.QUEUED: snapshot.queued,
            JobState.SCHEDULED: snapshot.scheduled,
            JobState.RUNNING: snapshot.running,
            JobState.COMPLETED: snapshot.completed,
            JobState.FAILED: snapshot.failed,
        }
        for job in await self.store.list_jobs():
            buckets[job.state].append(job)

        runnable = [j for j in snapshot.scheduled if j.attempt_count < j.max_attempts]
        if runnable:
            snapshot.next_due_time = min(j.scheduled_time for j in runnable)

        logger.debug("[SCHEDULER] Queue snapshot: %s", snapshot.counts())
        return snapshot

    # ================================================================
    # LOOP OPERATIONS
    # ================================================================

    async def due_jobs(self, now: Optional[datetime] = None) -> List[Job]:
        """``SCHEDULED`` jobs due at *now* with attempts left, in due order."""
        now = now or self.clock()
        jobs = await self.store.list_jobs(
            JobFilter(states=frozenset({JobState.SCHEDULED}), due_before=now)
        )
        return [j for j in jobs if j.attempts_remaining > 0]

    async def next_due_time(self) -> Optional[datetime]:
        """Earliest ``scheduled_time`` among runnable ``SCHEDULED`` jobs."""
        jobs = await self.store.list_jobs(JobFilter(states=frozenset({JobState.SCHEDULED})))
        runnable = [j.scheduled_time for j in jobs if j.attempts_remaining > 0]
        return min(runnable) if runnable else None

    async def claim(self, job_id: str, now: Optional[datetime] = None) -> Optional[Job]:
        """Atomically move a due job to ``RUNNING``.

        Re-reads the job under its lock and re-validates it; acquires the
        exclusivity guard for its ``content_ref``.

        Returns:
            The ``RUNNING`` job, or ``None`` when the claim was rejected
            (moved, deleted, not due, exhausted or content already running).
        """
        now = now or self.clock()
        async with self.locks.hold(job_id):
            job = await self.store.get_job(job_id)
            if job is None:
                logger.debug("[SCHEDULER] Job %s vanished before claim", job_id)
                return None
            if (
                job.state is not JobState.SCHEDULED
                or job.scheduled_time > now
                or job.attempts_remaining <= 0
            ):
                logger.debug(
                    "[SCHEDULER] Job %s no longer claimable (state=%s, time=%s)",
                    job_id,
                    job.state.value,
                    job.scheduled_time.isoformat(),
                )
                return None

            if not self.guard.try_acquire(job.content_ref, job.id):
                logger.info(
                    "[SCHEDULER] Job %s deferred: content %s is already publishing (job %s)",
                    job_id,
                    job.content_ref,
                    self.guard.holder(job.content_ref),
                )
                return None

            try:
                running = await self.store.list_jobs(
                    JobFilter(states=frozenset({JobState.RUNNING}), content_ref=job.content_ref)
                )
                others = [r.id for r in running if r.id != job.id]
                if others:
                    logger.info(
                        "[SCHEDULER] Job %s deferred: content %s has running job %s",
                        job_id,
                        job.content_ref,
                        others[0],
                    )
                    self.guard.release(job.content_ref, job.id)
                    return None

                self.state_machine.start(job)
                saved = await self.store.save_job(job)
            except Exception:
                self.guard.release(job.content_ref, job.id)
                raise

        logger.info(
            "[SCHEDULER] Claimed job %s (attempt %d/%d)",
            saved.id,
            saved.attempt_count,
            saved.max_attempts,
        )
        return saved

    async def finish(
        self,
        job: Job,
        result: PublishResult,
        now: Optional[datetime] = None,
    ) -> Optional[Job]:
        """Apply a publish outcome to a claimed job.

        The job is re-read under its lock; the result is discarded when the
        job was deleted or is no longer the attempt that was claimed.  The
        exclusivity guard is released in every case.

        Returns:
            The updated job, or ``None`` when the result was discarded.
        """
        try:
            async with self.locks.hold(job.id):
                current = await self.store.get_job(job.id)
                if current is None:
                    logger.info(
                        "[SCHEDULER] Job %s was deleted during publish; result discarded",
                        job.id,
                    )
                    return None
                if current.state is not JobState.RUNNING or current.attempt_count != job.attempt_count:
                    logger.warning(
                        "[SCHEDULER] Stale result for job %s discarded (state=%s, attempt=%d, expected %d)",
                        job.id,
                        current.state.value,
                        current.attempt_count,
                        job.attempt_count,
                    )
                    return None

                now = now or self.clock()
                if result.success:
                    self.state_machine.complete(current, now, platform_post_id=result.platform_post_id)
                else:
                    self.state_machine.fail(current, result.error or "Unknown error", now)
                saved = await self.store.save_job(current)
        finally:
            self.guard.release(job.content_ref, job.id)

        self._log_outcome(saved)
        return saved

    def release(self, job: Job) -> None:
        """Drop the exclusivity claim of an execution that was abandoned."""
        self.guard.release(job.content_ref, job.id)

    # ================================================================
    # RECOVERY
    # ================================================================

    async def recover_running(self, older_than: Optional[timedelta] = None) -> List[Job]:
        """Treat ``RUNNING`` jobs without a live execution as failed attempts.

        Args:
            older_than: Only recover jobs untouched for longer than this.
                ``None`` recovers every orphan (used at startup).

        Returns:
            The recovered jobs after their transition.
        """
        running = await self.store.list_jobs(JobFilter(states=frozenset({JobState.RUNNING})))
        now = self.clock()
        recovered: List[Job] = []

        for candidate in running:
            if self.guard.is_held_by(candidate.id):
                continue
            if older_than is not None and now - candidate.updated_at < older_than:
                continue

            try:
                saved = await self._recover_one(candidate.id, older_than, now)
            except Exception:
                # keep sweeping past a failing job
                logger.exception("[SCHEDULER] Failed to recover job %s", candidate.id)
                continue
            if saved is None:
                continue

            logger.warning(
                "[SCHEDULER] Recovered job %s left in RUNNING (now %s)",
                saved.id,
                saved.state.value,
            )
            recovered.append(saved)

        if recovered:
            logger.info("[SCHEDULER] Recovery complete: %d jobs recovered", len(recovered))
        return recovered

    async def _recover_one(
        self,
        job_id: str,
        older_than: Optional[timedelta],
        now: datetime,
    ) -> Optional[Job]:
        async with self.locks.hold(job_id):
            job = await self.store.get_job(job_id)
            if job is None or job.state is not JobState.RUNNING or self.guard.is_held_by(job.id):
                return None
            reason = (
                f"Publishing stuck for >{int(older_than.total_seconds() // 60)} minutes"
                if older_than is not None
                else "Publishing interrupted before completion"
            )
            self.state_machine.fail(job, reason, now)
            return await self.store.save_job(job)

    async def recover_stuck(self) -> List[Job]:
        """Periodic sweep: recover ``RUNNING`` jobs older than ``stuck_timeout``."""
        return await self.recover_running(older_than=self.stuck_timeout)

    # ================================================================
    # INTERNAL HELPERS
    # ================================================================

    @staticmethod
    def _log_outcome(job: Job) -> None:
        if job.state is JobState.COMPLETED:
            logger.info(
                "[SCHEDULER] Job %s published to %s (post_id=%s)",
                job.id,
                job.platform,
                job.platform_post_id,
            )
        elif job.state is JobState.SCHEDULED:
            logger.warning(
                "[SCHEDULER] Job %s attempt %d/%d failed: %s. Retrying at %s",
                job.id,
                job.attempt_count,
                job.max_attempts,
                job.last_error,
                job.scheduled_time.isoformat(),
            )
        else:
            logger.error(
                "[SCHEDULER] Job %s failed permanently after %d attempts: %s",
                job.id,
                job.attempt_count,
                job.last_error,
            )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "SchedulingSystem",
]
