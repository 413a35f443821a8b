"""
Background publishing scheduler that publishes jobs at their scheduled times.

``PublishingScheduler`` runs as an asyncio background task, periodically
checking for jobs that are due and handing each one to the Platform
Publisher in its own task, so a slow platform never delays the next tick.
Each publish is bounded by a timeout; a timeout or a raised exception
counts as a failed attempt.  Includes stuck-job recovery at startup and
every ``recovery_interval_cycles`` ticks.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Protocol, Set

from postflow.config import Settings
from postflow.exceptions import PublishTimeoutError
from postflow.logging import ComponentLogger, EngineLogger, LogComponent
from postflow.scheduling.models import Job, JobState, PublishResult
from postflow.scheduling.scheduling_system import SchedulingSystem

logger = logging.getLogger(__name__)


class PlatformPublisher(Protocol):
    """Performs the network call that publishes one job."""

    async def publish(self, job: Job) -> PublishResult:
        ...


class PublishingScheduler:
    """Background task that publishes scheduled jobs at their designated times.

    Each cycle:
    1. Queries ``SCHEDULED`` jobs with ``scheduled_time <= now`` and
       attempts left, in due order.
    2. Claims each one through the scheduling system (``RUNNING``).
    3. Publishes every claimed job in its own task, bounded by
       ``publish_timeout_seconds``.
    4. Applies the outcome (``COMPLETED``, back to ``SCHEDULED`` with
       backoff, or ``FAILED``).
    5. Periodically recovers jobs stuck in ``RUNNING``.

    Args:
        scheduling_system: The scheduling system managing job lifecycle.
        publisher: Platform Publisher used for every job.
        check_interval_seconds: How often to check for due jobs.
        publish_timeout_seconds: Upper bound of one publish call.
        recovery_interval_cycles: Run stuck-job recovery every N cycles.
        event_log: Optional structured event log; every attempt outcome
            is recorded there.
    """

    def __init__(
        self,
        scheduling_system: SchedulingSystem,
        publisher: PlatformPublisher,
        check_interval_seconds: float = 60,
        publish_timeout_seconds: float = 30.0,
        recovery_interval_cycles: int = 10,
        event_log: Optional[EngineLogger] = None,
    ) -> None:
        if publish_timeout_seconds <= 0:
            raise ValueError(f"publish_timeout_seconds must be positive, got {publish_timeout_seconds}")
        self.scheduling_system = scheduling_system
        self.publisher = publisher
        self.check_interval_seconds = check_interval_seconds
        self.publish_timeout_seconds = publish_timeout_seconds
        self.recovery_interval_cycles = max(1, recovery_interval_cycles)
        self.events = ComponentLogger(LogComponent.SCHEDULER, event_log) if event_log else None

        self._running: bool = False
        self._cycle_count: int = 0
        self._stop_event = asyncio.Event()
        self._in_flight: Set["asyncio.Task[None]"] = set()
        self._next_due_time: Optional[datetime] = None

    @classmethod
    def from_settings(
        cls,
        scheduling_system: SchedulingSystem,
        publisher: PlatformPublisher,
        settings: Settings,
        event_log: Optional[EngineLogger] = None,
    ) -> "PublishingScheduler":
        return cls(
            scheduling_system,
            publisher,
            check_interval_seconds=settings.check_interval_seconds,
            publish_timeout_seconds=settings.publish_timeout_seconds,
            recovery_interval_cycles=settings.recovery_interval_cycles,
            event_log=event_log,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def next_due_time(self) -> Optional[datetime]:
        """Earliest due time seen at the end of the last tick."""
        return self._next_due_time

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ================================================================
    # LIFECYCLE
    # ================================================================

    async def start(self) -> None:
        """Start the publishing scheduler loop.

        Recovers jobs left ``RUNNING`` by a previous process, then runs
        check cycles until :meth:`stop` is called.  No exception raised
        inside a cycle stops the loop.
        """
        self._running = True
        self._cycle_count = 0
        self._stop_event.clear()
        logger.info(
            "[SCHEDULER] Publishing scheduler started (interval=%ss, timeout=%ss)",
            self.check_interval_seconds,
            self.publish_timeout_seconds,
        )

        try:
            recovered = await self.scheduling_system.recover_running()
            for job in recovered:
                await self._record_recovery(job)
        except Exception:
            logger.exception("[SCHEDULER] Startup recovery failed")

        while self._running:
            try:
                await self.tick()
                self._cycle_count += 1

                if self._cycle_count % self.recovery_interval_cycles == 0:
                    await self._recover_stuck()

            except asyncio.CancelledError:
                logger.info("[SCHEDULER] Publishing scheduler cancelled")
                break
            except Exception:
                logger.exception("[SCHEDULER] Unexpected error in publishing scheduler loop")

            if not await self._wait_next_cycle():
                break

        self._running = False
        await self.drain()
        logger.info("[SCHEDULER] Publishing scheduler stopped")

    async def stop(self) -> None:
        """Stop the publishing scheduler.

        The loop in :meth:`start` exits after the current cycle and waits
        for in-flight publishes to finish.
        """
        self._running = False
        self._stop_event.set()
        logger.info("[SCHEDULER] Publishing scheduler stop requested")

    async def drain(self) -> None:
        """Wait for every in-flight publish task to finish."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _wait_next_cycle(self) -> bool:
        """Sleep until the next cycle; ``False`` when the loop should exit."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.check_interval_seconds)
        except asyncio.TimeoutError:
            return self._running
        except asyncio.CancelledError:
            logger.info("[SCHEDULER] Publishing scheduler sleep cancelled")
            return False
        return False

    # ================================================================
    # CORE CHECK LOOP
    # ================================================================

    async def tick(self, now: Optional[datetime] = None) -> List["asyncio.Task[None]"]:
        """Run one check cycle.

        Claims every due job and starts its publish task.  Claim errors
        are logged per job and never abort the cycle.

        Returns:
            The publish tasks started during this cycle.
        """
        now = now or self.scheduling_system.clock()
        due = await self.scheduling_system.due_jobs(now)

        started: List["asyncio.Task[None]"] = []
        if due:
            logger.info("[SCHEDULER] Found %d jobs due for publishing", len(due))

        for job in due:
            try:
                claimed = await self.scheduling_system.claim(job.id, now)
            except Exception:
                logger.exception("[SCHEDULER] Failed to claim job %s", job.id)
                continue
            if claimed is None:
                continue

            task = asyncio.create_task(self._execute(claimed), name=f"publish-{claimed.id}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            started.append(task)

        self._next_due_time = await self.scheduling_system.next_due_time()
        return started

    # ================================================================
    # PUBLISHING
    # ================================================================

    async def _execute(self, job: Job) -> None:
        """Publish one claimed job and apply the outcome."""
        logger.info(
            "[SCHEDULER] Publishing job %s to %s (attempt %d/%d)",
            job.id,
            job.platform,
            job.attempt_count,
            job.max_attempts,
        )
        loop = asyncio.get_running_loop()
        started = loop.time()

        try:
            result = await asyncio.wait_for(
                self.publisher.publish(job),
                timeout=self.publish_timeout_seconds,
            )
        except asyncio.TimeoutError:
            result = PublishResult.failure(str(PublishTimeoutError(job.id, self.publish_timeout_seconds)))
        except asyncio.CancelledError:
            # Job stays RUNNING; recovery picks it up
            self.scheduling_system.release(job)
            raise
        except Exception as exc:
            logger.error("[SCHEDULER] Publisher raised for job %s: %s", job.id, exc)
            result = PublishResult.failure(f"{type(exc).__name__}: {exc}")

        if not isinstance(result, PublishResult):
            result = PublishResult.failure(f"Publisher returned {type(result).__name__}, expected PublishResult")

        duration_ms = int((loop.time() - started) * 1000)

        try:
            updated = await self.scheduling_system.finish(job, result)
        except Exception:
            logger.exception("[SCHEDULER] Failed to record outcome of job %s", job.id)
            return

        await self._record_attempt(job, result, updated, duration_ms)

    async def _record_attempt(
        self,
        job: Job,
        result: PublishResult,
        updated: Optional[Job],
        duration_ms: int,
    ) -> None:
        """Write one attempt outcome to the structured event log."""
        if self.events is None:
            return

        data = {
            "platform": job.platform,
            "attempt": job.attempt_count,
            "max_attempts": job.max_attempts,
            "success": result.success,
            "error": result.error,
            "platform_post_id": result.platform_post_id,
            "state": updated.state.value if updated else None,
        }
        context = {"job_id": job.id, "content_ref": job.content_ref, "data": data, "duration_ms": duration_ms}

        try:
            if updated is None:
                await self.events.warning("Publish result discarded", **context)
            elif updated.state is JobState.COMPLETED:
                await self.events.info("Published", **context)
            elif updated.state is JobState.SCHEDULED:
                data["retry_at"] = updated.scheduled_time.isoformat()
                await self.events.warning("Publish attempt failed, retry scheduled", **context)
            else:
                await self.events.error("Publish failed permanently", **context)
        except Exception:
            logger.exception("[SCHEDULER] Could not write event log entry for job %s", job.id)

    # ================================================================
    # RECOVERY
    # ================================================================

    async def _recover_stuck(self) -> None:
        """Recover jobs stuck in ``RUNNING`` for longer than the stuck timeout."""
        logger.debug("[SCHEDULER] Running stuck-job recovery check")
        recovered = await self.scheduling_system.recover_stuck()
        for job in recovered:
            await self._record_recovery(job)

    async def _record_recovery(self, job: Job) -> None:
        if self.events is None:
            return
        await self.events.warning(
            "Recovered job left running",
            job_id=job.id,
            content_ref=job.content_ref,
            data={"state": job.state.value, "error": job.last_error},
        )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "PlatformPublisher",
    "PublishingScheduler",
]
