"""
Job lifecycle rules shared by the scheduler loop and the reschedule coordinator.

``JobStateMachine`` applies one transition to a ``Job`` in memory and raises
:class:`~postflow.exceptions.InvalidTransitionError` when the job's state
does not allow it.  Persisting the result is the caller's job.

Transitions:

    ====================  =====================  ===========
    From                  Event                  To
    ====================  =====================  ===========
    QUEUED / SCHEDULED    confirm placement      SCHEDULED
    SCHEDULED             due time reached       RUNNING
    RUNNING               publish success        COMPLETED
    RUNNING               failure, attempts left SCHEDULED
    RUNNING               failure, exhausted     FAILED
    FAILED                manual retry           SCHEDULED
    QUEUED / SCHEDULED    manual cancel          (deleted)
    ====================  =====================  ===========

``ExclusivityGuard`` keeps at most one running job per ``content_ref``.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from postflow.exceptions import InvalidTransitionError
from postflow.scheduling.backoff import BackoffPolicy
from postflow.scheduling.models import Job, JobState, Slot

logger = logging.getLogger(__name__)


# Event name -> states the event is accepted from
ALLOWED_FROM: Dict[str, FrozenSet[JobState]] = {
    "confirm placement": frozenset({JobState.QUEUED, JobState.SCHEDULED}),
    "start": frozenset({JobState.SCHEDULED}),
    "complete": frozenset({JobState.RUNNING}),
    "fail": frozenset({JobState.RUNNING}),
    "retry": frozenset({JobState.FAILED}),
    # RUNNING is accepted so a delete racing the loop still goes through;
    # the in-flight result is discarded when the job is gone.
    "cancel": frozenset({JobState.QUEUED, JobState.SCHEDULED, JobState.RUNNING, JobState.FAILED}),
}


class JobStateMachine:
    """Applies lifecycle transitions to jobs.

    Args:
        backoff: Policy used to compute the retry time after a failure.
    """

    def __init__(self, backoff: Optional[BackoffPolicy] = None) -> None:
        self.backoff = backoff or BackoffPolicy()

    @staticmethod
    def can(job: Job, event: str) -> bool:
        """Whether *event* is accepted in *job*'s current state."""
        return job.state in ALLOWED_FROM[event]

    def _require(self, job: Job, event: str) -> None:
        if not self.can(job, event):
            raise InvalidTransitionError(job.id, job.state.value, event)

    # ================================================================
    # PLACEMENT
    # ================================================================

    def confirm_placement(self, job: Job, slot: Slot, override: bool = False) -> Job:
        """QUEUED/SCHEDULED -> SCHEDULED at *slot*.

        The caller must have checked the slot for conflicts; *override*
        records that the user accepted a collision.
        """
        self._require(job, "confirm placement")
        job.platform = slot.platform
        job.scheduled_time = slot.time
        job.state = JobState.SCHEDULED
        job.conflict_override = override
        return job

    # ================================================================
    # EXECUTION
    # ================================================================

    def start(self, job: Job) -> Job:
        """SCHEDULED -> RUNNING, counting the attempt."""
        self._require(job, "start")
        if job.attempt_count >= job.max_attempts:
            raise InvalidTransitionError(job.id, job.state.value, "start (attempts exhausted)")
        job.attempt_count += 1
        job.state = JobState.RUNNING
        return job

    def complete(
        self,
        job: Job,
        now: datetime,
        platform_post_id: Optional[str] = None,
    ) -> Job:
        """RUNNING -> COMPLETED."""
        self._require(job, "complete")
        job.state = JobState.COMPLETED
        job.last_error = None
        job.published_at = now
        job.platform_post_id = platform_post_id
        return job

    def fail(self, job: Job, error: str, now: datetime) -> Job:
        """RUNNING -> SCHEDULED with backoff, or FAILED once attempts are exhausted."""
        self._require(job, "fail")
        job.last_error = error
        if job.attempt_count < job.max_attempts:
            job.state = JobState.SCHEDULED
            job.scheduled_time = now + self.backoff.next_delay(job.attempt_count)
        else:
            job.state = JobState.FAILED
        return job

    # ================================================================
    # OPERATOR ACTIONS
    # ================================================================

    def retry(
        self,
        job: Job,
        now: datetime,
        at: Optional[datetime] = None,
        extra_attempts: int = 1,
    ) -> Job:
        """FAILED -> SCHEDULED at *at* (default *now*).

        ``attempt_count`` is kept; ``max_attempts`` grows so the job gets
        *extra_attempts* more tries.
        """
        self._require(job, "retry")
        if extra_attempts < 1:
            raise ValueError(f"extra_attempts must be at least 1, got {extra_attempts}")
        job.state = JobState.SCHEDULED
        job.scheduled_time = at or now
        job.max_attempts = max(job.max_attempts, job.attempt_count + extra_attempts)
        return job


class ExclusivityGuard:
    """In-process registry of content items with a running publish.

    All access happens on one event loop and neither method awaits, so the
    check-and-set in :meth:`try_acquire` cannot interleave with another
    coroutine.
    """

    def __init__(self) -> None:
        self._holders: Dict[str, str] = {}

    def try_acquire(self, content_ref: str, job_id: str) -> bool:
        """Mark *content_ref* as running for *job_id*; ``False`` if another job holds it."""
        holder = self._holders.get(content_ref)
        if holder is not None and holder != job_id:
            return False
        self._holders[content_ref] = job_id
        return True

    def release(self, content_ref: str, job_id: str) -> None:
        if self._holders.get(content_ref) == job_id:
            del self._holders[content_ref]

    def holder(self, content_ref: str) -> Optional[str]:
        return self._holders.get(content_ref)

    def is_held_by(self, job_id: str) -> bool:
        """Whether *job_id* currently has a live execution in this process."""
        return job_id in self._holders.values()

    def __len__(self) -> int:
        return len(self._holders)


__all__ = [
    "ALLOWED_FROM",
    "JobStateMachine",
    "ExclusivityGuard",
]
