"""
Scheduling data models: JobState, Job, Slot, PublishResult and result types.

Defines the core data structures used by the scheduling subsystem:
- ``JobState``: Lifecycle state of a publishing job.
- ``Job``: One post destined for one platform at one time.
- ``Slot``: A ``(platform, time)`` pair a job occupies.
- ``JobFilter``: Query surface of the job store.
- ``PublishResult``: Outcome of a Platform Publisher call.
- ``RescheduleResult`` / ``TransitionResult``: Structured outcomes returned
  to the presentation layer instead of raising.
- ``QueueSnapshot``: Jobs grouped by state plus the next due time.

Rows are persisted as flat dicts via :func:`job_to_row` / :func:`row_to_job`.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from postflow.exceptions import (
    InvalidTransitionError,
    JobNotFoundError,
    SchedulingConflictError,
)
from postflow.utils import ensure_utc, parse_timestamp, utc_now


DEFAULT_MAX_ATTEMPTS = 3


# =============================================================================
# JOB STATE ENUM
# =============================================================================


class JobState(Enum):
    """Lifecycle state of a publishing job.

    Transitions:
        QUEUED -> SCHEDULED -> RUNNING -> COMPLETED
                      ^           |
                      +-----------+  (retry with backoff)
                                  -> FAILED -> SCHEDULED (manual retry)
        QUEUED / SCHEDULED -> (deleted on cancel)
    """

    QUEUED = "queued"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if state is terminal (no automatic transitions out of it)."""
        return self in {JobState.COMPLETED, JobState.FAILED}


# =============================================================================
# JOB
# =============================================================================


@dataclass
class Job:
    """A single schedulable unit: one content item, one platform, one time.

    Attributes:
        id: Unique identifier (UUID).
        content_ref: Reference to the content item this job publishes.
        platform: Target platform identifier (e.g. ``"facebook"``).
        scheduled_time: When the job becomes eligible to run (aware UTC).
        state: Current lifecycle state.
        attempt_count: Execution attempts made so far.
        max_attempts: Ceiling on attempts before the job is ``FAILED``.
        last_error: Last failure description (cleared on success).
        content: Optional post text handed to the publisher.
        media_files: Optional media paths handed to the publisher.
        published_at: When the job completed.
        platform_post_id: Identifier returned by the platform on success.
        conflict_override: Whether the user placed this job on a colliding
            slot on purpose.
        created_at: When the record was first persisted.
        updated_at: When the record was last persisted.
    """

    # Required fields
    id: str
    content_ref: str
    platform: str
    scheduled_time: datetime

    # Lifecycle
    state: JobState = JobState.QUEUED
    attempt_count: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    last_error: Optional[str] = None

    # Publish payload
    content: Optional[str] = None
    media_files: List[str] = field(default_factory=list)

    # Outcome
    published_at: Optional[datetime] = None
    platform_post_id: Optional[str] = None
    conflict_override: bool = False

    # Metadata
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        self.scheduled_time = ensure_utc(self.scheduled_time)

    @property
    def slot(self) -> "Slot":
        """The ``(platform, scheduled_time)`` pair this job occupies."""
        return Slot(platform=self.platform, time=self.scheduled_time)

    @property
    def attempts_remaining(self) -> int:
        return self.max_attempts - self.attempt_count

    def summary(self) -> str:
        """Short human-readable description for conflict prompts and logs."""
        text = (self.content or self.content_ref).replace("\n", " ")
        if len(text) > 60:
            text = text[:57] + "..."
        return (
            f"{self.platform} @ {self.scheduled_time.strftime('%Y-%m-%d %H:%M')} "
            f"[{self.state.value}] {text}"
        )


# =============================================================================
# SLOT
# =============================================================================


@dataclass(frozen=True)
class Slot:
    """A ``(platform, time)`` pair.

    Attributes:
        platform: Target platform identifier.
        time: Publish instant (normalised to aware UTC).
    """

    platform: str
    time: datetime

    def __post_init__(self) -> None:
        # frozen dataclass: bypass __setattr__ for normalisation
        object.__setattr__(self, "time", ensure_utc(self.time))


# =============================================================================
# STORE QUERY FILTER
# =============================================================================


@dataclass
class JobFilter:
    """Predicate for :meth:`JobStore.list_jobs`.

    Every populated attribute narrows the result; an empty filter matches
    every job.

    Attributes:
        states: Only jobs in one of these states.
        due_before: Only jobs with ``scheduled_time <= due_before``.
        platform: Only jobs for this platform.
        content_ref: Only jobs for this content item.
    """

    states: Optional[FrozenSet[JobState]] = None
    due_before: Optional[datetime] = None
    platform: Optional[str] = None
    content_ref: Optional[str] = None

    def matches(self, job: Job) -> bool:
        if self.states is not None and job.state not in self.states:
            return False
        if self.due_before is not None and job.scheduled_time > ensure_utc(self.due_before):
            return False
        if self.platform is not None and job.platform != self.platform:
            return False
        if self.content_ref is not None and job.content_ref != self.content_ref:
            return False
        return True


# =============================================================================
# PUBLISH RESULT
# =============================================================================


@dataclass
class PublishResult:
    """Outcome of a Platform Publisher call.

    Attributes:
        success: Whether the platform accepted the post.
        error: Failure description when ``success`` is ``False``.
        platform_post_id: The platform's identifier for the new post.
    """

    success: bool
    error: Optional[str] = None
    platform_post_id: Optional[str] = None

    @classmethod
    def ok(cls, platform_post_id: Optional[str] = None) -> "PublishResult":
        return cls(success=True, platform_post_id=platform_post_id)

    @classmethod
    def failure(cls, error: str) -> "PublishResult":
        return cls(success=False, error=error or "Unknown error")


# =============================================================================
# STRUCTURED RESULTS
# =============================================================================


class ResultStatus(Enum):
    """Outcome of a user-initiated engine operation."""

    APPLIED = "applied"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"


@dataclass
class RescheduleResult:
    """Outcome of a placement or reschedule request.

    Attributes:
        status: What happened.
        job: The job after the operation (unchanged on conflict).
        conflict: The job occupying the requested slot, when
            ``status`` is ``CONFLICT``.
        message: Human-readable detail for non-applied outcomes.
    """

    status: ResultStatus
    job: Optional[Job] = None
    conflict: Optional[Job] = None
    message: str = ""

    @property
    def applied(self) -> bool:
        return self.status is ResultStatus.APPLIED

    def raise_for_status(self, job_id: Optional[str] = None) -> Job:
        """Return the job when applied, otherwise raise the matching engine error.

        Raises:
            SchedulingConflictError: On ``CONFLICT``.
            JobNotFoundError: On ``NOT_FOUND``.
            InvalidTransitionError: On ``INVALID_TRANSITION``.
        """
        job_id = self.job.id if self.job is not None else job_id
        if self.status is ResultStatus.CONFLICT:
            raise SchedulingConflictError(job_id, self.conflict.id if self.conflict else "unknown")
        if self.status is ResultStatus.NOT_FOUND:
            raise JobNotFoundError(job_id or "unknown")
        if self.status is ResultStatus.INVALID_TRANSITION:
            state = self.job.state.value if self.job is not None else "unknown"
            raise InvalidTransitionError(job_id or "unknown", state, "reschedule")
        return self.job


@dataclass
class TransitionResult:
    """Outcome of a manual state transition (e.g. retry).

    Attributes:
        status: What happened.
        job: The job after the operation.
        message: Human-readable detail for non-applied outcomes.
    """

    status: ResultStatus
    job: Optional[Job] = None
    message: str = ""

    @property
    def applied(self) -> bool:
        return self.status is ResultStatus.APPLIED

    def raise_for_status(self, job_id: Optional[str] = None) -> Job:
        """Return the job when applied, otherwise raise the matching engine error."""
        job_id = self.job.id if self.job is not None else job_id
        if self.status is ResultStatus.NOT_FOUND:
            raise JobNotFoundError(job_id or "unknown")
        if self.status is ResultStatus.INVALID_TRANSITION:
            state = self.job.state.value if self.job is not None else "unknown"
            raise InvalidTransitionError(job_id or "unknown", state, "retry")
        return self.job


# =============================================================================
# QUEUE SNAPSHOT
# =============================================================================


@dataclass
class QueueSnapshot:
    """Jobs grouped by state for the job list and calendar views."""

    queued: List[Job] = field(default_factory=list)
    scheduled: List[Job] = field(default_factory=list)
    running: List[Job] = field(default_factory=list)
    completed: List[Job] = field(default_factory=list)
    failed: List[Job] = field(default_factory=list)
    next_due_time: Optional[datetime] = None

    def counts(self) -> Dict[str, int]:
        return {
            JobState.QUEUED.value: len(self.queued),
            JobState.SCHEDULED.value: len(self.scheduled),
            JobState.RUNNING.value: len(self.running),
            JobState.COMPLETED.value: len(self.completed),
            JobState.FAILED.value: len(self.failed),
        }


# =============================================================================
# ROW CONVERSION
# =============================================================================


def job_to_row(job: Job) -> Dict[str, Any]:
    """Convert a ``Job`` to a flat dict suitable for any record store."""
    return {
        "id": job.id,
        "content_ref": job.content_ref,
        "platform": job.platform,
        "scheduled_time": job.scheduled_time.isoformat(),
        "state": job.state.value,
        "attempt_count": job.attempt_count,
        "max_attempts": job.max_attempts,
        "last_error": job.last_error,
        "content": job.content,
        "media_files": list(job.media_files),
        "published_at": job.published_at.isoformat() if job.published_at else None,
        "platform_post_id": job.platform_post_id,
        "conflict_override": job.conflict_override,
        "created_at": job.created_at.isoformat(),
        "updated_at": job.updated_at.isoformat(),
    }


def row_to_job(row: Dict[str, Any]) -> Job:
    """Convert a stored row dict back to a ``Job``.

    Args:
        row: Dict as produced by :func:`job_to_row` or returned by Supabase.

    Returns:
        A ``Job`` instance.
    """
    published_at = None
    if row.get("published_at"):
        published_at = parse_timestamp(row["published_at"])

    created_at = parse_timestamp(row["created_at"]) if row.get("created_at") else utc_now()
    updated_at = parse_timestamp(row["updated_at"]) if row.get("updated_at") else created_at

    return Job(
        id=row["id"],
        content_ref=row["content_ref"],
        platform=row["platform"],
        scheduled_time=parse_timestamp(row["scheduled_time"]),
        state=JobState(row.get("state", JobState.QUEUED.value)),
        attempt_count=int(row.get("attempt_count") or 0),
        max_attempts=int(row.get("max_attempts") or DEFAULT_MAX_ATTEMPTS),
        last_error=row.get("last_error"),
        content=row.get("content"),
        media_files=list(row.get("media_files") or []),
        published_at=published_at,
        platform_post_id=row.get("platform_post_id"),
        conflict_override=bool(row.get("conflict_override", False)),
        created_at=created_at,
        updated_at=updated_at,
    )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "JobState",
    "Job",
    "Slot",
    "JobFilter",
    "PublishResult",
    "ResultStatus",
    "RescheduleResult",
    "TransitionResult",
    "QueueSnapshot",
    "job_to_row",
    "row_to_job",
]
