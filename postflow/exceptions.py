"""
Custom exception classes for the postflow scheduling engine.

Exceptions follow the fail-fast philosophy: no silent fallbacks, surface
errors immediately with clear context for debugging.  Expected outcomes of
normal operation (slot conflicts, invalid transitions, missing jobs) are
raised inside the engine and converted to structured results by
:class:`~postflow.scheduling.scheduling_system.SchedulingSystem`.

Hierarchy:
    Exception
    +-- EngineBaseError (base for all engine-specific errors)
    |   +-- SchedulingConflictError
    |   +-- InvalidTransitionError
    |   +-- JobNotFoundError
    |   +-- PublishError
    |       +-- PublishTimeoutError
    +-- ValidationError (ValueError)
    +-- DatabaseError
    +-- ConfigurationError
    +-- RetryExhaustedError
"""

from typing import Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class EngineBaseError(Exception):
    """Base exception for all scheduling-engine errors."""

    pass


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails."""

    pass


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


# =============================================================================
# JOB LIFECYCLE EXCEPTIONS
# =============================================================================


class SchedulingConflictError(EngineBaseError):
    """Raised when a requested slot collides with an existing job.

    Attributes:
        job_id: The job that was being placed (``None`` for a new job).
        conflicting_job_id: The job already occupying the slot.
    """

    def __init__(self, job_id: Optional[str], conflicting_job_id: str):
        self.job_id = job_id
        self.conflicting_job_id = conflicting_job_id
        super().__init__(
            f"Slot for job {job_id} conflicts with job {conflicting_job_id}"
        )


class InvalidTransitionError(EngineBaseError):
    """Raised when a job's current state does not permit an operation.

    Attributes:
        job_id: The job the operation targeted.
        state: The state the job was in (lowercase value).
        operation: The rejected operation name.
    """

    def __init__(self, job_id: str, state: str, operation: str):
        self.job_id = job_id
        self.state = state
        self.operation = operation
        super().__init__(
            f"Cannot {operation} job {job_id} in state '{state}'"
        )


class JobNotFoundError(EngineBaseError):
    """Raised when a job id no longer exists in the store."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


# =============================================================================
# PUBLISHING EXCEPTIONS
# =============================================================================


class PublishError(EngineBaseError):
    """Raised for platform publishing failures."""

    pass


class PublishTimeoutError(PublishError):
    """Raised when a publish call exceeds its timeout.

    Attributes:
        job_id: The job whose publish call timed out.
        timeout: Timeout duration in seconds.
    """

    def __init__(self, job_id: str, timeout: float):
        self.job_id = job_id
        self.timeout = timeout
        super().__init__(f"Publish of job {job_id} timed out after {timeout:g} seconds")


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "EngineBaseError",
    # Core
    "ValidationError",
    "DatabaseError",
    "ConfigurationError",
    "RetryExhaustedError",
    # Job lifecycle
    "SchedulingConflictError",
    "InvalidTransitionError",
    "JobNotFoundError",
    # Publishing
    "PublishError",
    "PublishTimeoutError",
]
