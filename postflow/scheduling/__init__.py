"""Scheduling subsystem: job lifecycle, conflict detection, background publishing."""

from postflow.scheduling.backoff import BackoffPolicy
from postflow.scheduling.conflict_detector import ConflictDetector
from postflow.scheduling.job_store import InMemoryJobStore, JobLocks, JobStore
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
from postflow.scheduling.publishing_scheduler import PlatformPublisher, PublishingScheduler
from postflow.scheduling.reschedule_coordinator import RescheduleCoordinator
from postflow.scheduling.scheduling_system import SchedulingSystem
from postflow.scheduling.state_machine import ExclusivityGuard, JobStateMachine

__all__ = [
    "BackoffPolicy",
    "ConflictDetector",
    "ExclusivityGuard",
    "InMemoryJobStore",
    "Job",
    "JobFilter",
    "JobLocks",
    "JobState",
    "JobStateMachine",
    "JobStore",
    "PlatformPublisher",
    "PublishResult",
    "PublishingScheduler",
    "QueueSnapshot",
    "RescheduleCoordinator",
    "RescheduleResult",
    "ResultStatus",
    "SchedulingSystem",
    "Slot",
    "TransitionResult",
]
