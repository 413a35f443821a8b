"""
Retry backoff policy: maps an attempt number to the delay before the next try.

Two strategies share one interface:

- ``linear`` (default): ``base_delay * attempt`` -> 5, 10, 15 minutes.
- ``exponential``: ``base_delay * 2 ** (attempt - 1)`` -> 5, 10, 20 minutes.

Both are pure and deterministic.  An optional ``max_delay`` caps the result,
and no delay ever exceeds ``MAX_RETRY_DELAY`` so a retry time stays
representable whatever the attempt count.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from postflow.config import Settings, VALID_BACKOFF_STRATEGIES
from postflow.exceptions import ValidationError

DEFAULT_BASE_DELAY = timedelta(minutes=5)
MAX_RETRY_DELAY = timedelta(days=30)


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay between publish attempts.

    Attributes:
        base_delay: Delay unit (default 5 minutes).
        strategy: ``"linear"`` or ``"exponential"``.
        max_delay: Optional upper bound on any single delay.
    """

    base_delay: timedelta = DEFAULT_BASE_DELAY
    strategy: str = "linear"
    max_delay: Optional[timedelta] = None

    def __post_init__(self) -> None:
        if self.base_delay <= timedelta(0):
            raise ValidationError(f"base_delay must be positive, got {self.base_delay}")
        if self.base_delay > MAX_RETRY_DELAY:
            raise ValidationError(f"base_delay must not exceed {MAX_RETRY_DELAY}, got {self.base_delay}")
        if self.strategy not in VALID_BACKOFF_STRATEGIES:
            raise ValidationError(
                f"Unknown backoff strategy '{self.strategy}'. "
                f"Valid strategies: {list(VALID_BACKOFF_STRATEGIES)}"
            )
        if self.max_delay is not None and self.max_delay < self.base_delay:
            raise ValidationError("max_delay must not be smaller than base_delay")

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffPolicy":
        max_delay = None
        if settings.backoff_max_minutes is not None:
            max_delay = timedelta(minutes=settings.backoff_max_minutes)
        return cls(
            base_delay=timedelta(minutes=settings.backoff_base_minutes),
            strategy=settings.backoff_strategy,
            max_delay=max_delay,
        )

    def next_delay(self, attempt_number: int) -> timedelta:
        """Delay to wait after the given (1-based) failed attempt.

        Attempt numbers below 1 are treated as 1, so the result is always
        at least ``base_delay``.
        """
        attempt = max(1, int(attempt_number))
        # Past this many base units the ceiling applies anyway
        steps = MAX_RETRY_DELAY // self.base_delay + 1
        if self.strategy == "exponential":
            delay = self.base_delay * (2 ** min(attempt - 1, steps.bit_length()))
        else:
            delay = self.base_delay * min(attempt, steps)

        return min(delay, self.max_delay or MAX_RETRY_DELAY, MAX_RETRY_DELAY)


__all__ = [
    "BackoffPolicy",
    "DEFAULT_BASE_DELAY",
    "MAX_RETRY_DELAY",
]
