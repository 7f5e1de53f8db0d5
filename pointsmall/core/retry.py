"""
Caller-side retry for lock contention.

The core never retries on its own: a ContentionError means the whole unit of
work was rolled back and nothing was mutated, so the caller may safely run the
operation again. Any other error is returned to the caller on the first attempt.
"""
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .config import settings
from .exceptions import ContentionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff.

    Attributes:
        max_retries: retries after the first attempt (0 = no retries)
        initial_delay: seconds before the first retry
        max_delay: upper bound for any single delay
        exponential_base: growth factor per attempt
        jitter: fraction of the delay added or removed at random (0-1)
    """

    max_retries: int = 3
    initial_delay: float = 0.05
    max_delay: float = 1.0
    exponential_base: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            )
        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be between 0.0 and 1.0, got {self.jitter}")

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.CONTENTION_MAX_RETRIES,
            initial_delay=settings.CONTENTION_BACKOFF_MS / 1000,
            max_delay=max(settings.CONTENTION_BACKOFF_MAX_MS, settings.CONTENTION_BACKOFF_MS) / 1000,
        )

    def calculate_backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter and delay:
            delay += delay * self.jitter * random.uniform(-1.0, 1.0)
        return max(0.0, delay)


def run_with_retry(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying only on ContentionError."""
    policy = policy or RetryPolicy.from_settings()
    attempt = 0
    while True:
        try:
            return operation()
        except ContentionError:
            if attempt >= policy.max_retries:
                logger.warning(f"Giving up after {attempt + 1} attempts on lock contention")
                raise
            delay = policy.calculate_backoff(attempt)
            logger.info(f"Lock contention, retry {attempt + 1}/{policy.max_retries} in {delay:.3f}s")
            sleep(delay)
            attempt += 1
