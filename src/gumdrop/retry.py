"""
gumdrop/retry.py - Bounded retry policy

Used by the transaction submitter and by the pipeline around remote state
reads. The policy only decides how many attempts are allowed and how long
to wait between them; callers own the loop.
"""

import random
import time
from typing import Callable, Optional


class RetryPolicy:
    """Configuration for bounded retry with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 15.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self._sleep = sleep or time.sleep

    @classmethod
    def from_config(cls, config, sleep: Optional[Callable[[float], None]] = None) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            sleep=sleep,
        )

    def get_delay(self, attempt: int) -> float:
        """Calculate delay after a failed attempt (1-based)."""
        delay = min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay
        )
        if self.jitter:
            delay *= (0.5 + random.random())
        return delay

    def has_next(self, attempt: int) -> bool:
        """Whether another attempt is allowed after `attempt` attempts."""
        return attempt < self.max_attempts

    def backoff(self, attempt: int) -> None:
        """Sleep before the attempt following `attempt`."""
        self._sleep(self.get_delay(attempt))
