"""
Retry policy for per-file transfers.

Exponential backoff with optional jitter. Only the file that failed is
retried; the run itself is never retried automatically.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass
class RetryPolicy:
    """
    Examples:
        >>> policy = RetryPolicy(max_attempts=3, initial_delay=1.0)
        >>> policy.should_retry(attempt=1)
        True
        >>> policy.should_retry(attempt=3)
        False
    """

    # Total executions per file, including the first one
    max_attempts: int = 3

    # Delay before the second attempt (seconds)
    initial_delay: float = 1.0

    # Upper bound for any single delay (seconds)
    max_delay: float = 30.0

    # delay = initial_delay * base^(attempt - 1)
    exponential_base: float = 2.0

    # ±25% random jitter
    jitter: bool = False

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")

    @classmethod
    def from_config(cls, transfer_config: dict) -> RetryPolicy:
        delay = float(transfer_config.get("retry_delay_s", 1.0))
        return cls(
            max_attempts=int(transfer_config.get("max_attempts", 3)),
            initial_delay=delay,
            max_delay=max(delay, float(transfer_config.get("max_retry_delay_s", 30.0))),
        )

    def should_retry(self, attempt: int) -> bool:
        """True if another attempt follows attempt number ``attempt`` (1-indexed)."""
        return attempt < self.max_attempts

    def get_delay(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-indexed)."""
        delay = self.initial_delay * (self.exponential_base ** (attempt - 1))
        if self.jitter:
            delay *= random.uniform(0.75, 1.25)
        return min(delay, self.max_delay)
