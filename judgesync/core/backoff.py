"""
JudgeSync - Backoff State

Exponential backoff with jitter for transient failure handling. Used by the
sync managers when retrying a single item and by the queue worker when the
database is unreachable.

Usage:
    from judgesync.core.backoff import BackoffState

    backoff = BackoffState()

    try:
        await do_something()
        backoff.record_success()
    except TransientUpstreamError:
        await asyncio.sleep(backoff.record_failure())
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Optional

INITIAL_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 60.0
BACKOFF_MULTIPLIER = 2.0
BACKOFF_JITTER = 0.1  # +/-10%


@dataclass
class BackoffState:
    """
    Tracks consecutive failures and hands out the next delay.

    The n-th consecutive failure waits initial * multiplier ** (n - 1),
    capped at max_delay, with +/- jitter applied.
    """

    initial_delay: float = INITIAL_BACKOFF_SECONDS
    max_delay: float = MAX_BACKOFF_SECONDS
    multiplier: float = BACKOFF_MULTIPLIER
    jitter: float = BACKOFF_JITTER
    consecutive_failures: int = 0
    total_failures: int = 0
    last_failure_time: Optional[float] = None

    def next_delay(self) -> float:
        """Delay for the current failure count without recording anything."""
        if self.consecutive_failures == 0:
            return 0.0
        delay = min(
            self.initial_delay * (self.multiplier ** (self.consecutive_failures - 1)),
            self.max_delay,
        )
        if self.jitter:
            delay += delay * self.jitter * random.uniform(-1.0, 1.0)
        return max(0.0, delay)

    def record_failure(self) -> float:
        """Record a failure and return the delay to wait before retrying."""
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_failure_time = time.monotonic()
        return self.next_delay()

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.total_failures = 0
        self.last_failure_time = None
