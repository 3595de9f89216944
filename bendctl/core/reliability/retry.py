"""
Retry policy — bounded exponential backoff with jitter.

Used by the fetcher for transient network failures.  Only errors that
declare themselves retryable are retried; everything else propagates
on the first attempt.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from bendctl.core.errors import BendctlError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """How many attempts to make and how long to wait between them."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.3

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number ``attempt`` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + random.uniform(0, delay * self.jitter)


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or the policy is exhausted.

    Raises:
        BendctlError: The last error, once attempts run out or the
            error is not retryable.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except BendctlError as exc:
            if not exc.retryable or attempt >= policy.max_attempts:
                if exc.retryable:
                    logger.warning("%s failed after %d attempts: %s", label, attempt, exc)
                raise
            delay = policy.delay_for(attempt)
            logger.info(
                "%s failed (attempt %d/%d): %s — retrying in %.1fs",
                label,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            sleep(delay)
