"""
Retry policy for external fetches.

Only errors whose ``retryable`` flag is set are attempted again; anything
else propagates on the first failure.  When an error carries
``retry_after`` (HTTP 429), the wait is at least that long.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from rotation_spine.core.errors import is_retryable
from rotation_spine.core.logging import get_logger
from rotation_spine.core.settings import RetrySettings

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff bounded by ``max_attempts`` total attempts.

    Delay before attempt ``n + 1`` is ``base_delay * multiplier ** (n - 1)``
    capped at ``max_delay``.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.1

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            multiplier=settings.multiplier,
        )

    def next_delay(self, attempt: int, error: BaseException | None = None) -> float:
        """Delay after failed attempt number *attempt* (1-based)."""
        delay = min(self.base_delay * (self.multiplier ** max(attempt - 1, 0)), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            delay = max(delay, float(retry_after))
        return delay

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        return attempt < self.max_attempts and is_retryable(error)


NO_RETRY = RetryPolicy(max_attempts=1)


@dataclass
class RetryContext:
    """Tracks one retried call.

    Example:
        >>> ctx = RetryContext(RetryPolicy(max_attempts=3), sleep=lambda s: None)
        >>> ctx.run(lambda: 42)
        42
    """

    policy: RetryPolicy
    sleep: Callable[[float], None]
    on_retry: Callable[[int, BaseException, float], None] | None = None
    attempt: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False)

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute *func*, retrying retryable failures.

        Raises:
            The last exception once it is not retryable or attempts are exhausted.
        """
        while True:
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                if not self.policy.should_retry(self.attempt, e):
                    raise
                delay = self.policy.next_delay(self.attempt, e)
                logger.info(
                    "retry.scheduled",
                    attempt=self.attempt,
                    max_attempts=self.policy.max_attempts,
                    delay=delay,
                    error=type(e).__name__,
                )
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                self.sleep(delay)


__all__ = ["RetryPolicy", "RetryContext", "NO_RETRY"]
