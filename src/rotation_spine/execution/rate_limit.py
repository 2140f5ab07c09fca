"""
Token-bucket rate limiting for HTTP providers.

SEC asks clients to stay under 10 requests per second and FINRA enforces
its own quota; each provider owns one bucket shared across the fetch
worker threads.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class TokenBucketLimiter:
    """Token bucket rate limiter.

    Tokens are added at a fixed rate up to capacity.
    Allows bursts up to capacity, then limits to rate.

    Attributes:
        rate: Tokens added per second
        capacity: Maximum tokens (burst size)
    """

    rate: float
    capacity: float
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    _tokens: float = field(default=0.0, init=False)
    _last_update: float = field(default=0.0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self) -> None:
        self._tokens = self.capacity
        self._last_update = self.clock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self._last_update
        self._tokens = min(self.capacity, self._tokens + (elapsed * self.rate))
        self._last_update = now

    def acquire(self, tokens: int = 1, block: bool = True) -> bool:
        """Take *tokens*; when *block*, wait until they are available."""
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= tokens:
                    self._tokens -= tokens
                    return True
                if not block:
                    return False
                wait_time = (tokens - self._tokens) / self.rate
            # Release lock while sleeping
            self.sleep(wait_time)

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens


__all__ = ["TokenBucketLimiter"]
