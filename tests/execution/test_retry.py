"""
Tests for rotation_spine.execution.retry and rotation_spine.execution.rate_limit.

Tests cover:
- Exponential backoff with cap
- retry_after as a lower bound on the delay
- Only retryable errors are retried, up to max_attempts
- Token bucket bursts and blocking refill
"""

import pytest

from rotation_spine.core.errors import NetworkError, ParseError, RateLimitError
from rotation_spine.core.settings import RetrySettings
from rotation_spine.execution.rate_limit import TokenBucketLimiter
from rotation_spine.execution.retry import NO_RETRY, RetryContext, RetryPolicy


# =============================================================================
# RetryPolicy
# =============================================================================


class TestRetryPolicy:
    def test_exponential_delays(self):
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=60.0)
        assert [policy.next_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_is_capped(self):
        policy = RetryPolicy(base_delay=10.0, multiplier=10.0, max_delay=30.0)
        assert policy.next_delay(3) == 30.0

    def test_retry_after_is_a_floor(self):
        policy = RetryPolicy(base_delay=1.0)
        assert policy.next_delay(1, RateLimitError(retry_after=15)) == 15.0
        assert policy.next_delay(1, RateLimitError(retry_after=0.5)) == 1.0

    def test_jitter_stays_in_range(self):
        policy = RetryPolicy(base_delay=10.0, jitter=True, jitter_range=0.1)
        for _ in range(20):
            assert 9.0 <= policy.next_delay(1) <= 11.0

    def test_should_retry(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.should_retry(1, NetworkError("x")) is True
        assert policy.should_retry(3, NetworkError("x")) is False
        assert policy.should_retry(1, ParseError("x")) is False

    def test_from_settings(self):
        policy = RetryPolicy.from_settings(RetrySettings(max_attempts=2, base_delay=0.5, max_delay=4, multiplier=3))
        assert policy == RetryPolicy(max_attempts=2, base_delay=0.5, max_delay=4.0, multiplier=3.0)


# =============================================================================
# RetryContext
# =============================================================================


class TestRetryContext:
    def setup_method(self):
        self.sleeps = []

    def _context(self, **kwargs):
        return RetryContext(RetryPolicy(base_delay=1.0, **kwargs), sleep=self.sleeps.append)

    def test_success_first_try(self):
        ctx = self._context()
        assert ctx.run(lambda: 42) == 42
        assert ctx.attempt == 1
        assert self.sleeps == []

    def test_transient_then_success(self):
        outcomes = [NetworkError("reset"), RateLimitError(retry_after=5), "ok"]

        def flaky():
            item = outcomes.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        ctx = self._context(max_attempts=5)
        assert ctx.run(flaky) == "ok"
        assert ctx.attempt == 3
        assert self.sleeps == [1.0, 5.0]

    def test_terminal_error_not_retried(self):
        calls = []

        def broken():
            calls.append(1)
            raise ParseError("bad payload")

        with pytest.raises(ParseError):
            self._context(max_attempts=5).run(broken)
        assert len(calls) == 1
        assert self.sleeps == []

    def test_attempts_exhausted(self):
        calls = []

        def down():
            calls.append(1)
            raise NetworkError("down")

        ctx = self._context(max_attempts=3)
        with pytest.raises(NetworkError):
            ctx.run(down)
        assert len(calls) == 3
        assert len(self.sleeps) == 2
        assert isinstance(ctx.last_error, NetworkError)

    def test_on_retry_callback(self):
        seen = []
        outcomes = [NetworkError("x"), 1]

        def flaky():
            item = outcomes.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

        ctx = RetryContext(RetryPolicy(base_delay=2.0), sleep=self.sleeps.append, on_retry=lambda *a: seen.append(a))
        ctx.run(flaky)
        assert seen[0][0] == 1
        assert seen[0][2] == 2.0

    def test_no_retry_policy(self):
        def down():
            raise NetworkError("down")

        with pytest.raises(NetworkError):
            RetryContext(NO_RETRY, sleep=self.sleeps.append).run(down)
        assert self.sleeps == []


# =============================================================================
# TokenBucketLimiter
# =============================================================================


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestTokenBucketLimiter:
    def setup_method(self):
        self.time = FakeTime()

    def _limiter(self, rate, capacity):
        return TokenBucketLimiter(rate=rate, capacity=capacity, clock=self.time.clock, sleep=self.time.sleep)

    def test_burst_up_to_capacity(self):
        limiter = self._limiter(rate=1.0, capacity=3.0)
        assert all(limiter.acquire(block=False) for _ in range(3))
        assert limiter.acquire(block=False) is False

    def test_blocking_acquire_waits(self):
        limiter = self._limiter(rate=2.0, capacity=1.0)
        limiter.acquire()
        limiter.acquire()
        assert self.time.sleeps == [0.5]

    def test_refill_capped_at_capacity(self):
        limiter = self._limiter(rate=10.0, capacity=2.0)
        limiter.acquire()
        self.time.now += 100
        assert limiter.available_tokens == 2.0
