"""Tests for the rate limiter module."""

import asyncio
import random
import threading
from datetime import timedelta

import pytest

from recipe_engine.core.errors import InvalidArgumentError, OperationCancelledError
from recipe_engine.ingestion.rate_limiter import RateLimiter, TokenBucket


class TestTokenBucket:
    """Tests for TokenBucket."""

    def test_burst_then_refill(self, clock) -> None:
        """Test a full bucket allows a burst, then refills over time."""
        bucket = TokenBucket(5, 1.0, clock=clock.monotonic)
        assert all(bucket.try_acquire() for _ in range(5))
        assert bucket.try_acquire() is False

        clock.advance(1.0)
        assert bucket.try_acquire() is True
        assert bucket.try_acquire() is False

    def test_never_exceeds_capacity(self, clock) -> None:
        """Test a long idle period does not overfill the bucket."""
        bucket = TokenBucket(3, 10.0, clock=clock.monotonic)
        clock.advance(3600)
        assert bucket.tokens <= 3
        assert bucket.seconds_until(3) == 0.0

    def test_invalid_parameters(self) -> None:
        """Test non-positive capacity or rate are rejected."""
        with pytest.raises(InvalidArgumentError):
            TokenBucket(0, 1.0)
        with pytest.raises(InvalidArgumentError):
            TokenBucket(1, 0.0)

    def test_randomized_interleavings_stay_in_bounds(self, clock) -> None:
        """Test tokens stay within [0, max] over many random operations."""
        rng = random.Random(1234)
        bucket = TokenBucket(10, 2.0, clock=clock.monotonic)
        granted = 0

        for _ in range(10_000):
            op = rng.random()
            if op < 0.6:
                if bucket.try_acquire(rng.randint(1, 3)):
                    granted += 1
            elif op < 0.9:
                clock.advance(rng.random() * 0.5)
            else:
                bucket.status()
            assert 0.0 <= bucket.tokens <= 10.0

        assert granted > 0

    def test_concurrent_acquires_never_overdraw(self, clock) -> None:
        """Test threads competing for a bucket take at most its capacity."""
        bucket = TokenBucket(50, 0.001, clock=clock.monotonic)
        results: list[bool] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(20):
                ok = bucket.try_acquire()
                with lock:
                    results.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(results) == 50
        assert bucket.tokens >= 0


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_spec_example(self, clock) -> None:
        """Test 5 tokens at 60/min: five succeed, sixth fails, one more after 1s."""
        limiter = RateLimiter(max_tokens=5, refill_rate_per_minute=60, clock=clock.monotonic)
        assert [limiter.try_acquire("acme") for _ in range(6)] == [True] * 5 + [False]

        clock.advance(1.0)
        assert limiter.try_acquire("acme") is True

    def test_keys_are_independent(self, clock) -> None:
        """Test draining one key leaves others untouched."""
        limiter = RateLimiter(max_tokens=2, refill_rate_per_minute=60, clock=clock.monotonic)
        limiter.try_acquire("a", 2)
        assert limiter.try_acquire("a") is False
        assert limiter.try_acquire("b") is True

    def test_get_status(self, clock) -> None:
        """Test status reports remaining tokens and time until the next token."""
        limiter = RateLimiter(max_tokens=5, refill_rate_per_minute=60, clock=clock.monotonic)
        status = limiter.get_status("acme")
        assert status.remaining == 5
        assert status.reset_after == timedelta(0)
        assert status.is_limited is False

        limiter.try_acquire("acme", 5)
        status = limiter.get_status("acme")
        assert status.remaining == 0
        assert status.is_limited is True
        assert status.reset_after == timedelta(seconds=1)

    def test_get_status_partly_refilled(self, clock) -> None:
        """Test reset_after counts down to the next whole token, not to a full bucket."""
        limiter = RateLimiter(max_tokens=5, refill_rate_per_minute=60, clock=clock.monotonic)
        limiter.try_acquire("acme", 5)

        clock.advance(0.25)
        status = limiter.get_status("acme")
        assert status.remaining == 0
        assert status.reset_after == timedelta(seconds=0.75)

        clock.advance(1.5)
        status = limiter.get_status("acme")
        assert status.remaining == 1
        assert status.is_limited is False
        assert status.reset_after == timedelta(seconds=0.25)

    def test_reset(self, clock) -> None:
        """Test reset refills the bucket."""
        limiter = RateLimiter(max_tokens=3, refill_rate_per_minute=1, clock=clock.monotonic)
        limiter.try_acquire("acme", 3)
        limiter.reset("acme")
        assert limiter.get_status("acme").remaining == 3

    def test_configure_before_first_use(self, clock) -> None:
        """Test per-key limits apply only to buckets not yet created."""
        limiter = RateLimiter(max_tokens=5, refill_rate_per_minute=60, clock=clock.monotonic)
        limiter.configure("slow", max_tokens=1, refill_rate_per_minute=1)
        assert limiter.try_acquire("slow") is True
        assert limiter.try_acquire("slow") is False

        limiter.configure("slow", max_tokens=10, refill_rate_per_minute=600)
        assert limiter.get_status("slow").remaining == 0

    @pytest.mark.parametrize("key", ["", "   "])
    def test_invalid_key(self, key) -> None:
        """Test empty keys are rejected."""
        with pytest.raises(InvalidArgumentError):
            RateLimiter().try_acquire(key)

    def test_invalid_permits(self) -> None:
        """Test non-positive permits are rejected."""
        with pytest.raises(InvalidArgumentError):
            RateLimiter().try_acquire("acme", 0)

    @pytest.mark.asyncio
    async def test_wait_for_token(self, clock) -> None:
        """Test waiting sleeps until a token has refilled."""
        limiter = RateLimiter(max_tokens=1, refill_rate_per_minute=60, clock=clock.monotonic)
        await limiter.wait_for_token("acme", sleep=clock.sleep)
        assert clock.elapsed == 0

        await limiter.wait_for_token("acme", sleep=clock.sleep)
        assert clock.elapsed == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_wait_for_more_than_capacity(self) -> None:
        """Test asking for more permits than the bucket holds fails fast."""
        limiter = RateLimiter(max_tokens=2)
        with pytest.raises(InvalidArgumentError):
            await limiter.wait_for_token("acme", permits=3)

    @pytest.mark.asyncio
    async def test_wait_is_cancellable(self) -> None:
        """Test a set cancel signal aborts a wait promptly."""
        limiter = RateLimiter(max_tokens=1, refill_rate_per_minute=1)
        limiter.try_acquire("acme")
        cancel = asyncio.Event()

        async def cancel_soon() -> None:
            await asyncio.sleep(0.01)
            cancel.set()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(limiter.wait_for_token("acme", cancel=cancel), timeout=5)
        await canceller
