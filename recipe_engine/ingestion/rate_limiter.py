"""
Rate Limiter Module
===================

Token-bucket rate limiting keyed by an arbitrary string (normally the
provider id). Buckets are created lazily on first use and live in process
memory only.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from recipe_engine.core.errors import InvalidArgumentError
from recipe_engine.ingestion.retry import wait_or_cancel

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of one bucket."""

    remaining: int
    reset_after: timedelta
    is_limited: bool


class TokenBucket:
    """
    Token bucket for a single key.

    Holds up to ``max_tokens`` tokens and refills continuously at
    ``refill_rate_per_second``. All reads and writes go through the
    bucket's own lock.
    """

    def __init__(
        self,
        max_tokens: int,
        refill_rate_per_second: float,
        clock: Clock = time.monotonic,
    ) -> None:
        if max_tokens <= 0:
            raise InvalidArgumentError("max_tokens must be positive")
        if refill_rate_per_second <= 0:
            raise InvalidArgumentError("refill rate must be positive")
        self.max_tokens = max_tokens
        self.refill_rate_per_second = refill_rate_per_second
        self._clock = clock
        self._tokens = float(max_tokens)
        self._last_refill = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._last_refill = now
        self._tokens = min(
            float(self.max_tokens), self._tokens + elapsed * self.refill_rate_per_second
        )

    def try_acquire(self, permits: int = 1) -> bool:
        """Take ``permits`` tokens if available. Never blocks."""
        with self._lock:
            self._refill()
            if self._tokens >= permits:
                self._tokens -= permits
                return True
            return False

    def seconds_until(self, permits: int = 1) -> float:
        """Seconds until ``permits`` tokens are available (0 if they already are)."""
        with self._lock:
            self._refill()
            deficit = permits - self._tokens
            if deficit <= 0:
                return 0.0
            return deficit / self.refill_rate_per_second

    def status(self) -> RateLimitStatus:
        """Whole tokens left and the time until the next whole token accrues."""
        with self._lock:
            self._refill()
            remaining = math.floor(self._tokens)
            if self._tokens < self.max_tokens:
                fraction = self._tokens - math.floor(self._tokens)
                reset_seconds = (1 - fraction) / self.refill_rate_per_second
            else:
                reset_seconds = 0.0
            return RateLimitStatus(
                remaining=remaining,
                reset_after=timedelta(seconds=reset_seconds),
                is_limited=remaining < 1,
            )

    def reset(self) -> None:
        """Refill to capacity."""
        with self._lock:
            self._tokens = float(self.max_tokens)
            self._last_refill = self._clock()

    @property
    def tokens(self) -> float:
        with self._lock:
            return self._tokens


class RateLimiter:
    """
    Keyed token buckets.

    Unknown keys get a bucket with the limiter's defaults; ``configure``
    sets different limits for a key before its bucket is first used.
    """

    def __init__(
        self,
        max_tokens: int = 5,
        refill_rate_per_minute: float = 60.0,
        clock: Clock = time.monotonic,
    ) -> None:
        if max_tokens <= 0:
            raise InvalidArgumentError("max_tokens must be positive")
        if refill_rate_per_minute <= 0:
            raise InvalidArgumentError("refill_rate_per_minute must be positive")
        self.max_tokens = max_tokens
        self.refill_rate_per_minute = refill_rate_per_minute
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._limits: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def configure(self, key: str, max_tokens: int, refill_rate_per_minute: float) -> None:
        """
        Set limits for a key.

        Only applies if the key's bucket has not been created yet; a live
        bucket keeps its current limits and tokens.
        """
        self._validate_key(key)
        with self._lock:
            if key not in self._buckets:
                self._limits[key] = (max_tokens, refill_rate_per_minute)

    def _bucket(self, key: str) -> TokenBucket:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                max_tokens, per_minute = self._limits.get(
                    key, (self.max_tokens, self.refill_rate_per_minute)
                )
                bucket = TokenBucket(max_tokens, per_minute / 60.0, clock=self._clock)
                self._buckets[key] = bucket
            return bucket

    @staticmethod
    def _validate_key(key: str) -> None:
        if not key or not key.strip():
            raise InvalidArgumentError("rate limit key is required")

    @staticmethod
    def _validate_permits(permits: int) -> None:
        if permits <= 0:
            raise InvalidArgumentError("permits must be positive")

    def try_acquire(self, key: str, permits: int = 1) -> bool:
        """
        Take ``permits`` tokens from the key's bucket if available.

        Returns:
            True if the tokens were taken, False otherwise. Never blocks.
        """
        self._validate_key(key)
        self._validate_permits(permits)
        return self._bucket(key).try_acquire(permits)

    def get_status(self, key: str) -> RateLimitStatus:
        """Remaining whole tokens, time until the next token, and whether the key is limited."""
        self._validate_key(key)
        return self._bucket(key).status()

    def reset(self, key: str) -> None:
        """Refill the key's bucket to capacity."""
        self._validate_key(key)
        self._bucket(key).reset()

    async def wait_for_token(
        self,
        key: str,
        permits: int = 1,
        cancel: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """
        Wait until ``permits`` tokens can be taken, then take them.

        Raises:
            InvalidArgumentError: if ``permits`` exceeds the bucket capacity.
            OperationCancelledError: if ``cancel`` is set while waiting.
        """
        self._validate_key(key)
        self._validate_permits(permits)
        bucket = self._bucket(key)
        if permits > bucket.max_tokens:
            raise InvalidArgumentError(
                f"Requested {permits} permits but bucket '{key}' holds at most {bucket.max_tokens}"
            )

        while not bucket.try_acquire(permits):
            delay = bucket.seconds_until(permits)
            logger.debug(f"Rate limited on '{key}', waiting {delay:.2f}s")
            await wait_or_cancel(delay, cancel, sleep)
