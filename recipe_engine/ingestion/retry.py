"""
Retry Module
============

Error classification and retry with exponential backoff.

``classify_error`` decides whether a failure is worth retrying.
``RetryExecutor`` runs an async operation, retrying transient failures with
jittered exponential backoff, and raises ``ClassifiedError`` once the
operation fails permanently or runs out of attempts.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx
from pydantic import ValidationError
from sqlalchemy import exc as sa_exc

from recipe_engine.core.enums import ErrorKind
from recipe_engine.core.errors import (
    ClassifiedError,
    InvalidArgumentError,
    OperationCancelledError,
    RecipeEngineError,
)
from recipe_engine.core.schema import ErrorClassification

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

MAX_JITTER = 0.5


def _transient(category: str) -> ErrorClassification:
    return ErrorClassification(kind=ErrorKind.TRANSIENT, category=category)


def _permanent(category: str) -> ErrorClassification:
    return ErrorClassification(kind=ErrorKind.PERMANENT, category=category)


def classify_error(exc: BaseException) -> ErrorClassification:
    """
    Classify a failure as transient (retry) or permanent (give up).

    Engine errors that declare ``transient`` decide for themselves. Other
    exceptions are matched by type; anything unrecognized is permanent with
    category "Unknown".
    """
    if isinstance(exc, ClassifiedError):
        return exc.classification

    if isinstance(exc, RecipeEngineError) and exc.transient is not None:
        if exc.transient:
            return _transient(exc.category)
        return _permanent(exc.category)

    # HTTP
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status >= 500 or status == 429:
            return _transient("Network")
        return _permanent("HttpClientError")
    if isinstance(exc, httpx.TimeoutException):
        return _transient("Timeout")
    if isinstance(exc, httpx.TransportError):
        return _transient("Network")

    # Database
    if isinstance(exc, sa_exc.IntegrityError):
        return _permanent("DataValidation")
    if isinstance(exc, (sa_exc.OperationalError, sa_exc.DisconnectionError, sa_exc.TimeoutError)):
        return _transient("Database")

    # Timeouts are OSErrors on current interpreters; check them first
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return _transient("Timeout")
    if isinstance(exc, ConnectionError):
        return _transient("Network")
    if isinstance(exc, OSError):
        return _transient("IO")

    # Data problems
    if isinstance(exc, json.JSONDecodeError):
        return _permanent("DataFormat")
    if isinstance(exc, ValidationError):
        return _permanent("DataValidation")
    if isinstance(exc, ValueError):
        return _permanent("InvalidInput")
    if isinstance(exc, (TypeError, AttributeError, NotImplementedError)):
        return _permanent("LogicError")
    if isinstance(exc, LookupError):
        return _permanent("MissingData")

    return _permanent("Unknown")


def compute_delay(attempt: int, base_delay: float, rng: random.Random) -> float:
    """
    Backoff before retry number ``attempt`` (1-based), in seconds.

    ``base_delay * 2 ** (attempt - 1) * (1 + jitter)`` with jitter uniform
    in [0, 0.5).
    """
    if attempt < 1:
        raise InvalidArgumentError("attempt must be >= 1")
    jitter = rng.random() * MAX_JITTER
    return base_delay * (2 ** (attempt - 1)) * (1 + jitter)


async def wait_or_cancel(
    delay: float,
    cancel: asyncio.Event | None = None,
    sleep: Sleep | None = None,
) -> None:
    """
    Wait ``delay`` seconds, aborting as soon as ``cancel`` is set.

    With an injected ``sleep`` the cancel signal is checked before and after
    the sleep instead.

    Raises:
        OperationCancelledError: if ``cancel`` is set.
    """
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation cancelled")

    if sleep is not None:
        await sleep(delay)
    elif cancel is None:
        await asyncio.sleep(delay)
    else:
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return

    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation cancelled")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long the first backoff is."""

    retry_count: int = 3
    base_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise InvalidArgumentError("retry_count must be >= 0")
        if self.base_delay < 0:
            raise InvalidArgumentError("base_delay must be >= 0")


class RetryExecutor:
    """
    Runs async operations with retry on transient failures.

    Randomness and sleeping are injectable so backoff is deterministic
    under test.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        sleep: Sleep | None = None,
        classifier: Callable[[BaseException], ErrorClassification] = classify_error,
    ) -> None:
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._classify = classifier

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        cancel: asyncio.Event | None = None,
        operation_name: str = "operation",
    ) -> T:
        """
        Run ``operation`` until it succeeds, fails permanently, or runs out
        of retries.

        Args:
            operation: Zero-argument coroutine function.
            policy: Retry count and base delay.
            cancel: Cooperative cancellation signal.
            operation_name: Label used in logs and errors.

        Returns:
            The operation's result.

        Raises:
            ClassifiedError: wrapping the last failure.
            OperationCancelledError: if ``cancel`` fires.
        """
        policy = policy or RetryPolicy()
        attempt = 0

        while True:
            if cancel is not None and cancel.is_set():
                raise OperationCancelledError(f"{operation_name} cancelled")

            attempt += 1
            try:
                return await operation()
            except (OperationCancelledError, asyncio.CancelledError):
                raise
            except Exception as e:
                classification = self._classify(e)
                retries_used = attempt - 1

                if not classification.is_transient or retries_used >= policy.retry_count:
                    if classification.is_transient:
                        logger.warning(
                            f"{operation_name} gave up after {attempt} attempt(s): {e}"
                        )
                    raise ClassifiedError(
                        original=e,
                        classification=classification,
                        attempts=attempt,
                        operation_name=operation_name,
                    ) from e

                delay = compute_delay(attempt, policy.base_delay, self._rng)
                logger.warning(
                    f"{operation_name} failed ({classification.category}), "
                    f"retry {attempt}/{policy.retry_count} in {delay:.2f}s: {e}"
                )
                await wait_or_cancel(delay, cancel, self._sleep)
