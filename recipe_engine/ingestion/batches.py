"""
Batch Runner Module
===================

Entry points for running batches: building a saga with default
collaborators and processing every enabled provider in priority order.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from recipe_engine.core.enums import SagaStatus
from recipe_engine.core.errors import RecipeEngineError
from recipe_engine.core.schema import BatchStatusSnapshot
from recipe_engine.ingestion.events import EventBus
from recipe_engine.ingestion.handlers import register_default_handlers
from recipe_engine.ingestion.rate_limiter import RateLimiter
from recipe_engine.ingestion.registry import ProviderRegistry, get_default_registry
from recipe_engine.ingestion.retry import RetryExecutor
from recipe_engine.ingestion.saga import RecipeProcessingSaga

logger = logging.getLogger(__name__)


@dataclass
class BatchRunResult:
    """Outcome of one provider's batch within ``process_all_providers``."""

    provider_id: str
    batch_id: UUID | None = None
    status: SagaStatus | None = None
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    pending: int = 0
    partial: bool = False
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    @classmethod
    def from_snapshot(cls, snapshot: BatchStatusSnapshot) -> BatchRunResult:
        return cls(
            provider_id=snapshot.provider_id,
            batch_id=snapshot.batch_id,
            status=snapshot.status,
            processed=snapshot.processed,
            skipped=snapshot.skipped,
            failed=snapshot.failed,
            pending=snapshot.pending_count,
            partial=snapshot.partial,
        )

    @property
    def succeeded(self) -> bool:
        return not self.errors and self.status == SagaStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "provider_id": self.provider_id,
            "batch_id": str(self.batch_id) if self.batch_id else None,
            "status": self.status.value if self.status else None,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "pending": self.pending,
            "partial": self.partial,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }


def build_saga(
    session: Session,
    registry: ProviderRegistry | None = None,
    event_bus: EventBus | None = None,
    rate_limiter: RateLimiter | None = None,
    seed: int | None = None,
    log_events: bool = True,
) -> RecipeProcessingSaga:
    """
    Create a saga with the default collaborators.

    Args:
        session: Database session
        registry: Provider registry (defaults to the global one)
        event_bus: Event bus (a new one if omitted)
        rate_limiter: Shared rate limiter (a new one if omitted)
        seed: Seed for retry jitter
        log_events: Subscribe the default logging handlers
    """
    registry = registry or get_default_registry()
    event_bus = event_bus or EventBus()
    if log_events:
        register_default_handlers(event_bus)

    default_limit = registry.global_config.default_rate_limit
    rate_limiter = rate_limiter or RateLimiter(
        max_tokens=default_limit.burst_limit,
        refill_rate_per_minute=default_limit.max_requests_per_minute,
    )
    return RecipeProcessingSaga(
        session=session,
        registry=registry,
        event_bus=event_bus,
        rate_limiter=rate_limiter,
        retry_executor=RetryExecutor(rng=random.Random(seed)),
    )


async def process_all_providers(
    saga: RecipeProcessingSaga,
    cancel: asyncio.Event | None = None,
) -> list[BatchRunResult]:
    """
    Run one batch per enabled provider, in ascending priority.

    A provider whose batch fails is recorded and the remaining providers
    still run.

    Returns:
        One BatchRunResult per enabled provider.
    """
    results: list[BatchRunResult] = []
    providers = saga.registry.list_enabled_providers()
    logger.info(f"Processing {len(providers)} enabled provider(s)")

    for provider in providers:
        if cancel is not None and cancel.is_set():
            logger.info("Cancelled; skipping remaining providers")
            break

        started = datetime.now(UTC)
        result = BatchRunResult(provider_id=provider.provider_id)
        try:
            state = saga.create_batch(provider.provider_id)
            result.batch_id = state.batch_id
            snapshot = await saga.resume_processing(state.batch_id, cancel=cancel)
            result = BatchRunResult.from_snapshot(snapshot)
        except RecipeEngineError as e:
            logger.error(f"Provider '{provider.provider_id}' failed: {e}")
            result.errors.append(str(e))
            if result.batch_id is not None:
                snapshot = saga.get_batch_status(result.batch_id)
                result.status = snapshot.status

        result.duration_seconds = (datetime.now(UTC) - started).total_seconds()
        results.append(result)

    return results
