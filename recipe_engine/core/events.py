"""Domain events published by the processing saga.

Events are immutable records of business-significant occurrences. Each
carries an ``event_id``, an ``occurred_on`` timestamp and a schema
``version`` in addition to its payload.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from recipe_engine.core.enums import BatchCompletionReason, ErrorKind


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


class DomainEvent(BaseModel):
    """Base class for all domain events."""

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    occurred_on: datetime = Field(default_factory=_utc_now)
    version: int = 1


# ============================================================================
# Batch Lifecycle
# ============================================================================


class BatchStartedEvent(DomainEvent):
    """A new batch was created and is about to discover URLs."""

    batch_id: UUID
    provider_id: str
    started_at: datetime


class BatchCompletedEvent(DomainEvent):
    """A batch reached COMPLETED (possibly partial)."""

    batch_id: UUID
    provider_id: str
    processed: int
    skipped: int
    failed: int
    pending: int
    partial: bool
    reason: BatchCompletionReason
    completed_at: datetime


class BatchFailedEvent(DomainEvent):
    """A batch hit a saga-fatal error."""

    batch_id: UUID
    provider_id: str
    error_category: str
    error_message: str


# ============================================================================
# Discovery
# ============================================================================


class DiscoveryCompletedEvent(DomainEvent):
    """Discovery returned candidate URLs for a batch."""

    batch_id: UUID
    provider_id: str
    urls_discovered: int
    urls_accepted: int


class DiscoveryFailedEvent(DomainEvent):
    """Discovery failed after retries."""

    batch_id: UUID
    provider_id: str
    root_url: str
    error_message: str


# ============================================================================
# Per-Recipe Outcomes
# ============================================================================


class RecipeProcessedEvent(DomainEvent):
    """A recipe was extracted, normalized and persisted."""

    batch_id: UUID
    provider_id: str
    url: str
    recipe_id: UUID
    fingerprint_hash: str
    processed_at: datetime


class DuplicateRecipeSkippedEvent(DomainEvent):
    """A URL matched an existing fingerprint and was skipped."""

    batch_id: UUID
    provider_id: str
    url: str
    fingerprint_hash: str


class ProcessingErrorEvent(DomainEvent):
    """A URL failed; carries the failure classification for observability."""

    batch_id: UUID
    provider_id: str
    url: str
    error_kind: ErrorKind
    error_category: str
    error_message: str
    attempts: int = 1


class IngredientMappingMissingEvent(DomainEvent):
    """A provider ingredient code has no canonical mapping."""

    provider_id: str
    provider_code: str
    recipe_url: str
