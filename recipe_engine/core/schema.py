"""Pydantic v2 models for the recipe engine.

These models define the processing domain:
- SagaState, SagaCounts, BatchStatusSnapshot (batch workflow state)
- RecipeFingerprint (append-only dedup ledger entry)
- RecipePreview, ExtractedRecipe, RecipeIngredient, Recipe (recipe data)
- ErrorClassification (retry decision for a failure)
"""

import re
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from recipe_engine.core.enums import BatchCompletionReason, ErrorKind, SagaStatus

_SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


# ============================================================================
# Saga State
# ============================================================================


class SagaCounts(BaseModel):
    """Per-batch outcome counters. Never decrease."""

    model_config = ConfigDict(frozen=True)

    processed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.failed


class SagaState(BaseModel):
    """
    Persisted workflow state of one batch.

    Instances are immutable; transitions in ``recipe_engine.core.saga_state``
    return new values. ``concurrency_token`` is the version currently stored
    and is bumped by the repository on every successful write.
    """

    model_config = ConfigDict(frozen=True)

    batch_id: UUID = Field(default_factory=uuid4)
    provider_id: str
    status: SagaStatus = SagaStatus.DISCOVERING
    batch_size: int = Field(gt=0)
    pending_urls: tuple[str, ...] = ()
    processed_urls: tuple[str, ...] = ()
    failed_urls: tuple[str, ...] = ()
    counts: SagaCounts = Field(default_factory=SagaCounts)
    started_at: datetime = Field(default_factory=_utc_now)
    deadline: datetime
    updated_at: datetime = Field(default_factory=_utc_now)
    completed_at: datetime | None = None
    partial: bool = False
    completion_reason: BatchCompletionReason = BatchCompletionReason.NOT_COMPLETE
    error_category: str | None = None
    error_message: str | None = None
    concurrency_token: int = Field(default=0, ge=0)

    @field_validator("provider_id")
    @classmethod
    def provider_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("provider_id cannot be empty")
        return v.strip()

    @model_validator(mode="after")
    def url_sets_disjoint(self) -> "SagaState":
        pending = set(self.pending_urls)
        processed = set(self.processed_urls)
        failed = set(self.failed_urls)
        if pending & processed:
            raise ValueError("pending_urls and processed_urls must be disjoint")
        if pending & failed:
            raise ValueError("pending_urls and failed_urls must be disjoint")
        if processed & failed:
            raise ValueError("processed_urls and failed_urls must be disjoint")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def time_window(self) -> timedelta:
        return self.deadline - self.started_at


class BatchStatusSnapshot(BaseModel):
    """Read-only projection of a saga state for operators."""

    model_config = ConfigDict(frozen=True)

    batch_id: UUID
    provider_id: str
    status: SagaStatus
    processed: int
    skipped: int
    failed: int
    pending_count: int
    partial: bool
    completion_reason: BatchCompletionReason
    started_at: datetime
    deadline: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    error_category: str | None = None
    error_message: str | None = None

    @classmethod
    def from_state(cls, state: SagaState) -> "BatchStatusSnapshot":
        return cls(
            batch_id=state.batch_id,
            provider_id=state.provider_id,
            status=state.status,
            processed=state.counts.processed,
            skipped=state.counts.skipped,
            failed=state.counts.failed,
            pending_count=len(state.pending_urls),
            partial=state.partial,
            completion_reason=state.completion_reason,
            started_at=state.started_at,
            deadline=state.deadline,
            updated_at=state.updated_at,
            completed_at=state.completed_at,
            error_category=state.error_category,
            error_message=state.error_message,
        )

    @property
    def is_resumable(self) -> bool:
        """A resume is meaningful for in-progress batches and partial completions."""
        if self.status == SagaStatus.FAILED:
            return False
        return self.status != SagaStatus.COMPLETED or self.pending_count > 0


# ============================================================================
# Fingerprint Ledger
# ============================================================================


class RecipeFingerprint(BaseModel):
    """Immutable dedup ledger entry, used only for existence checks."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    fingerprint_hash: str
    provider_id: str
    recipe_url: str
    recipe_id: UUID
    created_at: datetime = Field(default_factory=_utc_now)

    @field_validator("fingerprint_hash")
    @classmethod
    def hash_is_sha256_hex(cls, v: str) -> str:
        if not _SHA256_HEX.match(v):
            raise ValueError("fingerprint_hash must be a 64-character lowercase hex string")
        return v

    @field_validator("provider_id", "recipe_url")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("field cannot be empty")
        return v.strip()


# ============================================================================
# Recipe Data
# ============================================================================


class RecipePreview(BaseModel):
    """Cheap pre-fetch of a recipe page, used for pre-extraction fingerprinting."""

    title: str = ""
    description: str = ""
    raw_content: str | None = None


class ExtractedRecipe(BaseModel):
    """Recipe fields parsed from a provider page."""

    url: str
    title: str
    description: str = ""
    ingredient_codes: list[str] = Field(default_factory=list)
    instructions: list[str] = Field(default_factory=list)
    image_url: str | None = None
    prep_time_minutes: int | None = None
    cook_time_minutes: int | None = None
    servings: int | None = None
    raw_content: str | None = None


class RecipeIngredient(BaseModel):
    """A provider ingredient code and its canonical form (None when unmapped)."""

    provider_code: str
    canonical_name: str | None = None


class Recipe(BaseModel):
    """Fully assembled recipe ready for persistence."""

    id: UUID
    provider_id: str
    source_url: str
    title: str
    description: str = ""
    ingredients: list[RecipeIngredient] = Field(default_factory=list)
    instructions: list[str] = Field(default_factory=list)
    image_url: str | None = None
    prep_time_minutes: int | None = None
    cook_time_minutes: int | None = None
    servings: int | None = None
    fingerprint_hash: str = ""
    batch_id: UUID | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("title")
    @classmethod
    def title_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title cannot be empty")
        return v.strip()

    @property
    def unmapped_codes(self) -> list[str]:
        return [i.provider_code for i in self.ingredients if i.canonical_name is None]


# ============================================================================
# Error Classification
# ============================================================================


class ErrorClassification(BaseModel):
    """Retry decision for a failure plus a diagnostic category."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    category: str

    @property
    def is_transient(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT
