"""SQLAlchemy ORM models for the recipe engine database.

Tables:
- saga_states (one row per batch, optimistic concurrency token)
- recipe_fingerprints (append-only dedup ledger)
- recipes (idempotent upsert target)
- ingredient_mappings (provider code -> canonical ingredient)
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class SagaStateDB(Base):
    """
    Database model for saga states.

    Stores one batch's workflow state. URL collections are JSON arrays;
    ``concurrency_token`` is bumped on every write.
    """

    __tablename__ = "saga_states"

    batch_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    provider_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False)

    pending_urls_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    processed_urls_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    failed_urls_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array

    processed_count: Mapped[int] = mapped_column(Integer, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, default=0)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    deadline: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    partial: Mapped[bool] = mapped_column(Boolean, default=False)
    completion_reason: Mapped[str] = mapped_column(String(30), default="not_complete")
    error_category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    concurrency_token: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<SagaStateDB(batch_id={self.batch_id}, provider='{self.provider_id}', "
            f"status={self.status}, token={self.concurrency_token})>"
        )


class RecipeFingerprintDB(Base):
    """
    Database model for the fingerprint ledger.

    Rows are never updated or deleted.
    """

    __tablename__ = "recipe_fingerprints"
    __table_args__ = (
        Index("ix_recipe_fingerprints_provider_url", "provider_id", "recipe_url"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    fingerprint_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    provider_id: Mapped[str] = mapped_column(String(100), nullable=False)
    recipe_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    recipe_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def __repr__(self) -> str:
        return f"<RecipeFingerprintDB(hash={self.fingerprint_hash[:12]}..., url='{self.recipe_url}')>"


class RecipeDB(Base):
    """Database model for persisted recipes."""

    __tablename__ = "recipes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    provider_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    source_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    ingredients_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array of objects
    instructions_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    image_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    prep_time_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cook_time_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    servings: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fingerprint_hash: Mapped[str] = mapped_column(String(64), default="", index=True)
    batch_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<RecipeDB(id={self.id}, title='{self.title}')>"


class IngredientMappingDB(Base):
    """Database model mapping provider ingredient codes to canonical names."""

    __tablename__ = "ingredient_mappings"
    __table_args__ = (
        UniqueConstraint("provider_id", "provider_code", name="uq_ingredient_mappings_provider_code"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    provider_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    provider_code: Mapped[str] = mapped_column(String(255), nullable=False)
    canonical_name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return (
            f"<IngredientMappingDB(provider='{self.provider_id}', "
            f"code='{self.provider_code}' -> '{self.canonical_name}')>"
        )
