"""Repository classes for database operations."""

import json
import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from recipe_engine.core.enums import BatchCompletionReason, SagaStatus
from recipe_engine.core.errors import ConcurrencyConflictError
from recipe_engine.core.schema import (
    Recipe,
    RecipeFingerprint,
    RecipeIngredient,
    SagaCounts,
    SagaState,
)
from recipe_engine.db.models import (
    IngredientMappingDB,
    RecipeDB,
    RecipeFingerprintDB,
    SagaStateDB,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class SagaStateRepository:
    """
    Repository for saga state rows with optimistic concurrency.

    Every successful ``save`` bumps the stored ``concurrency_token``; a save
    carrying a token that is no longer current raises
    ``ConcurrencyConflictError`` and writes nothing.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, state: SagaState) -> SagaState:
        """
        Insert a new saga state with token 0.

        Args:
            state: The initial SagaState.

        Returns:
            The stored SagaState.
        """
        db_state = SagaStateDB(batch_id=str(state.batch_id), concurrency_token=0)
        self._apply(db_state, state)
        self.session.add(db_state)
        self.session.flush()
        return self._to_domain(db_state)

    def get(self, batch_id: UUID | str) -> SagaState | None:
        """
        Get a saga state by batch ID.

        Returns:
            The SagaState if found, None otherwise.
        """
        # Another writer may have bumped the row since this session loaded it
        stmt = (
            select(SagaStateDB)
            .where(SagaStateDB.batch_id == str(batch_id))
            .execution_options(populate_existing=True)
        )
        db_state = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_state) if db_state else None

    def save(self, state: SagaState) -> SagaState:
        """
        Write a state if its token still matches the stored one.

        Args:
            state: The new state, carrying the token it was derived from.

        Returns:
            The state with its token bumped.

        Raises:
            ConcurrencyConflictError: if the stored token moved on.
        """
        values = self._values(state)
        values["concurrency_token"] = state.concurrency_token + 1
        stmt = (
            update(SagaStateDB)
            .where(SagaStateDB.batch_id == str(state.batch_id))
            .where(SagaStateDB.concurrency_token == state.concurrency_token)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount == 0:
            logger.warning(
                f"Concurrency conflict saving batch {state.batch_id} "
                f"(token {state.concurrency_token})"
            )
            raise ConcurrencyConflictError(state.batch_id, state.concurrency_token)
        self.session.flush()
        return state.model_copy(update={"concurrency_token": state.concurrency_token + 1})

    def list_all(
        self,
        provider_id: str | None = None,
        status: SagaStatus | None = None,
        limit: int = 50,
    ) -> list[SagaState]:
        """
        List saga states, newest first.

        Args:
            provider_id: Optional provider filter.
            status: Optional status filter.
            limit: Maximum number of rows.
        """
        stmt = select(SagaStateDB).order_by(SagaStateDB.started_at.desc()).limit(limit)
        if provider_id:
            stmt = stmt.where(SagaStateDB.provider_id == provider_id)
        if status:
            stmt = stmt.where(SagaStateDB.status == status.value)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(row) for row in result]

    @staticmethod
    def _values(state: SagaState) -> dict:
        return {
            "provider_id": state.provider_id,
            "status": state.status.value,
            "batch_size": state.batch_size,
            "pending_urls_json": json.dumps(list(state.pending_urls)),
            "processed_urls_json": json.dumps(list(state.processed_urls)),
            "failed_urls_json": json.dumps(list(state.failed_urls)),
            "processed_count": state.counts.processed,
            "skipped_count": state.counts.skipped,
            "failed_count": state.counts.failed,
            "started_at": state.started_at,
            "deadline": state.deadline,
            "updated_at": state.updated_at,
            "completed_at": state.completed_at,
            "partial": state.partial,
            "completion_reason": state.completion_reason.value,
            "error_category": state.error_category,
            "error_message": state.error_message,
        }

    def _apply(self, db_state: SagaStateDB, state: SagaState) -> None:
        for key, value in self._values(state).items():
            setattr(db_state, key, value)

    def _to_domain(self, db_state: SagaStateDB) -> SagaState:
        """Convert database model to domain model."""
        return SagaState(
            batch_id=UUID(db_state.batch_id),
            provider_id=db_state.provider_id,
            status=SagaStatus(db_state.status),
            batch_size=db_state.batch_size,
            pending_urls=tuple(json.loads(db_state.pending_urls_json or "[]")),
            processed_urls=tuple(json.loads(db_state.processed_urls_json or "[]")),
            failed_urls=tuple(json.loads(db_state.failed_urls_json or "[]")),
            counts=SagaCounts(
                processed=db_state.processed_count,
                skipped=db_state.skipped_count,
                failed=db_state.failed_count,
            ),
            started_at=_as_utc(db_state.started_at),
            deadline=_as_utc(db_state.deadline),
            updated_at=_as_utc(db_state.updated_at),
            completed_at=_as_utc(db_state.completed_at),
            partial=db_state.partial,
            completion_reason=BatchCompletionReason(db_state.completion_reason),
            error_category=db_state.error_category,
            error_message=db_state.error_message,
            concurrency_token=db_state.concurrency_token,
        )


class FingerprintRepository:
    """Repository for the append-only fingerprint ledger."""

    def __init__(self, session: Session):
        self.session = session

    def exists(self, fingerprint_hash: str) -> bool:
        """Check whether a fingerprint hash has been recorded."""
        stmt = select(RecipeFingerprintDB.id).where(
            RecipeFingerprintDB.fingerprint_hash == fingerprint_hash
        )
        return self.session.execute(stmt).first() is not None

    def add(self, fingerprint: RecipeFingerprint) -> bool:
        """
        Record a fingerprint.

        Callers should commit pending work first: a duplicate-hash race
        rolls the session back.

        Returns:
            True if inserted, False if the hash was already present.
        """
        if self.exists(fingerprint.fingerprint_hash):
            return False
        db_fp = RecipeFingerprintDB(
            id=str(fingerprint.id),
            fingerprint_hash=fingerprint.fingerprint_hash,
            provider_id=fingerprint.provider_id,
            recipe_url=fingerprint.recipe_url,
            recipe_id=str(fingerprint.recipe_id),
            created_at=fingerprint.created_at,
        )
        self.session.add(db_fp)
        try:
            self.session.flush()
        except IntegrityError:
            # Lost a race with a concurrent writer for the same hash
            self.session.rollback()
            logger.info(f"Fingerprint {fingerprint.fingerprint_hash[:12]} already recorded")
            return False
        return True

    def get_by_hash(self, fingerprint_hash: str) -> RecipeFingerprint | None:
        """Get a ledger entry by hash."""
        stmt = select(RecipeFingerprintDB).where(
            RecipeFingerprintDB.fingerprint_hash == fingerprint_hash
        )
        db_fp = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_fp) if db_fp else None

    def count(self, provider_id: str | None = None) -> int:
        """Count ledger entries, optionally for one provider."""
        stmt = select(RecipeFingerprintDB.id)
        if provider_id:
            stmt = stmt.where(RecipeFingerprintDB.provider_id == provider_id)
        return len(self.session.execute(stmt).all())

    def _to_domain(self, db_fp: RecipeFingerprintDB) -> RecipeFingerprint:
        """Convert database model to domain model."""
        return RecipeFingerprint(
            id=UUID(db_fp.id),
            fingerprint_hash=db_fp.fingerprint_hash,
            provider_id=db_fp.provider_id,
            recipe_url=db_fp.recipe_url,
            recipe_id=UUID(db_fp.recipe_id),
            created_at=_as_utc(db_fp.created_at),
        )


class RecipeRepository:
    """Repository for persisted recipes."""

    def __init__(self, session: Session):
        self.session = session

    def upsert(self, recipe: Recipe) -> Recipe:
        """
        Insert or replace a recipe by ID.

        Recipe IDs are derived from provider and URL, so re-running a URL
        overwrites the same row instead of creating a second one.
        """
        stmt = select(RecipeDB).where(RecipeDB.id == str(recipe.id))
        db_recipe = self.session.execute(stmt).scalar_one_or_none()
        if db_recipe is None:
            db_recipe = RecipeDB(id=str(recipe.id), created_at=recipe.created_at)
            self.session.add(db_recipe)

        db_recipe.provider_id = recipe.provider_id
        db_recipe.source_url = recipe.source_url
        db_recipe.title = recipe.title
        db_recipe.description = recipe.description
        db_recipe.ingredients_json = json.dumps([i.model_dump() for i in recipe.ingredients])
        db_recipe.instructions_json = json.dumps(recipe.instructions)
        db_recipe.image_url = recipe.image_url
        db_recipe.prep_time_minutes = recipe.prep_time_minutes
        db_recipe.cook_time_minutes = recipe.cook_time_minutes
        db_recipe.servings = recipe.servings
        db_recipe.fingerprint_hash = recipe.fingerprint_hash
        db_recipe.batch_id = str(recipe.batch_id) if recipe.batch_id else None
        db_recipe.updated_at = _utc_now()

        self.session.flush()
        return self._to_domain(db_recipe)

    def get_by_id(self, recipe_id: UUID | str) -> Recipe | None:
        """Get a recipe by ID."""
        stmt = select(RecipeDB).where(RecipeDB.id == str(recipe_id))
        db_recipe = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_recipe) if db_recipe else None

    def exists(self, recipe_id: UUID | str) -> bool:
        """Check whether a recipe with this ID is stored."""
        stmt = select(RecipeDB.id).where(RecipeDB.id == str(recipe_id))
        return self.session.execute(stmt).first() is not None

    def list_by_provider(self, provider_id: str, limit: int = 100) -> list[Recipe]:
        """List recipes for a provider, newest first."""
        stmt = (
            select(RecipeDB)
            .where(RecipeDB.provider_id == provider_id)
            .order_by(RecipeDB.created_at.desc())
            .limit(limit)
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(row) for row in result]

    def _to_domain(self, db_recipe: RecipeDB) -> Recipe:
        """Convert database model to domain model."""
        return Recipe(
            id=UUID(db_recipe.id),
            provider_id=db_recipe.provider_id,
            source_url=db_recipe.source_url,
            title=db_recipe.title,
            description=db_recipe.description or "",
            ingredients=[
                RecipeIngredient(**item) for item in json.loads(db_recipe.ingredients_json or "[]")
            ],
            instructions=json.loads(db_recipe.instructions_json or "[]"),
            image_url=db_recipe.image_url,
            prep_time_minutes=db_recipe.prep_time_minutes,
            cook_time_minutes=db_recipe.cook_time_minutes,
            servings=db_recipe.servings,
            fingerprint_hash=db_recipe.fingerprint_hash or "",
            batch_id=UUID(db_recipe.batch_id) if db_recipe.batch_id else None,
            created_at=_as_utc(db_recipe.created_at),
            updated_at=_as_utc(db_recipe.updated_at),
        )


class IngredientMappingRepository:
    """Repository for provider ingredient code mappings."""

    def __init__(self, session: Session):
        self.session = session

    def get_mappings(self, provider_id: str, codes: list[str]) -> dict[str, str]:
        """
        Look up canonical names for a set of codes in one query.

        Returns:
            Dict of provider_code -> canonical_name for the codes that are mapped.
        """
        if not codes:
            return {}
        stmt = select(IngredientMappingDB).where(
            IngredientMappingDB.provider_id == provider_id,
            IngredientMappingDB.provider_code.in_(set(codes)),
        )
        result = self.session.execute(stmt).scalars().all()
        return {row.provider_code: row.canonical_name for row in result}

    def set_mapping(self, provider_id: str, provider_code: str, canonical_name: str) -> None:
        """Create or update a single mapping."""
        stmt = select(IngredientMappingDB).where(
            IngredientMappingDB.provider_id == provider_id,
            IngredientMappingDB.provider_code == provider_code,
        )
        db_mapping = self.session.execute(stmt).scalar_one_or_none()
        if db_mapping is None:
            db_mapping = IngredientMappingDB(
                provider_id=provider_id,
                provider_code=provider_code,
                canonical_name=canonical_name,
            )
            self.session.add(db_mapping)
        else:
            db_mapping.canonical_name = canonical_name
            db_mapping.updated_at = _utc_now()
        self.session.flush()

    def list_by_provider(self, provider_id: str) -> dict[str, str]:
        """Return every mapping for a provider."""
        stmt = select(IngredientMappingDB).where(IngredientMappingDB.provider_id == provider_id)
        result = self.session.execute(stmt).scalars().all()
        return {row.provider_code: row.canonical_name for row in result}
