"""
Recipe Processing Saga
======================

Drives one batch of a provider from discovery to completion:

1. Discover - a discovery strategy lists candidate recipe URLs
2. Fingerprint - a cheap preview is hashed and checked against the ledger
3. Process - the extractor parses the page, ingredients are normalized
4. Persist - the recipe is upserted and its fingerprint recorded

Every state change is written to ``saga_states`` under an optimistic
concurrency token before the next step starts, so a crashed batch can be
resumed from the last written state. URLs are handled in FIFO order, one at
a time; a URL interrupted mid-flight restarts from the fingerprint step.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from recipe_engine.core import saga_state as transitions
from recipe_engine.core.enums import BatchCompletionReason, SagaStatus
from recipe_engine.core.errors import (
    BatchNotFoundError,
    ClassifiedError,
    ConcurrencyConflictError,
    ConfigurationError,
    InvalidStateTransitionError,
    OperationCancelledError,
    RecipeEngineError,
    RecipeValidationError,
)
from recipe_engine.core.events import (
    BatchCompletedEvent,
    BatchFailedEvent,
    BatchStartedEvent,
    DiscoveryCompletedEvent,
    DiscoveryFailedEvent,
    DuplicateRecipeSkippedEvent,
    IngredientMappingMissingEvent,
    ProcessingErrorEvent,
    RecipeProcessedEvent,
)
from recipe_engine.core.schema import (
    BatchStatusSnapshot,
    ExtractedRecipe,
    Recipe,
    RecipeIngredient,
    SagaState,
)
from recipe_engine.db.repositories import RecipeRepository, SagaStateRepository
from recipe_engine.ingestion.adapters import get_discovery, get_extractor
from recipe_engine.ingestion.adapters.base import BaseDiscovery, BaseExtractor
from recipe_engine.ingestion.events import EventBus
from recipe_engine.ingestion.fingerprint import FingerprintService, recipe_id_for
from recipe_engine.ingestion.normalizer import IngredientNormalizer, MappingIngredientNormalizer
from recipe_engine.ingestion.rate_limiter import RateLimiter
from recipe_engine.ingestion.registry import ProviderConfig, ProviderRegistry
from recipe_engine.ingestion.retry import RetryExecutor, RetryPolicy, classify_error

logger = logging.getLogger(__name__)

DiscoveryFactory = Callable[[ProviderConfig], BaseDiscovery]
ExtractorFactory = Callable[[ProviderConfig], BaseExtractor]
Transition = Callable[[SagaState], SagaState]


def default_discovery_factory(provider: ProviderConfig) -> BaseDiscovery:
    discovery = get_discovery(provider.discovery_strategy.value, provider.custom_config)
    if discovery is None:
        raise ConfigurationError(
            f"Unknown discovery strategy '{provider.discovery_strategy.value}'",
            provider_id=provider.provider_id,
        )
    return discovery


def default_extractor_factory(provider: ProviderConfig) -> BaseExtractor:
    extractor = get_extractor(provider.extractor, provider.custom_config)
    if extractor is None:
        raise ConfigurationError(
            f"Unknown extractor '{provider.extractor}'", provider_id=provider.provider_id
        )
    return extractor


class RecipeProcessingSaga:
    """
    Orchestrates batches of recipe processing.

    One instance works against one database session; run batches on the
    same instance sequentially.
    """

    def __init__(
        self,
        session: Session,
        registry: ProviderRegistry,
        event_bus: EventBus | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_executor: RetryExecutor | None = None,
        normalizer: IngredientNormalizer | None = None,
        discovery_factory: DiscoveryFactory = default_discovery_factory,
        extractor_factory: ExtractorFactory = default_extractor_factory,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session = session
        self.registry = registry
        self.event_bus = event_bus or EventBus()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.retry = retry_executor or RetryExecutor()
        self.normalizer = normalizer or MappingIngredientNormalizer(session)
        self.fingerprints = FingerprintService(session)
        self._states = SagaStateRepository(session)
        self._recipes = RecipeRepository(session)
        self._discovery_factory = discovery_factory
        self._extractor_factory = extractor_factory
        self._clock = clock or (lambda: datetime.now(UTC))

    # =========================================================================
    # Public operations
    # =========================================================================

    async def start_processing(
        self,
        provider_id: str,
        batch_size: int | None = None,
        time_window: timedelta | None = None,
        cancel: asyncio.Event | None = None,
    ) -> UUID:
        """
        Create a batch for a provider and run it.

        Args:
            provider_id: Provider to process
            batch_size: Max URLs in the batch (defaults to the provider's)
            time_window: Wall-clock budget (defaults to the provider's)
            cancel: Cooperative cancellation signal

        Returns:
            The new batch id.

        Raises:
            ConfigurationError: if the provider is unknown or disabled.
        """
        state = self.create_batch(provider_id, batch_size, time_window)
        provider = self.registry.get_enabled_provider(provider_id)
        await self._run(state, provider, cancel)
        return state.batch_id

    def create_batch(
        self,
        provider_id: str,
        batch_size: int | None = None,
        time_window: timedelta | None = None,
    ) -> SagaState:
        """
        Persist a new batch in DISCOVERING without running it.

        Raises:
            ConfigurationError: if the provider is unknown or disabled.
        """
        provider = self.registry.get_enabled_provider(provider_id)
        # Collaborator lookup fails fast before anything is written
        self._discovery_factory(provider)
        self._extractor_factory(provider)

        state = transitions.new_saga_state(
            provider_id=provider.provider_id,
            batch_size=batch_size or provider.batch_size,
            time_window=time_window or provider.time_window,
            now=self._now(),
        )
        state = self._states.create(state)
        self.session.commit()

        logger.info(
            f"Created batch {state.batch_id} for '{provider_id}' "
            f"(size {state.batch_size}, deadline {state.deadline.isoformat()})"
        )
        self.event_bus.publish(
            BatchStartedEvent(
                batch_id=state.batch_id,
                provider_id=state.provider_id,
                started_at=state.started_at,
            )
        )
        return state

    async def resume_processing(
        self,
        batch_id: UUID | str,
        cancel: asyncio.Event | None = None,
    ) -> BatchStatusSnapshot:
        """
        Continue a batch from its last persisted state.

        Terminal batches are left untouched.

        Raises:
            BatchNotFoundError: if the batch does not exist.
            ConfigurationError: if the provider is no longer enabled (the
                batch is marked FAILED).
        """
        state = self._states.get(batch_id)
        if state is None:
            raise BatchNotFoundError(batch_id)

        if state.is_terminal:
            logger.info(f"Batch {batch_id} is already {state.status.value}; nothing to resume")
            return BatchStatusSnapshot.from_state(state)

        logger.info(
            f"Resuming batch {batch_id} at {state.status.value} "
            f"({len(state.pending_urls)} pending)"
        )
        try:
            provider = self.registry.get_enabled_provider(state.provider_id)
        except ConfigurationError as e:
            self._fail_batch(state, e.category, str(e))
            raise

        state = await self._run(state, provider, cancel)
        return BatchStatusSnapshot.from_state(state)

    def get_batch_status(self, batch_id: UUID | str) -> BatchStatusSnapshot:
        """
        Read-only view of a batch.

        Raises:
            BatchNotFoundError: if the batch does not exist.
        """
        state = self._states.get(batch_id)
        if state is None:
            raise BatchNotFoundError(batch_id)
        return BatchStatusSnapshot.from_state(state)

    # =========================================================================
    # Saga steps
    # =========================================================================

    def _now(self) -> datetime:
        return self._clock()

    def _policy(self, provider: ProviderConfig) -> RetryPolicy:
        return RetryPolicy(
            retry_count=provider.rate_limit.retry_count,
            base_delay=self.registry.global_config.retry_base_delay,
        )

    async def _run(
        self,
        state: SagaState,
        provider: ProviderConfig,
        cancel: asyncio.Event | None,
    ) -> SagaState:
        self.rate_limiter.configure(
            provider.provider_id,
            provider.rate_limit.burst_limit,
            provider.rate_limit.max_requests_per_minute,
        )
        try:
            discovery = self._discovery_factory(provider)
            extractor = self._extractor_factory(provider)

            if state.status == SagaStatus.DISCOVERING:
                state = await self._discover(state, provider, discovery, cancel)
                if not state.pending_urls:
                    return self._complete(state, BatchCompletionReason.NO_URLS_DISCOVERED)

            return await self._process_pending(state, provider, extractor, cancel)

        except OperationCancelledError:
            latest = self._states.get(state.batch_id) or state
            logger.info(
                f"Batch {state.batch_id} cancelled at {latest.status.value} "
                f"with {len(latest.pending_urls)} URL(s) pending"
            )
            return latest
        except (ClassifiedError, ConcurrencyConflictError, ConfigurationError) as e:
            logger.error(f"Batch {state.batch_id} failed: {e}")
            self._fail_batch(state, e.category, str(e))
            raise

    async def _discover(
        self,
        state: SagaState,
        provider: ProviderConfig,
        discovery: BaseDiscovery,
        cancel: asyncio.Event | None,
    ) -> SagaState:
        logger.info(f"Discovering recipe URLs for '{provider.provider_id}'")
        try:
            urls = await self.retry.execute(
                lambda: discovery.discover_recipe_urls(provider, cancel),
                policy=self._policy(provider),
                cancel=cancel,
                operation_name=f"discover[{provider.provider_id}]",
            )
        except ClassifiedError as e:
            self.event_bus.publish(
                DiscoveryFailedEvent(
                    batch_id=state.batch_id,
                    provider_id=provider.provider_id,
                    root_url=getattr(e.original, "root_url", None) or provider.recipe_root_url,
                    error_message=str(e.original),
                )
            )
            raise

        now = self._now()
        state = self._persist(state, lambda s: transitions.record_discovery(s, urls, now))
        self.event_bus.publish(
            DiscoveryCompletedEvent(
                batch_id=state.batch_id,
                provider_id=provider.provider_id,
                urls_discovered=len(urls),
                urls_accepted=len(state.pending_urls),
            )
        )
        return state

    async def _process_pending(
        self,
        state: SagaState,
        provider: ProviderConfig,
        extractor: BaseExtractor,
        cancel: asyncio.Event | None,
    ) -> SagaState:
        while state.pending_urls:
            if cancel is not None and cancel.is_set():
                raise OperationCancelledError(f"Batch {state.batch_id} cancelled")

            if transitions.is_deadline_exceeded(state, self._now()):
                logger.info(
                    f"Batch {state.batch_id} hit its deadline with "
                    f"{len(state.pending_urls)} URL(s) pending"
                )
                return self._complete(state, BatchCompletionReason.TIME_WINDOW_EXCEEDED)

            url = state.pending_urls[0]
            state = await self._process_url(state, provider, extractor, url, cancel)

        return self._complete(state, BatchCompletionReason.ALL_URLS_ATTEMPTED)

    async def _process_url(
        self,
        state: SagaState,
        provider: ProviderConfig,
        extractor: BaseExtractor,
        url: str,
        cancel: asyncio.Event | None,
    ) -> SagaState:
        policy = self._policy(provider)
        provider_id = provider.provider_id

        if state.status != SagaStatus.FINGERPRINTING:
            # Interrupted mid-URL: start it over
            state = self._advance(state, SagaStatus.FINGERPRINTING)

        await self.rate_limiter.wait_for_token(provider_id, cancel=cancel)
        logger.debug(f"Processing {url}")

        try:
            fingerprint_hash = await self._fingerprint(extractor, url, policy, cancel)
            if self.fingerprints.is_duplicate(fingerprint_hash):
                now = self._now()
                state = self._persist(state, lambda s: transitions.record_skipped(s, url, now))
                self.event_bus.publish(
                    DuplicateRecipeSkippedEvent(
                        batch_id=state.batch_id,
                        provider_id=provider_id,
                        url=url,
                        fingerprint_hash=fingerprint_hash,
                    )
                )
                return state

            state = self._advance(state, SagaStatus.PROCESSING)
            recipe = await self._extract(state, provider, extractor, url, fingerprint_hash, policy, cancel)
        except ClassifiedError as e:
            return self._record_failure(state, url, e)

        state = self._advance(state, SagaStatus.PERSISTING)
        await self._store(recipe, fingerprint_hash, policy, cancel)

        now = self._now()
        state = self._persist(state, lambda s: transitions.record_processed(s, url, now))
        self.event_bus.publish(
            RecipeProcessedEvent(
                batch_id=state.batch_id,
                provider_id=provider_id,
                url=url,
                recipe_id=recipe.id,
                fingerprint_hash=fingerprint_hash,
                processed_at=now,
            )
        )
        return state

    async def _fingerprint(
        self,
        extractor: BaseExtractor,
        url: str,
        policy: RetryPolicy,
        cancel: asyncio.Event | None,
    ) -> str:
        preview = await self.retry.execute(
            lambda: extractor.prefetch(url),
            policy=policy,
            cancel=cancel,
            operation_name=f"prefetch[{url}]",
        )
        title = preview.title if preview else ""
        description = preview.description if preview else ""
        return self.fingerprints.generate_fingerprint(url, title, description)

    async def _extract(
        self,
        state: SagaState,
        provider: ProviderConfig,
        extractor: BaseExtractor,
        url: str,
        fingerprint_hash: str,
        policy: RetryPolicy,
        cancel: asyncio.Event | None,
    ) -> Recipe:
        timeout = provider.rate_limit.request_timeout

        async def extract() -> ExtractedRecipe:
            extracted = await asyncio.wait_for(extractor.extract(url), timeout=timeout)
            errors = extractor.validate_recipe(extracted)
            if errors:
                raise RecipeValidationError(f"Invalid recipe at {url}: {'; '.join(errors)}")
            return extracted

        extracted = await self.retry.execute(
            extract, policy=policy, cancel=cancel, operation_name=f"extract[{url}]"
        )

        mappings = await self.retry.execute(
            lambda: self.normalizer.normalize_batch(provider.provider_id, extracted.ingredient_codes),
            policy=policy,
            cancel=cancel,
            operation_name=f"normalize[{url}]",
        )
        ingredients = [
            RecipeIngredient(provider_code=code, canonical_name=canonical)
            for code, canonical in mappings.items()
        ]
        for ingredient in ingredients:
            if ingredient.canonical_name is None:
                self.event_bus.publish(
                    IngredientMappingMissingEvent(
                        provider_id=provider.provider_id,
                        provider_code=ingredient.provider_code,
                        recipe_url=url,
                    )
                )

        try:
            return Recipe(
                id=recipe_id_for(provider.provider_id, url),
                provider_id=provider.provider_id,
                source_url=url,
                title=extracted.title,
                description=extracted.description,
                ingredients=ingredients,
                instructions=extracted.instructions,
                image_url=extracted.image_url,
                prep_time_minutes=extracted.prep_time_minutes,
                cook_time_minutes=extracted.cook_time_minutes,
                servings=extracted.servings,
                fingerprint_hash=fingerprint_hash,
                batch_id=state.batch_id,
            )
        except ValidationError as e:
            raise ClassifiedError(
                original=e,
                classification=classify_error(e),
                attempts=1,
                operation_name=f"assemble[{url}]",
            ) from e

    async def _store(
        self,
        recipe: Recipe,
        fingerprint_hash: str,
        policy: RetryPolicy,
        cancel: asyncio.Event | None,
    ) -> None:
        async def upsert() -> None:
            try:
                self._recipes.upsert(recipe)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        async def store_fingerprint() -> None:
            self.fingerprints.store_fingerprint(
                fingerprint_hash, recipe.provider_id, recipe.source_url, recipe.id
            )

        await self.retry.execute(
            upsert, policy=policy, cancel=cancel, operation_name=f"persist[{recipe.source_url}]"
        )
        await self.retry.execute(
            store_fingerprint,
            policy=policy,
            cancel=cancel,
            operation_name=f"fingerprint[{recipe.source_url}]",
        )

    def _record_failure(self, state: SagaState, url: str, error: ClassifiedError) -> SagaState:
        now = self._now()
        state = self._persist(state, lambda s: transitions.record_failed(s, url, now))
        self.event_bus.publish(
            ProcessingErrorEvent(
                batch_id=state.batch_id,
                provider_id=state.provider_id,
                url=url,
                error_kind=error.classification.kind,
                error_category=error.classification.category,
                error_message=str(error.original),
                attempts=error.attempts,
            )
        )
        return state

    def _complete(self, state: SagaState, reason: BatchCompletionReason) -> SagaState:
        now = self._now()
        state = self._persist(state, lambda s: transitions.complete(s, reason, now))
        self.event_bus.publish(
            BatchCompletedEvent(
                batch_id=state.batch_id,
                provider_id=state.provider_id,
                processed=state.counts.processed,
                skipped=state.counts.skipped,
                failed=state.counts.failed,
                pending=len(state.pending_urls),
                partial=state.partial,
                reason=reason,
                completed_at=now,
            )
        )
        return state

    # =========================================================================
    # State persistence
    # =========================================================================

    def _advance(self, state: SagaState, status: SagaStatus) -> SagaState:
        now = self._now()
        return self._persist(state, lambda s: transitions.advance(s, status, now))

    def _persist(self, state: SagaState, transition: Transition) -> SagaState:
        """
        Apply a transition and write it under the concurrency token.

        On a stale token the latest state is reloaded and the transition
        re-applied once. If the reloaded state is terminal or no longer
        accepts the transition the conflict is raised.
        """
        try:
            saved = self._states.save(transition(state))
            self.session.commit()
            return saved
        except ConcurrencyConflictError:
            self.session.rollback()
            latest = self._states.get(state.batch_id)
            if latest is None or latest.is_terminal:
                raise
            try:
                retried = transition(latest)
            except InvalidStateTransitionError as e:
                raise ConcurrencyConflictError(state.batch_id, state.concurrency_token) from e
            logger.info(
                f"Re-applied transition on batch {state.batch_id} "
                f"at token {latest.concurrency_token}"
            )
            saved = self._states.save(retried)
            self.session.commit()
            return saved

    def _fail_batch(self, state: SagaState, category: str, message: str) -> None:
        """Best-effort write of FAILED against the latest stored token."""
        self.session.rollback()
        latest = self._states.get(state.batch_id) or state
        if latest.is_terminal:
            return
        try:
            failed = self._states.save(transitions.fail(latest, category, message, self._now()))
            self.session.commit()
        except RecipeEngineError as e:
            self.session.rollback()
            logger.error(f"Could not mark batch {state.batch_id} as failed: {e}")
            return
        self.event_bus.publish(
            BatchFailedEvent(
                batch_id=failed.batch_id,
                provider_id=failed.provider_id,
                error_category=failed.error_category or category,
                error_message=failed.error_message or message,
            )
        )
