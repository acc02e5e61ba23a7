"""Default domain event handlers.

These log batch lifecycle and per-recipe outcomes. They are not wired
automatically; call ``register_default_handlers(bus)``.
"""

import logging

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
from recipe_engine.ingestion.events import EventBus, Subscription

logger = logging.getLogger(__name__)


def on_batch_started(event: BatchStartedEvent) -> None:
    logger.info(f"Batch {event.batch_id} started for provider '{event.provider_id}'")


def on_batch_completed(event: BatchCompletedEvent) -> None:
    kind = "partially completed" if event.partial else "completed"
    logger.info(
        f"Batch {event.batch_id} {kind} ({event.reason.value}): "
        f"processed={event.processed} skipped={event.skipped} "
        f"failed={event.failed} pending={event.pending}"
    )


def on_batch_failed(event: BatchFailedEvent) -> None:
    logger.error(
        f"Batch {event.batch_id} for '{event.provider_id}' failed "
        f"[{event.error_category}]: {event.error_message}"
    )


def on_discovery_completed(event: DiscoveryCompletedEvent) -> None:
    logger.info(
        f"Discovered {event.urls_discovered} URL(s) for '{event.provider_id}', "
        f"{event.urls_accepted} queued in batch {event.batch_id}"
    )


def on_discovery_failed(event: DiscoveryFailedEvent) -> None:
    logger.error(f"Discovery failed at {event.root_url}: {event.error_message}")


def on_recipe_processed(event: RecipeProcessedEvent) -> None:
    logger.info(f"Processed recipe {event.recipe_id} from {event.url}")


def on_duplicate_skipped(event: DuplicateRecipeSkippedEvent) -> None:
    logger.debug(f"Skipped duplicate {event.url} ({event.fingerprint_hash[:12]})")


def on_processing_error(event: ProcessingErrorEvent) -> None:
    logger.warning(
        f"Failed {event.url} after {event.attempts} attempt(s) "
        f"[{event.error_kind.value}/{event.error_category}]: {event.error_message}"
    )


def on_ingredient_mapping_missing(event: IngredientMappingMissingEvent) -> None:
    logger.warning(
        f"No ingredient mapping for '{event.provider_code}' "
        f"(provider '{event.provider_id}', {event.recipe_url})"
    )


DEFAULT_HANDLERS = {
    BatchStartedEvent: on_batch_started,
    BatchCompletedEvent: on_batch_completed,
    BatchFailedEvent: on_batch_failed,
    DiscoveryCompletedEvent: on_discovery_completed,
    DiscoveryFailedEvent: on_discovery_failed,
    RecipeProcessedEvent: on_recipe_processed,
    DuplicateRecipeSkippedEvent: on_duplicate_skipped,
    ProcessingErrorEvent: on_processing_error,
    IngredientMappingMissingEvent: on_ingredient_mapping_missing,
}


def register_default_handlers(bus: EventBus) -> list[Subscription]:
    """Subscribe the logging handlers to ``bus``."""
    return [bus.subscribe(event_type, handler) for event_type, handler in DEFAULT_HANDLERS.items()]
