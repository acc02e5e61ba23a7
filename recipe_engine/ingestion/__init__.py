"""
Recipe Engine Ingestion Framework
=================================

This package provides the batch pipeline that turns provider recipe pages
into persisted recipes.

Pipeline Stages:
1. Discovery - A discovery strategy lists candidate recipe URLs
2. Rate limit - A per-provider token bucket gates every request
3. Fingerprint - A content hash skips recipes already in the ledger
4. Extract - An extractor parses the recipe page
5. Normalize - Provider ingredient codes are mapped to canonical names
6. Persist - The recipe is upserted and its fingerprint recorded

The saga persists its state after every step so a batch can be resumed
after a crash.
"""

from recipe_engine.ingestion.batches import (
    BatchRunResult,
    build_saga,
    process_all_providers,
)
from recipe_engine.ingestion.events import EventBus, Subscription
from recipe_engine.ingestion.fingerprint import (
    FingerprintService,
    generate_fingerprint,
    normalize_url,
    recipe_id_for,
)
from recipe_engine.ingestion.normalizer import (
    DictIngredientNormalizer,
    IngredientNormalizer,
    MappingIngredientNormalizer,
)
from recipe_engine.ingestion.rate_limiter import RateLimiter, RateLimitStatus, TokenBucket
from recipe_engine.ingestion.registry import (
    GlobalConfig,
    ProviderConfig,
    ProviderRegistry,
    RateLimitConfig,
    get_default_registry,
    reset_default_registry,
)
from recipe_engine.ingestion.retry import (
    RetryExecutor,
    RetryPolicy,
    classify_error,
    compute_delay,
)
from recipe_engine.ingestion.saga import RecipeProcessingSaga

__all__ = [
    # Registry
    "ProviderRegistry",
    "ProviderConfig",
    "RateLimitConfig",
    "GlobalConfig",
    "get_default_registry",
    "reset_default_registry",
    # Rate limiting
    "RateLimiter",
    "RateLimitStatus",
    "TokenBucket",
    # Retry
    "RetryExecutor",
    "RetryPolicy",
    "classify_error",
    "compute_delay",
    # Fingerprints
    "FingerprintService",
    "generate_fingerprint",
    "normalize_url",
    "recipe_id_for",
    # Events
    "EventBus",
    "Subscription",
    # Normalization
    "IngredientNormalizer",
    "MappingIngredientNormalizer",
    "DictIngredientNormalizer",
    # Saga
    "RecipeProcessingSaga",
    "BatchRunResult",
    "build_saga",
    "process_all_providers",
]
