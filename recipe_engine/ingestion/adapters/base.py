"""
Adapter Base Module
===================

Defines the abstract base classes for provider-specific collaborators:
1. Discovery: find candidate recipe URLs for a provider
2. Extraction: turn a recipe URL into structured recipe data
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from recipe_engine.core.schema import ExtractedRecipe, RecipePreview

if TYPE_CHECKING:
    from recipe_engine.ingestion.registry import ProviderConfig


class BaseDiscovery(ABC):
    """
    Abstract base class for URL discovery strategies.

    Subclasses must implement ``discover_recipe_urls``. Network or parse
    failures should be raised as ``DiscoveryError``.
    """

    DISCOVERY_NAME: str = "base"
    DISCOVERY_VERSION: str = "1.0.0"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        """
        Initialize the discovery strategy.

        Args:
            config: Optional custom configuration from providers.yaml
        """
        self.config = config or {}

    @abstractmethod
    async def discover_recipe_urls(
        self,
        provider: ProviderConfig,
        cancel: asyncio.Event | None = None,
    ) -> list[str]:
        """
        Discover candidate recipe URLs for a provider.

        Args:
            provider: The provider's configuration
            cancel: Cooperative cancellation signal

        Returns:
            List of recipe URLs in discovery order
        """

    def get_info(self) -> dict[str, str]:
        return {"name": self.DISCOVERY_NAME, "version": self.DISCOVERY_VERSION}


class BaseExtractor(ABC):
    """
    Abstract base class for recipe extractors.

    Subclasses must implement ``extract``. They may override ``prefetch`` to
    return a cheap title/description preview that lets duplicates be
    skipped before a full extraction.
    """

    EXTRACTOR_NAME: str = "base"
    EXTRACTOR_VERSION: str = "1.0.0"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        """
        Initialize the extractor.

        Args:
            config: Optional custom configuration from providers.yaml
        """
        self.config = config or {}

    async def prefetch(self, url: str) -> RecipePreview | None:
        """
        Fetch a lightweight preview of a recipe page.

        Returns:
            RecipePreview, or None when no cheap preview is available
            (the fingerprint then covers the URL alone).
        """
        return None

    @abstractmethod
    async def extract(self, url: str) -> ExtractedRecipe:
        """
        Extract recipe data from a page.

        Args:
            url: Recipe page URL

        Returns:
            ExtractedRecipe with structured data

        Raises:
            ExtractionError: transient for network problems, permanent for
                malformed pages
        """

    def validate_recipe(self, recipe: ExtractedRecipe) -> list[str]:
        """
        Validate an extracted recipe.

        Override this method to add extractor-specific validation.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []
        if not recipe.title or not recipe.title.strip():
            errors.append("Missing title")
        for name in ("prep_time_minutes", "cook_time_minutes"):
            value = getattr(recipe, name)
            if value is not None and value < 0:
                errors.append(f"Negative {name}: {value}")
        if recipe.servings is not None and recipe.servings <= 0:
            errors.append(f"Invalid servings: {recipe.servings}")
        return errors

    def get_info(self) -> dict[str, str]:
        return {"name": self.EXTRACTOR_NAME, "version": self.EXTRACTOR_VERSION}
