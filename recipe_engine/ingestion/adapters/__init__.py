"""
Adapter Registry Module
=======================

Central registries for discovery strategies and recipe extractors.
Provides factory functions for creating them by name.
"""

from __future__ import annotations

from typing import Any, Type

from recipe_engine.ingestion.adapters.base import BaseDiscovery, BaseExtractor
from recipe_engine.ingestion.adapters.sitemap import SitemapDiscovery
from recipe_engine.ingestion.adapters.static import StaticDiscovery
from recipe_engine.ingestion.adapters.test_adapter import TestDiscovery, TestExtractor

# Registry mapping discovery strategy names to their classes
DISCOVERY_REGISTRY: dict[str, Type[BaseDiscovery]] = {
    "static": StaticDiscovery,
    "sitemap": SitemapDiscovery,
    "test": TestDiscovery,
}

# Registry mapping extractor names to their classes
EXTRACTOR_REGISTRY: dict[str, Type[BaseExtractor]] = {
    "test": TestExtractor,
}


def get_discovery(name: str, config: dict[str, Any] | None = None) -> BaseDiscovery | None:
    """
    Get a discovery strategy instance by name.

    Args:
        name: Strategy name (e.g., "sitemap")
        config: Optional custom configuration

    Returns:
        Discovery instance, or None if name not found
    """
    discovery_class = DISCOVERY_REGISTRY.get(name)
    if discovery_class is None:
        return None
    return discovery_class(config)


def register_discovery(name: str, discovery_class: Type[BaseDiscovery]) -> None:
    """Register a new discovery strategy."""
    if not issubclass(discovery_class, BaseDiscovery):
        raise TypeError(f"{discovery_class} must inherit from BaseDiscovery")
    DISCOVERY_REGISTRY[name] = discovery_class


def get_extractor(name: str, config: dict[str, Any] | None = None) -> BaseExtractor | None:
    """
    Get an extractor instance by name.

    Returns:
        Extractor instance, or None if name not found
    """
    extractor_class = EXTRACTOR_REGISTRY.get(name)
    if extractor_class is None:
        return None
    return extractor_class(config)


def register_extractor(name: str, extractor_class: Type[BaseExtractor]) -> None:
    """Register a new extractor."""
    if not issubclass(extractor_class, BaseExtractor):
        raise TypeError(f"{extractor_class} must inherit from BaseExtractor")
    EXTRACTOR_REGISTRY[name] = extractor_class


def list_discoveries() -> list[str]:
    return list(DISCOVERY_REGISTRY.keys())


def list_extractors() -> list[str]:
    return list(EXTRACTOR_REGISTRY.keys())


__all__ = [
    # Registry functions
    "get_discovery",
    "register_discovery",
    "get_extractor",
    "register_extractor",
    "list_discoveries",
    "list_extractors",
    "DISCOVERY_REGISTRY",
    "EXTRACTOR_REGISTRY",
    # Base classes
    "BaseDiscovery",
    "BaseExtractor",
    # Concrete adapters
    "StaticDiscovery",
    "SitemapDiscovery",
    "TestDiscovery",
    "TestExtractor",
]
