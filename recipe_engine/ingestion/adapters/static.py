"""
Static Discovery Module
=======================

Discovery from a provider's configured seed URLs.
"""

from __future__ import annotations

import asyncio
import logging

from recipe_engine.core.errors import OperationCancelledError
from recipe_engine.ingestion.adapters.base import BaseDiscovery
from recipe_engine.ingestion.registry import ProviderConfig

logger = logging.getLogger(__name__)


class StaticDiscovery(BaseDiscovery):
    """Returns the provider's ``seed_urls`` that pass its allow/deny patterns."""

    DISCOVERY_NAME = "static"
    DISCOVERY_VERSION = "1.0.0"

    async def discover_recipe_urls(
        self,
        provider: ProviderConfig,
        cancel: asyncio.Event | None = None,
    ) -> list[str]:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("Discovery cancelled")
        urls = [url for url in provider.seed_urls if provider.is_url_allowed(url)]
        dropped = len(provider.seed_urls) - len(urls)
        if dropped:
            logger.debug(f"Filtered {dropped} seed URL(s) for '{provider.provider_id}'")
        return urls
