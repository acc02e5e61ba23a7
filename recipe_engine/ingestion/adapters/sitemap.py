"""
Sitemap Discovery Module
========================

Discovery from a provider's sitemap.xml. Sitemap indexes are followed one
level deep; ``<loc>`` entries are filtered by the provider's allow/deny
patterns.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
from typing import Any

import httpx

from recipe_engine.core.errors import DiscoveryError, OperationCancelledError
from recipe_engine.ingestion.adapters.base import BaseDiscovery
from recipe_engine.ingestion.registry import ProviderConfig

logger = logging.getLogger(__name__)

_LOC_PATTERN = re.compile(r"<loc>\s*(.*?)\s*</loc>", re.IGNORECASE | re.DOTALL)
_SITEMAP_INDEX_PATTERN = re.compile(r"<sitemapindex[\s>]", re.IGNORECASE)

DEFAULT_USER_AGENT = "RecipeEngine/0.1"


def parse_sitemap(content: str) -> tuple[list[str], bool]:
    """
    Extract ``<loc>`` values from sitemap XML.

    Returns:
        (locations, is_index) where is_index is True for a sitemap index.
    """
    locations = [html.unescape(m.group(1)) for m in _LOC_PATTERN.finditer(content)]
    return [loc for loc in locations if loc], bool(_SITEMAP_INDEX_PATTERN.search(content))


class SitemapDiscovery(BaseDiscovery):
    """Fetches ``sitemap_url`` (or ``<recipe_root_url>/sitemap.xml``) with httpx."""

    DISCOVERY_NAME = "sitemap"
    DISCOVERY_VERSION = "1.0.0"

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(config)
        self._transport = transport
        self.user_agent = self.config.get("user_agent", user_agent)
        self.timeout = float(self.config.get("timeout", timeout))
        self.max_child_sitemaps = int(self.config.get("max_child_sitemaps", 20))

    def _sitemap_url(self, provider: ProviderConfig) -> str:
        if provider.sitemap_url:
            return provider.sitemap_url
        if not provider.recipe_root_url:
            raise DiscoveryError(
                "Provider has neither sitemap_url nor recipe_root_url",
                provider_id=provider.provider_id,
                root_url="",
                transient=False,
            )
        return provider.recipe_root_url.rstrip("/") + "/sitemap.xml"

    async def _fetch(self, client: httpx.AsyncClient, url: str, provider: ProviderConfig) -> str:
        try:
            response = await client.get(url)
            response.raise_for_status()
            return response.text
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise DiscoveryError(
                f"Sitemap request returned HTTP {status}: {url}",
                provider_id=provider.provider_id,
                root_url=url,
                transient=status >= 500 or status == 429,
            ) from e
        except httpx.HTTPError as e:
            raise DiscoveryError(
                f"Sitemap request failed: {url}: {e}",
                provider_id=provider.provider_id,
                root_url=url,
                transient=True,
            ) from e

    async def discover_recipe_urls(
        self,
        provider: ProviderConfig,
        cancel: asyncio.Event | None = None,
    ) -> list[str]:
        sitemap_url = self._sitemap_url(provider)

        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            content = await self._fetch(client, sitemap_url, provider)
            locations, is_index = parse_sitemap(content)

            if is_index:
                child_sitemaps = locations[: self.max_child_sitemaps]
                locations = []
                for child_url in child_sitemaps:
                    if cancel is not None and cancel.is_set():
                        raise OperationCancelledError("Discovery cancelled")
                    child_content = await self._fetch(client, child_url, provider)
                    child_locations, _ = parse_sitemap(child_content)
                    locations.extend(child_locations)

        urls = [url for url in locations if provider.is_url_allowed(url)]
        logger.info(
            f"Sitemap {sitemap_url} listed {len(locations)} URL(s), "
            f"{len(urls)} allowed for '{provider.provider_id}'"
        )
        return urls
