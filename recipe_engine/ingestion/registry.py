"""
Provider Registry Module
========================

Manages provider configurations loaded from YAML files. Providers define
where recipes are discovered, which extractor reads them, how fast they may
be requested and how large and long a batch may run.
"""

from __future__ import annotations

import dataclasses
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from recipe_engine.core.enums import DiscoveryStrategy
from recipe_engine.core.errors import ConfigurationError


@dataclass(frozen=True)
class RateLimitConfig:
    """Request budget and retry settings for a provider."""

    max_requests_per_minute: int = 60
    burst_limit: int = 5
    retry_count: int = 3
    request_timeout: int = 30

    @classmethod
    def from_dict(
        cls, data: dict[str, Any] | None, defaults: RateLimitConfig | None = None
    ) -> RateLimitConfig:
        """Create from dictionary, using defaults for missing values."""
        base = defaults or cls()
        if data is None:
            return base
        return cls(
            max_requests_per_minute=int(
                data.get("max_requests_per_minute", base.max_requests_per_minute)
            ),
            burst_limit=int(data.get("burst_limit", base.burst_limit)),
            retry_count=int(data.get("retry_count", base.retry_count)),
            request_timeout=int(data.get("request_timeout", base.request_timeout)),
        )


@dataclass(frozen=True)
class ProviderConfig:
    """
    Configuration for a single recipe provider.

    Frozen: a running batch treats its provider configuration as read-only.
    """

    provider_id: str
    name: str = ""
    enabled: bool = True
    priority: int = 100
    discovery_strategy: DiscoveryStrategy = DiscoveryStrategy.STATIC
    extractor: str = "test"
    recipe_root_url: str = ""
    sitemap_url: str | None = None
    batch_size: int = 100
    time_window_minutes: int = 10
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    allowlist: tuple[str, ...] = ()
    denylist: tuple[str, ...] = ()
    seed_urls: tuple[str, ...] = ()
    custom_config: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], default_rate_limit: RateLimitConfig | None = None
    ) -> ProviderConfig:
        """Create from dictionary."""
        provider_id = data.get("provider_id")
        if not provider_id:
            raise ConfigurationError("Provider entry is missing 'provider_id'")

        try:
            strategy = DiscoveryStrategy(data.get("discovery_strategy", "static"))
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown discovery strategy: {data.get('discovery_strategy')}",
                provider_id=provider_id,
            ) from e

        batch_size = int(data.get("batch_size", 100))
        time_window_minutes = int(data.get("time_window_minutes", 10))
        if batch_size <= 0 or time_window_minutes <= 0:
            raise ConfigurationError(
                "batch_size and time_window_minutes must be positive",
                provider_id=provider_id,
            )

        return cls(
            provider_id=provider_id,
            name=data.get("name", provider_id),
            enabled=bool(data.get("enabled", True)),
            priority=int(data.get("priority", 100)),
            discovery_strategy=strategy,
            extractor=data.get("extractor", "test"),
            recipe_root_url=data.get("recipe_root_url", ""),
            sitemap_url=data.get("sitemap_url"),
            batch_size=batch_size,
            time_window_minutes=time_window_minutes,
            rate_limit=RateLimitConfig.from_dict(data.get("rate_limit"), default_rate_limit),
            allowlist=tuple(data.get("allowlist") or ()),
            denylist=tuple(data.get("denylist") or ()),
            seed_urls=tuple(data.get("seed_urls") or ()),
            custom_config=dict(data.get("custom_config") or {}),
        )

    @property
    def time_window(self) -> timedelta:
        return timedelta(minutes=self.time_window_minutes)

    def is_url_allowed(self, url: str) -> bool:
        """
        Check if a URL is allowed for this provider.

        Rules:
        1. If URL matches any denylist pattern, it's denied
        2. If allowlist is empty, URL is allowed
        3. If allowlist is not empty, URL must match at least one pattern
        """
        if any(re.match(p, url) for p in self.denylist):
            return False
        if not self.allowlist:
            return True
        return any(re.match(p, url) for p in self.allowlist)


@dataclass(frozen=True)
class GlobalConfig:
    """Global configuration settings."""

    default_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry_base_delay: float = 1.0
    user_agent: str = "RecipeEngine/0.1"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            default_rate_limit=RateLimitConfig.from_dict(data.get("default_rate_limit")),
            retry_base_delay=float(data.get("retry_base_delay", 1.0)),
            user_agent=data.get("user_agent", "RecipeEngine/0.1"),
        )


class ProviderRegistry:
    """
    Registry for managing provider configurations.

    Loads provider definitions from a YAML file and provides methods
    to query and manage them.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ProviderConfig] = {}
        self._global_config: GlobalConfig = GlobalConfig()
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    @property
    def config_path(self) -> Path | None:
        return self._config_path

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the providers.yaml file
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self._global_config = GlobalConfig.from_dict(data.get("global"))

        self._providers.clear()
        for provider_data in data.get("providers", []):
            self.register(
                ProviderConfig.from_dict(provider_data, self._global_config.default_rate_limit)
            )

    def register(self, provider: ProviderConfig) -> None:
        """Add or replace a provider configuration."""
        self._providers[provider.provider_id] = provider

    def get_provider(self, provider_id: str) -> ProviderConfig | None:
        """
        Get a provider configuration by id.

        Returns:
            ProviderConfig if found, None otherwise
        """
        return self._providers.get(provider_id)

    def get_enabled_provider(self, provider_id: str) -> ProviderConfig:
        """
        Get an enabled provider configuration.

        Raises:
            ConfigurationError: if the provider is unknown or disabled.
        """
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ConfigurationError(
                f"No configuration found for provider '{provider_id}'", provider_id=provider_id
            )
        if not provider.enabled:
            raise ConfigurationError(
                f"Provider '{provider_id}' is disabled", provider_id=provider_id
            )
        return provider

    def list_providers(self) -> list[ProviderConfig]:
        """Get all registered providers in priority order."""
        return sorted(self._providers.values(), key=lambda p: (p.priority, p.provider_id))

    def list_enabled_providers(self) -> list[ProviderConfig]:
        """Get all enabled providers in priority order."""
        return [p for p in self.list_providers() if p.enabled]

    def enable_provider(self, provider_id: str) -> bool:
        """
        Enable a provider.

        Returns:
            True if provider was found and enabled, False otherwise
        """
        return self._set_enabled(provider_id, True)

    def disable_provider(self, provider_id: str) -> bool:
        """
        Disable a provider.

        Returns:
            True if provider was found and disabled, False otherwise
        """
        return self._set_enabled(provider_id, False)

    def _set_enabled(self, provider_id: str, enabled: bool) -> bool:
        provider = self._providers.get(provider_id)
        if provider is None:
            return False
        self._providers[provider_id] = dataclasses.replace(provider, enabled=enabled)
        return True


# Global registry instance
_default_registry: ProviderRegistry | None = None


def get_default_registry() -> ProviderRegistry:
    """
    Get the default provider registry instance.

    Loads configuration from the path specified in PROVIDERS_CONFIG_PATH
    environment variable, or falls back to config/providers.yaml.

    Returns:
        The global ProviderRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        _default_registry = ProviderRegistry()

        config_path = os.environ.get("PROVIDERS_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            # Default to config/providers.yaml relative to project root
            module_dir = Path(__file__).parent
            project_root = module_dir.parent.parent
            path = project_root / "config" / "providers.yaml"

        if path.exists():
            _default_registry.load_config(path)

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (useful for testing)."""
    global _default_registry
    _default_registry = None
