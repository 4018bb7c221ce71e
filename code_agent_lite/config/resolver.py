"""Provider resolution: persisted configuration first, environment second."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Mapping, Optional

from ..errors import ConfigurationError
from .providers import (
    AnthropicProviderConfig,
    OpenAIProviderConfig,
    ProviderConfig,
    ProviderConfigService,
)

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"


class ProviderResolver:
    """Selects the model provider the session should use.

    Precedence: the enabled provider flagged default, then the first enabled
    provider, then a provider synthesized from environment variables.
    """

    def __init__(self, providers: ProviderConfigService, environ: Optional[Mapping[str, str]] = None):
        self.providers = providers
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def get_default_provider(self) -> Optional[ProviderConfig]:
        return select_default(self.providers.get_providers())

    def get_provider_from_env(self) -> Optional[ProviderConfig]:
        env = self.environ
        openai_key = env.get("OPENAI_API_KEY")
        if openai_key:
            return OpenAIProviderConfig(
                id="env-openai",
                name="OpenAI (from env)",
                enabled=True,
                is_default=True,
                model=env.get("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
                api_key=openai_key,
                base_url=env.get("OPENAI_BASE_URL") or None,
            )

        anthropic_key = env.get("ANTHROPIC_API_KEY")
        if anthropic_key:
            return AnthropicProviderConfig(
                id="env-anthropic",
                name="Anthropic (from env)",
                enabled=True,
                is_default=True,
                model=env.get("ANTHROPIC_MODEL") or DEFAULT_ANTHROPIC_MODEL,
                api_key=anthropic_key,
                base_url=env.get("ANTHROPIC_BASE_URL") or None,
            )
        return None

    def resolve_provider_settings(self, config: ProviderConfig) -> ProviderConfig:
        """Return a copy with blank credentials backfilled from the environment.

        ``apiKey`` falls back to ``{TYPE}_API_KEY`` and ``baseURL`` to
        ``{TYPE}_BASE_URL``. Custom providers never take a base URL from the
        environment. Values already present are left alone.
        """
        prefix = config.type.upper()
        updates: Dict[str, Any] = {}

        if not config.api_key:
            env_key = self.environ.get(f"{prefix}_API_KEY")
            if env_key:
                updates["api_key"] = env_key

        if config.type != "custom" and not config.base_url:
            env_base_url = self.environ.get(f"{prefix}_BASE_URL")
            if env_base_url:
                updates["base_url"] = env_base_url

        return config.model_copy(update=updates, deep=True)

    def has_valid_provider(self) -> bool:
        return self.get_default_provider() is not None or self.get_provider_from_env() is not None

    def resolve(self) -> ProviderConfig:
        """Pick the active provider and backfill its settings.

        Raises:
            ConfigurationError: If neither persisted config nor environment yields a provider.
        """
        provider = self.get_default_provider()
        source = "config"
        if provider is None:
            provider = self.get_provider_from_env()
            source = "environment"
        if provider is None:
            raise ConfigurationError(
                "No provider configured. Add a provider or set OPENAI_API_KEY / ANTHROPIC_API_KEY."
            )
        logger.info("Using provider %s (%s/%s) from %s", provider.name, provider.type, provider.model, source)
        return self.resolve_provider_settings(provider)


def select_default(providers: List[ProviderConfig]) -> Optional[ProviderConfig]:
    enabled = [p for p in providers if p.enabled]
    for provider in enabled:
        if provider.is_default:
            return provider
    return enabled[0] if enabled else None
