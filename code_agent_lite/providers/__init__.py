"""Model factory: turn a resolved provider config into a chat provider."""

from __future__ import annotations

from typing import Any

from ..errors import ProviderUnsupportedError
from .anthropic_messages import AnthropicProvider
from .base import ChatProvider
from .openai_compat import OpenAICompatibleProvider
from .types import GenerationConfig


def create_model(config: Any) -> ChatProvider:
    """Build the chat provider for a resolved provider config.

    Dispatches on ``type``; ``custom`` providers dispatch again on
    ``protocol`` to pick the wire dialect.

    Raises:
        ProviderUnsupportedError: For any type/protocol pair without an implementation.
    """
    provider_type = getattr(config, "type", None)
    api_key = getattr(config, "api_key", "") or ""
    base_url = getattr(config, "base_url", None) or ""

    if provider_type == "openai":
        return OpenAICompatibleProvider(api_key=api_key, model=config.model, api_base=base_url)
    if provider_type == "anthropic":
        return AnthropicProvider(api_key=api_key, model=config.model, api_base=base_url)
    if provider_type == "custom":
        protocol = getattr(config, "protocol", None)
        if protocol == "openai":
            return OpenAICompatibleProvider(api_key=api_key, model=config.model, api_base=base_url)
        if protocol == "anthropic":
            return AnthropicProvider(api_key=api_key, model=config.model, api_base=base_url)
        raise ProviderUnsupportedError("custom", str(protocol))
    raise ProviderUnsupportedError(str(provider_type))


def generation_config_for(config: Any, system_prompt: str = "", default_max_tokens: int = 4096) -> GenerationConfig:
    """Generation settings taken from the provider config, with session defaults."""
    max_tokens = getattr(config, "max_tokens", None)
    return GenerationConfig(
        system_prompt=system_prompt,
        max_tokens=max_tokens if max_tokens else default_max_tokens,
        temperature=getattr(config, "temperature", None),
    )


__all__ = [
    "AnthropicProvider",
    "ChatProvider",
    "OpenAICompatibleProvider",
    "create_model",
    "generation_config_for",
]
