"""Tests for building chat providers from provider configs."""

from types import SimpleNamespace

import pytest

from code_agent_lite.config.providers import (
    AnthropicProviderConfig,
    CustomProviderConfig,
    OpenAIProviderConfig,
)
from code_agent_lite.errors import ProviderUnsupportedError
from code_agent_lite.providers import (
    AnthropicProvider,
    OpenAICompatibleProvider,
    create_model,
    generation_config_for,
)


def test_openai_config_builds_openai_provider():
    model = create_model(OpenAIProviderConfig(id="o", name="o", model="gpt-4o", api_key="sk-test"))
    assert isinstance(model, OpenAICompatibleProvider)
    assert model.model == "gpt-4o"
    assert model.api_base == ""


def test_anthropic_config_builds_anthropic_provider():
    model = create_model(
        AnthropicProviderConfig(
            id="a", name="a", model="claude-sonnet-4-20250514", api_key="sk-test", base_url="https://proxy.example.com"
        )
    )
    assert isinstance(model, AnthropicProvider)
    assert model.api_base == "https://proxy.example.com"


@pytest.mark.parametrize(
    "protocol, expected",
    [("openai", OpenAICompatibleProvider), ("anthropic", AnthropicProvider)],
)
def test_custom_dispatches_on_protocol(protocol, expected):
    config = CustomProviderConfig(
        id="c", name="c", model="local", api_key="k", base_url="http://localhost:8000/v1", protocol=protocol
    )
    model = create_model(config)
    assert isinstance(model, expected)
    assert model.api_base == "http://localhost:8000/v1"


def test_unknown_type_is_unsupported():
    with pytest.raises(ProviderUnsupportedError) as excinfo:
        create_model(SimpleNamespace(type="gemini", model="gemini-2.5-flash", api_key="k", base_url=None))
    assert "gemini" in str(excinfo.value)


def test_unknown_custom_protocol_is_unsupported():
    config = SimpleNamespace(type="custom", protocol="grpc", model="m", api_key="k", base_url="http://localhost")
    with pytest.raises(ProviderUnsupportedError):
        create_model(config)


def test_generation_config_prefers_provider_values():
    config = OpenAIProviderConfig(id="o", name="o", model="gpt-4o", temperature=0.3, max_tokens=512)
    generation = generation_config_for(config, system_prompt="be brief", default_max_tokens=4096)

    assert generation.system_prompt == "be brief"
    assert generation.temperature == 0.3
    assert generation.max_tokens == 512


def test_generation_config_falls_back_to_session_default():
    config = OpenAIProviderConfig(id="o", name="o", model="gpt-4o")
    generation = generation_config_for(config, default_max_tokens=2048)

    assert generation.max_tokens == 2048
    assert generation.temperature is None
