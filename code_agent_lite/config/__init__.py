"""Persisted configuration, runtime settings and provider resolution."""

from .providers import (
    AnthropicProviderConfig,
    CustomProviderConfig,
    OpenAIProviderConfig,
    ProviderConfig,
    ProviderConfigService,
    ProviderDocument,
    parse_provider,
)
from .resolver import ProviderResolver
from .settings import AgentSettings, load_settings
from .store import JsonDocumentStore, get_config_home
from .tool_servers import (
    HttpServerConfig,
    StdioServerConfig,
    ToolServerConfig,
    ToolServerConfigService,
    ToolServerDocument,
    parse_tool_server,
)
from .validator import ConfigIssue, Severity, validate_provider_form, validate_tool_server_form

__all__ = [
    "AgentSettings",
    "AnthropicProviderConfig",
    "ConfigIssue",
    "CustomProviderConfig",
    "HttpServerConfig",
    "JsonDocumentStore",
    "OpenAIProviderConfig",
    "ProviderConfig",
    "ProviderConfigService",
    "ProviderDocument",
    "ProviderResolver",
    "Severity",
    "StdioServerConfig",
    "ToolServerConfig",
    "ToolServerConfigService",
    "ToolServerDocument",
    "get_config_home",
    "load_settings",
    "parse_provider",
    "parse_tool_server",
    "validate_provider_form",
    "validate_tool_server_form",
]
