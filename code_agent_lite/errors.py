"""Exception hierarchy for code-agent-lite.

Every error raised by the package derives from AgentLiteError so callers can
catch the whole family in one clause.
"""

from __future__ import annotations

from typing import List, Optional


class AgentLiteError(Exception):
    """Base exception for all code-agent-lite errors."""

    def __init__(self, message: str = "", *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(AgentLiteError):
    """No usable model provider could be resolved."""

    NO_PROVIDER_CONFIGURED = "NO_PROVIDER_CONFIGURED"

    def __init__(
        self,
        message: str = "No provider configured",
        *,
        code: str = NO_PROVIDER_CONFIGURED,
        setup_required: bool = True,
    ) -> None:
        super().__init__(message, code=code)
        self.setup_required = setup_required


class ProviderUnsupportedError(AgentLiteError):
    """Provider type / protocol combination has no model implementation."""

    def __init__(self, provider_type: str, protocol: Optional[str] = None) -> None:
        label = f"{provider_type}/{protocol}" if protocol else provider_type
        super().__init__(f"Unsupported provider: {label}", code="PROVIDER_UNSUPPORTED")
        self.provider_type = provider_type
        self.protocol = protocol


class ToolServerConnectionError(AgentLiteError):
    """The aggregate tool-server handshake failed."""

    def __init__(self, message: str = "", *, server_ids: Optional[List[str]] = None) -> None:
        super().__init__(message, code="TOOL_SERVER_CONNECTION")
        self.server_ids = list(server_ids or [])


class ToolServerPartialError(AgentLiteError):
    """A single server connected but its tool list could not be fetched."""

    def __init__(self, server_id: str, message: str = "Failed to get tools from server") -> None:
        super().__init__(message, code="TOOL_SERVER_PARTIAL")
        self.server_id = server_id


class StreamProtocolError(AgentLiteError):
    """The engine emitted a step the reducer does not understand."""


class ToolExecutionError(AgentLiteError):
    """A tool call returned an error result."""

    def __init__(self, tool_name: str, message: str = "") -> None:
        super().__init__(message or f"Tool '{tool_name}' failed", code="TOOL_EXECUTION")
        self.tool_name = tool_name
