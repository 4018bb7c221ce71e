"""MCP tool-server connectivity."""

from .client import DEFAULT_INIT_TIMEOUT, MultiServerMCPClient, ServerConnection
from .manager import ServerConnectionState, ToolServerConnectionManager
from .tool import McpTool

__all__ = [
    "DEFAULT_INIT_TIMEOUT",
    "McpTool",
    "MultiServerMCPClient",
    "ServerConnection",
    "ServerConnectionState",
    "ToolServerConnectionManager",
]
