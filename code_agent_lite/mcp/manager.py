"""Connection lifecycle and per-server state for MCP tool servers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Literal, Optional, Sequence

from ..config.tool_servers import ToolServerConfig
from ..errors import ToolServerConnectionError, ToolServerPartialError
from .client import DEFAULT_INIT_TIMEOUT, MultiServerMCPClient
from .tool import McpTool

logger = logging.getLogger(__name__)

ServerStatus = Literal["disconnected", "connecting", "connected", "error"]


@dataclass(frozen=True)
class ServerConnectionState:
    status: ServerStatus
    tool_count: Optional[int] = None
    error: Optional[str] = None


ClientFactory = Callable[[List[ToolServerConfig]], MultiServerMCPClient]


class ToolServerConnectionManager:
    """Connects to a set of tool servers and aggregates their tools.

    State is rebuilt on every ``connect``. Reads return copies so callers
    never observe later transitions through a held reference.
    """

    def __init__(self, client_factory: Optional[ClientFactory] = None, timeout: float = DEFAULT_INIT_TIMEOUT):
        self._client_factory = client_factory or (lambda servers: MultiServerMCPClient(servers, timeout=timeout))
        self._client: Optional[MultiServerMCPClient] = None
        self._tools: List[McpTool] = []
        self._states: Dict[str, ServerConnectionState] = {}

    async def connect(self, servers: Sequence[ToolServerConfig]) -> None:
        """Connect to ``servers``, replacing any previous connection.

        Raises:
            ToolServerConnectionError: If the aggregate handshake fails. Every
                server still connecting is marked as errored first.
        """
        await self._close_client()
        self._states = {}
        self._tools = []

        if not servers:
            logger.info("No tool servers configured")
            return

        for server in servers:
            self._states[server.id] = ServerConnectionState("connecting")

        client = self._client_factory(list(servers))
        try:
            await client.start()
            tools_by_server = await client.get_tools_by_server()
        except Exception as e:
            message = str(e) or type(e).__name__
            for server_id, state in self._states.items():
                if state.status == "connecting":
                    self._states[server_id] = ServerConnectionState("error", error=message)
            await client.close()
            logger.error("Tool server connection failed: %s", message)
            if isinstance(e, ToolServerConnectionError):
                raise
            raise ToolServerConnectionError(message, server_ids=list(self._states)) from e

        self._client = client
        for server in servers:
            tools = tools_by_server.get(server.id)
            if tools is None:
                partial = ToolServerPartialError(server.id)
                logger.warning("Tool server %s: %s", server.name, partial)
                self._states[server.id] = ServerConnectionState("error", error=str(partial))
                continue
            self._states[server.id] = ServerConnectionState("connected", tool_count=len(tools))
            self._tools.extend(tools)

        logger.info(
            "Connected to %d tool server(s), %d tool(s) available",
            sum(1 for s in self._states.values() if s.status == "connected"),
            len(self._tools),
        )

    async def disconnect(self) -> None:
        for server_id in self._states:
            self._states[server_id] = ServerConnectionState("disconnected")
        self._tools = []
        await self._close_client()

    async def _close_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.close()

    def get_tools(self) -> List[McpTool]:
        return list(self._tools)

    def get_server_states(self) -> Dict[str, ServerConnectionState]:
        return dict(self._states)

    def get_server_state(self, server_id: str) -> Optional[ServerConnectionState]:
        return self._states.get(server_id)

    def is_connected(self) -> bool:
        return self._client is not None
