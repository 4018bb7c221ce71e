"""Multi-server MCP client built on the official ``mcp`` SDK."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import get_default_environment, stdio_client
from mcp.client.streamable_http import streamable_http_client

from ..config.tool_servers import StdioServerConfig, ToolServerConfig
from ..errors import ToolServerConnectionError
from .tool import McpTool

logger = logging.getLogger(__name__)

# Default timeout for the initialize handshake and tool listing (seconds)
DEFAULT_INIT_TIMEOUT = 30.0
# Grace period for a server to shut down before its task is cancelled
CLOSE_TIMEOUT = 5.0
# Connect and read timeouts for HTTP tool servers; reads wait on the server-sent event stream
HTTP_TIMEOUT = 30.0
HTTP_READ_TIMEOUT = 300.0


class ServerConnection:
    """One live MCP session.

    The transport and the ClientSession are entered and exited inside a
    dedicated holder task, so ``close`` may be called from any task.
    """

    def __init__(self, config: ToolServerConfig):
        self.config = config
        self.session: Optional[ClientSession] = None
        self._task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._closing = asyncio.Event()

    @property
    def server_id(self) -> str:
        return self.config.id

    async def _enter_transport(self, stack: AsyncExitStack) -> Tuple[Any, Any]:
        """Open the configured transport on ``stack`` and return its read/write streams."""
        if isinstance(self.config, StdioServerConfig):
            params = StdioServerParameters(
                command=self.config.command,
                args=list(self.config.args),
                env={**get_default_environment(), **self.config.env},
                cwd=self.config.cwd or None,
            )
            streams = await stack.enter_async_context(stdio_client(params))
        else:
            http_client = await stack.enter_async_context(
                httpx.AsyncClient(
                    headers=dict(self.config.headers),
                    timeout=httpx.Timeout(HTTP_TIMEOUT, read=HTTP_READ_TIMEOUT),
                    follow_redirects=True,
                )
            )
            streams = await stack.enter_async_context(streamable_http_client(self.config.url, http_client=http_client))
        return streams[0], streams[1]

    async def open(self, timeout: float = DEFAULT_INIT_TIMEOUT) -> None:
        """Start the holder task and wait until the MCP handshake completes."""
        self._ready = asyncio.get_running_loop().create_future()
        self._closing = asyncio.Event()
        self._task = asyncio.create_task(self._hold(), name=f"mcp-server-{self.server_id}")
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except BaseException:
            await self.close()
            raise
        logger.debug("Tool server %s initialized", self.config.name)

    async def _hold(self) -> None:
        try:
            async with AsyncExitStack() as stack:
                read_stream, write_stream = await self._enter_transport(stack)
                session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
                await session.initialize()
                self.session = session
                self._ready.set_result(None)
                await self._closing.wait()
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(e)
            else:
                logger.warning("Tool server %s connection ended: %s", self.config.name, describe_error(e))
        finally:
            self.session = None

    async def list_tools(self) -> List[McpTool]:
        session = self.session
        if session is None:
            raise RuntimeError(f"Tool server {self.config.name} is not connected")
        result = await session.list_tools()
        return [McpTool.from_listing(self.server_id, session, listed) for listed in result.tools]

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        self._closing.set()
        if self._ready is not None and not self._ready.done():
            # Still inside the handshake, so the closing event is never observed.
            task.cancel()
        done, _ = await asyncio.wait({task}, timeout=CLOSE_TIMEOUT)
        if not done:
            logger.warning("Tool server %s did not shut down in time; cancelled", self.config.name)
            task.cancel()
            await asyncio.wait({task})
        if self._ready is not None and self._ready.done() and not self._ready.cancelled():
            # Mark a late handshake failure as retrieved.
            self._ready.exception()


class MultiServerMCPClient:
    """Opens every configured server and lists their tools.

    Connecting is all-or-nothing: if any server fails its handshake, every
    session is closed and ToolServerConnectionError is raised. Listing tools
    is per-server: a failure yields ``None`` for that server only.
    """

    def __init__(self, servers: Sequence[ToolServerConfig], timeout: float = DEFAULT_INIT_TIMEOUT):
        self.timeout = timeout
        self.connections: Dict[str, ServerConnection] = {s.id: ServerConnection(s) for s in servers}

    async def start(self) -> None:
        connections = list(self.connections.values())
        results = await asyncio.gather(*(c.open(self.timeout) for c in connections), return_exceptions=True)
        failures = [(c, r) for c, r in zip(connections, results) if isinstance(r, BaseException)]
        if not failures:
            return

        await self.close()
        details = "; ".join(f"{c.config.name}: {describe_error(e, self.timeout)}" for c, e in failures)
        raise ToolServerConnectionError(
            f"Failed to connect to tool servers: {details}",
            server_ids=[c.server_id for c, _ in failures],
        ) from failures[0][1]

    async def get_tools_by_server(self) -> Dict[str, Optional[List[McpTool]]]:
        async def _list(connection: ServerConnection) -> Optional[List[McpTool]]:
            try:
                return await asyncio.wait_for(connection.list_tools(), self.timeout)
            except Exception as e:
                logger.warning("Failed to list tools for %s: %s", connection.config.name, describe_error(e))
                return None

        ids = list(self.connections)
        results = await asyncio.gather(*(_list(self.connections[i]) for i in ids))
        return dict(zip(ids, results))

    async def close(self) -> None:
        await asyncio.gather(*(c.close() for c in self.connections.values()))


def describe_error(error: BaseException, timeout: Optional[float] = None) -> str:
    """Readable message for errors raised through anyio task groups and timeouts."""
    if isinstance(error, asyncio.TimeoutError):
        return f"timed out after {timeout:g}s" if timeout else "timed out"
    nested: Any = getattr(error, "exceptions", None)
    if nested:
        return "; ".join(describe_error(e, timeout) for e in nested)
    return str(error) or type(error).__name__
