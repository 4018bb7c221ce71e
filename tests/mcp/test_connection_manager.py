"""Tests for tool-server connection state tracking."""

from types import SimpleNamespace

import pytest

from code_agent_lite.config.tool_servers import HttpServerConfig, StdioServerConfig
from code_agent_lite.errors import ToolServerConnectionError
from code_agent_lite.mcp.client import MultiServerMCPClient, describe_error
from code_agent_lite.mcp.manager import ServerConnectionState, ToolServerConnectionManager


def _stdio(server_id: str) -> StdioServerConfig:
    return StdioServerConfig(id=server_id, name=server_id, command="echo")


def _tool(name: str, server_id: str):
    return SimpleNamespace(name=name, server_id=server_id)


class _FakeClient:
    def __init__(self, servers, tools_by_server=None, start_error=None):
        self.servers = servers
        self.tools_by_server = tools_by_server or {}
        self.start_error = start_error
        self.closed = False

    async def start(self):
        if self.start_error is not None:
            raise self.start_error

    async def get_tools_by_server(self):
        return self.tools_by_server

    async def close(self):
        self.closed = True


def _manager(**client_kwargs):
    created = []

    def factory(servers):
        client = _FakeClient(servers, **client_kwargs)
        created.append(client)
        return client

    return ToolServerConnectionManager(client_factory=factory), created


@pytest.mark.asyncio
async def test_all_servers_connected():
    manager, _ = _manager(tools_by_server={"a": [_tool("read", "a"), _tool("write", "a")], "b": [_tool("ls", "b")]})

    await manager.connect([_stdio("a"), _stdio("b")])

    assert manager.get_server_states() == {
        "a": ServerConnectionState("connected", tool_count=2),
        "b": ServerConnectionState("connected", tool_count=1),
    }
    assert [t.name for t in manager.get_tools()] == ["read", "write", "ls"]
    assert manager.is_connected() is True


@pytest.mark.asyncio
async def test_partial_listing_failure_marks_only_that_server():
    manager, _ = _manager(tools_by_server={"a": [_tool("read", "a")], "b": None, "c": []})

    await manager.connect([_stdio("a"), _stdio("b"), _stdio("c")])

    states = manager.get_server_states()
    assert states["a"].status == "connected"
    assert states["b"] == ServerConnectionState("error", error="Failed to get tools from server")
    assert states["c"] == ServerConnectionState("connected", tool_count=0)
    assert [t.name for t in manager.get_tools()] == ["read"]


@pytest.mark.asyncio
async def test_aggregate_failure_marks_every_server_and_raises():
    manager, created = _manager(start_error=RuntimeError("handshake refused"))

    with pytest.raises(ToolServerConnectionError) as excinfo:
        await manager.connect([_stdio("a"), _stdio("b")])

    assert excinfo.value.server_ids == ["a", "b"]
    states = manager.get_server_states()
    assert {s.status for s in states.values()} == {"error"}
    assert states["a"].error == "handshake refused"
    assert manager.get_tools() == []
    assert manager.is_connected() is False
    assert created[0].closed is True


@pytest.mark.asyncio
async def test_connection_error_is_reraised_unchanged():
    original = ToolServerConnectionError("Failed to connect to tool servers: a: boom", server_ids=["a"])
    manager, _ = _manager(start_error=original)

    with pytest.raises(ToolServerConnectionError) as excinfo:
        await manager.connect([_stdio("a"), _stdio("b")])

    assert excinfo.value is original
    assert manager.get_server_state("b").status == "error"


@pytest.mark.asyncio
async def test_empty_server_list_is_a_no_op():
    manager, created = _manager()

    await manager.connect([])

    assert created == []
    assert manager.get_server_states() == {}
    assert manager.is_connected() is False


@pytest.mark.asyncio
async def test_disconnect_marks_servers_and_closes_client():
    manager, created = _manager(tools_by_server={"a": [_tool("read", "a")]})
    await manager.connect([_stdio("a")])

    await manager.disconnect()

    assert manager.get_server_states() == {"a": ServerConnectionState("disconnected")}
    assert manager.get_tools() == []
    assert manager.is_connected() is False
    assert created[0].closed is True


@pytest.mark.asyncio
async def test_reconnect_replaces_previous_state():
    manager, created = _manager(tools_by_server={"a": [], "b": []})
    await manager.connect([_stdio("a")])
    await manager.connect([_stdio("b")])

    assert list(manager.get_server_states()) == ["b"]
    assert created[0].closed is True


@pytest.mark.asyncio
async def test_reads_return_copies():
    manager, _ = _manager(tools_by_server={"a": [_tool("read", "a")]})
    await manager.connect([_stdio("a")])

    manager.get_tools().clear()
    manager.get_server_states().clear()

    assert len(manager.get_tools()) == 1
    assert "a" in manager.get_server_states()


class _FakeConnection:
    def __init__(self, config, open_error=None, tools=None, list_error=None):
        self.config = config
        self.open_error = open_error
        self.tools = tools or []
        self.list_error = list_error
        self.closed = False

    @property
    def server_id(self):
        return self.config.id

    async def open(self, timeout):
        if self.open_error is not None:
            raise self.open_error

    async def list_tools(self):
        if self.list_error is not None:
            raise self.list_error
        return self.tools

    async def close(self):
        self.closed = True


def _client_with(*connections):
    client = MultiServerMCPClient([])
    client.connections = {c.server_id: c for c in connections}
    return client


@pytest.mark.asyncio
async def test_client_start_closes_everything_when_one_server_fails():
    good = _FakeConnection(_stdio("good"))
    bad = _FakeConnection(
        HttpServerConfig(id="bad", name="remote", url="https://mcp.example.com"),
        open_error=ConnectionError("refused"),
    )
    client = _client_with(good, bad)

    with pytest.raises(ToolServerConnectionError) as excinfo:
        await client.start()

    assert excinfo.value.server_ids == ["bad"]
    assert "remote: refused" in str(excinfo.value)
    assert good.closed is True
    assert bad.closed is True


@pytest.mark.asyncio
async def test_client_lists_tools_per_server():
    ok = _FakeConnection(_stdio("ok"), tools=[_tool("read", "ok")])
    broken = _FakeConnection(_stdio("broken"), list_error=RuntimeError("listing failed"))
    client = _client_with(ok, broken)

    tools = await client.get_tools_by_server()

    assert [t.name for t in tools["ok"]] == ["read"]
    assert tools["broken"] is None


def test_describe_error_unwraps_groups_and_timeouts():
    group = ExceptionGroup("unhandled errors in a TaskGroup", [RuntimeError("first"), ValueError("second")])
    assert describe_error(group) == "first; second"
    assert describe_error(TimeoutError(), 30.0) == "timed out after 30s"
    assert describe_error(RuntimeError()) == "RuntimeError"
