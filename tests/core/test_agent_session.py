"""Session lifecycle tests with fake providers and tool servers."""

import asyncio

import pytest

from code_agent_lite.config.providers import ProviderConfigService
from code_agent_lite.config.resolver import ProviderResolver
from code_agent_lite.config.settings import AgentSettings
from code_agent_lite.config.tool_servers import ToolServerConfigService
from code_agent_lite.core.events import StreamCallbacks, TextDelta, ToolCompleted, ToolStarted
from code_agent_lite.core.messages import HumanMessage
from code_agent_lite.core.session import AgentSession, SessionState
from code_agent_lite.errors import ConfigurationError, ToolServerConnectionError
from code_agent_lite.mcp.manager import ToolServerConnectionManager
from code_agent_lite.providers.types import FunctionCall, LLMResponse, StreamDelta, ToolSchema


class _ScriptedProvider:
    emits_cumulative_deltas = False

    def __init__(self, model, turns=None, responses=None):
        self.model = model
        self.turns = list(turns or [])
        self.responses = list(responses or [])

    async def generate(self, messages, tools, config):
        return self.responses.pop(0)

    async def generate_stream(self, messages, tools, config):
        for delta in self.turns.pop(0):
            yield delta


class _Tool:
    def __init__(self, name, result):
        self.name = name
        self.result = result

    def schema(self):
        return ToolSchema(name=self.name, description="", parameters={"type": "object"})

    async def call(self, arguments):
        return self.result


class _FakeClient:
    def __init__(self, servers, tools=None, start_error=None):
        self.servers = servers
        self.tools = tools or {}
        self.start_error = start_error
        self.closed = False

    async def start(self):
        await asyncio.sleep(0)
        if self.start_error is not None:
            raise self.start_error

    async def get_tools_by_server(self):
        return {s.id: self.tools.get(s.id, []) for s in self.servers}

    async def close(self):
        self.closed = True


class _Harness:
    def __init__(self, tools=None, start_error=None, environ=None, turns=None, responses=None, workdir=None):
        self.providers = ProviderConfigService()
        self.tool_servers = ToolServerConfigService()
        self.clients = []
        self.built = []
        self.turns = turns
        self.responses = responses

        def client_factory(servers):
            client = _FakeClient(servers, tools=tools, start_error=start_error)
            self.clients.append(client)
            return client

        def model_factory(config):
            provider = _ScriptedProvider(config.model, turns=self.turns, responses=self.responses)
            self.built.append(config)
            return provider

        self.session = AgentSession(
            providers=self.providers,
            tool_servers=self.tool_servers,
            connections=ToolServerConnectionManager(client_factory=client_factory),
            resolver=ProviderResolver(self.providers, environ=environ or {}),
            settings=AgentSettings(max_steps=5),
            model_factory=model_factory,
            workdir=workdir,
        )

    def add_provider(self, name="main", model="gpt-4o"):
        return self.providers.add_provider(
            {"name": name, "type": "openai", "model": model, "apiKey": "sk-test", "enabled": True}
        )

    def add_server(self, name="files"):
        return self.tool_servers.add_server({"name": name, "transport": "stdio", "command": "npx"})


@pytest.mark.asyncio
async def test_concurrent_initialize_runs_once():
    harness = _Harness()
    harness.add_provider()

    await asyncio.gather(*(harness.session.initialize() for _ in range(5)))

    assert harness.session.state is SessionState.READY
    assert len(harness.built) == 1


@pytest.mark.asyncio
async def test_initialize_is_a_no_op_when_ready():
    harness = _Harness()
    harness.add_provider()
    await harness.session.initialize()
    await harness.session.initialize()

    assert len(harness.built) == 1


@pytest.mark.asyncio
async def test_missing_provider_sets_error_and_can_retry():
    harness = _Harness()

    with pytest.raises(ConfigurationError) as excinfo:
        await harness.session.initialize()

    assert excinfo.value.setup_required is True
    assert harness.session.state is SessionState.ERROR
    assert harness.session.last_error is excinfo.value
    assert harness.session.engine is None

    harness.add_provider()
    await harness.session.initialize()
    assert harness.session.state is SessionState.READY


@pytest.mark.asyncio
async def test_environment_provider_is_used_when_nothing_persisted():
    harness = _Harness(environ={"ANTHROPIC_API_KEY": "sk-a"})
    await harness.session.initialize()

    assert harness.session.provider_config.id == "env-anthropic"


@pytest.mark.asyncio
async def test_tool_server_failure_does_not_block_initialization():
    harness = _Harness(start_error=RuntimeError("spawn failed"))
    harness.add_provider()
    server = harness.add_server()

    await harness.session.initialize()

    assert harness.session.state is SessionState.READY
    assert isinstance(harness.session.last_tool_server_error, ToolServerConnectionError)
    assert harness.session.get_mcp_server_states()[server.id].status == "error"
    assert harness.session.is_mcp_connected() is False
    assert harness.session.engine.tool_names == []


@pytest.mark.asyncio
async def test_connected_tools_reach_the_engine():
    harness = _Harness()
    harness.add_provider()
    server = harness.add_server()
    harness_tools = {server.id: [_Tool("ls", "a.py")]}
    harness.session.connections = ToolServerConnectionManager(
        client_factory=lambda servers: _FakeClient(servers, tools=harness_tools)
    )

    await harness.session.initialize()

    assert harness.session.engine.tool_names == ["ls"]
    assert harness.session.get_mcp_server_states()[server.id].tool_count == 1
    assert harness.session.is_mcp_connected() is True


@pytest.mark.asyncio
async def test_reinitialize_picks_up_new_default_and_closes_old_client():
    harness = _Harness()
    harness.add_provider("first", "gpt-4o")
    harness.add_server()
    await harness.session.initialize()

    second = harness.add_provider("second", "gpt-4o-mini")
    harness.providers.set_default_provider(second.id)
    await harness.session.reinitialize()

    assert harness.session.provider_config.model == "gpt-4o-mini"
    assert [c.closed for c in harness.clients] == [True, False]
    assert harness.session.state is SessionState.READY


@pytest.mark.asyncio
async def test_run_initializes_lazily():
    harness = _Harness(responses=[LLMResponse(text="hello there")])
    harness.add_provider()

    result = await harness.session.run([HumanMessage("hi")])

    assert result.output == "hello there"
    assert harness.session.get_stats()["llm_requests"] == 1


@pytest.mark.asyncio
async def test_stream_run_dispatches_callbacks_in_order():
    turns = [
        [
            StreamDelta(text="Checking"),
            StreamDelta(function_call_start=FunctionCall(name="ls", arguments={}, id="c1"), function_call_id="c1"),
            StreamDelta(function_call_delta="{}", function_call_id="c1"),
        ],
        [StreamDelta(text="Done")],
    ]
    harness = _Harness(turns=turns)
    harness.add_provider()
    server = harness.add_server()
    harness.session.connections = ToolServerConnectionManager(
        client_factory=lambda servers: _FakeClient(servers, tools={server.id: [_Tool("ls", "a.py")]})
    )
    seen = []

    async def on_complete(call_id, result):
        seen.append(("complete", call_id, result))

    callbacks = StreamCallbacks(
        on_text_chunk=lambda text: seen.append(("text", text)),
        on_tool_call_start=lambda record: seen.append(("start", record.id, record.name)),
        on_tool_call_complete=on_complete,
    )

    await harness.session.stream_run([HumanMessage("list")], callbacks)

    assert seen == [
        ("text", "Checking"),
        ("start", "c1", "ls"),
        ("complete", "c1", "a.py"),
        ("text", "Done"),
    ]


@pytest.mark.asyncio
async def test_stream_events_yields_reduced_events():
    harness = _Harness(turns=[[StreamDelta(text="A"), StreamDelta(text="B")]])
    harness.add_provider()

    events = [e async for e in harness.session.stream_events([{"role": "user", "content": "hi"}])]

    assert events == [TextDelta("A"), TextDelta("B")]


@pytest.mark.asyncio
async def test_runs_are_serialized():
    harness = _Harness(turns=[[StreamDelta(text="one")], [StreamDelta(text="two")]])
    harness.add_provider()
    order = []

    async def consume(label):
        async for event in harness.session.stream_events([HumanMessage(label)]):
            order.append((label, event.text))
            await asyncio.sleep(0)

    await asyncio.gather(consume("a"), consume("b"))

    assert [label for label, _ in order] == ["a", "b"]


@pytest.mark.asyncio
async def test_aclose_disconnects_servers():
    harness = _Harness()
    harness.add_provider()
    server = harness.add_server()
    await harness.session.initialize()

    await harness.session.aclose()

    assert harness.session.state is SessionState.UNINITIALIZED
    assert harness.session.get_mcp_server_states()[server.id].status == "disconnected"
    assert harness.clients[0].closed is True


def test_get_agent_session_is_cached(config_home):
    from code_agent_lite.core.session import get_agent_session

    get_agent_session.cache_clear()
    try:
        first = get_agent_session()
        assert get_agent_session() is first
        assert isinstance(first.settings, AgentSettings)
    finally:
        get_agent_session.cache_clear()


@pytest.mark.asyncio
async def test_project_memory_files_extend_system_prompt(tmp_path):
    (tmp_path / "AGENTS.md").write_text("Run make lint before committing.\n", encoding="utf-8")
    (tmp_path / "CLAUDE.md").write_text("   \n", encoding="utf-8")
    harness = _Harness(workdir=tmp_path)
    harness.add_provider()

    await harness.session.initialize()

    prompt = harness.session.engine.generation_config.system_prompt
    assert prompt.startswith(harness.session.settings.system_prompt)
    assert "# Project instructions (AGENTS.md)" in prompt
    assert "Run make lint before committing." in prompt
    assert "CLAUDE.md" not in prompt


@pytest.mark.asyncio
async def test_system_prompt_unchanged_without_memory_files(tmp_path):
    harness = _Harness(workdir=tmp_path)
    harness.add_provider()

    await harness.session.initialize()

    assert harness.session.engine.generation_config.system_prompt == harness.session.settings.system_prompt
