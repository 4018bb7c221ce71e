"""Agent session: lazy initialization, tool servers, provider, and runs."""

from __future__ import annotations

import asyncio
import enum
import functools
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional, Sequence

from dotenv import load_dotenv

from ..config.providers import ProviderConfig, ProviderConfigService
from ..config.resolver import ProviderResolver
from ..config.settings import AgentSettings, build_system_prompt, load_settings
from ..config.tool_servers import ToolServerConfigService
from ..mcp.manager import ServerConnectionState, ToolServerConnectionManager
from ..observability import AgentObserver, configure_logging
from ..providers import create_model, generation_config_for
from ..providers.base import ChatProvider
from .engine import AgentEngine, EngineResult, HistoryItem
from .events import StreamCallbacks, StreamEvent
from .reducer import reduce_stream

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


class AgentSession:
    """Owns the engine and its tool-server connections.

    ``initialize`` runs at most once at a time; concurrent callers await the
    same in-flight attempt. Runs and ``reinitialize`` are serialized so the
    engine is never swapped under an active run.
    """

    def __init__(
        self,
        providers: Optional[ProviderConfigService] = None,
        tool_servers: Optional[ToolServerConfigService] = None,
        connections: Optional[ToolServerConnectionManager] = None,
        resolver: Optional[ProviderResolver] = None,
        settings: Optional[AgentSettings] = None,
        model_factory: Callable[[ProviderConfig], ChatProvider] = create_model,
        observer: Optional[AgentObserver] = None,
        workdir: Optional[Path] = None,
    ):
        self.settings = settings or AgentSettings()
        self.providers = providers or ProviderConfigService()
        self.tool_servers = tool_servers or ToolServerConfigService()
        self.resolver = resolver or ProviderResolver(self.providers)
        self.connections = connections or ToolServerConnectionManager(timeout=self.settings.tool_server_timeout)
        self.observer = observer or AgentObserver()
        self._model_factory = model_factory
        self.workdir = workdir

        self._state = SessionState.UNINITIALIZED
        self._engine: Optional[AgentEngine] = None
        self._init_task: Optional[asyncio.Task] = None
        self._run_lock = asyncio.Lock()

        self.provider_config: Optional[ProviderConfig] = None
        self.last_error: Optional[BaseException] = None
        self.last_tool_server_error: Optional[Exception] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def engine(self) -> Optional[AgentEngine]:
        return self._engine

    async def initialize(self) -> None:
        """Connect tool servers, resolve the provider and build the engine.

        Raises:
            ConfigurationError: If no provider is configured.
            ProviderUnsupportedError: If the provider cannot be instantiated.
        """
        if self._state is SessionState.READY:
            return
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._do_initialize())
        task = self._init_task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._init_task is task:
                self._init_task = None

    async def _do_initialize(self) -> None:
        self._state = SessionState.INITIALIZING
        self.last_error = None
        self.last_tool_server_error = None
        try:
            try:
                await self.connections.connect(self.tool_servers.get_enabled_servers())
            except Exception as e:
                # The agent still works without tools.
                logger.warning("Failed to connect to tool servers, continuing without tools: %s", e)
                self.last_tool_server_error = e

            provider_config = self.resolver.resolve()
            model = self._model_factory(provider_config)
            self._engine = AgentEngine(
                provider=model,
                tools=self.connections.get_tools(),
                generation_config=generation_config_for(
                    provider_config,
                    system_prompt=build_system_prompt(self.settings, self.workdir),
                    default_max_tokens=self.settings.max_tokens,
                ),
                max_steps=self.settings.max_steps,
                observer=self.observer,
            )
            self.provider_config = provider_config
        except BaseException as e:
            self._state = SessionState.ERROR
            self.last_error = e
            await self.connections.disconnect()
            raise

        self._state = SessionState.READY
        logger.info(
            "Agent session ready: %s/%s with %d tool(s)",
            provider_config.type,
            provider_config.model,
            len(self._engine.tool_names),
        )

    async def reinitialize(self) -> None:
        """Drop the engine and tool-server connections, then initialize again."""
        async with self._run_lock:
            pending = self._init_task
            if pending is not None:
                try:
                    await asyncio.shield(pending)
                except Exception as e:
                    logger.debug("Superseded initialization failed: %s", e)
            await self.connections.disconnect()
            self._engine = None
            self.provider_config = None
            self._state = SessionState.UNINITIALIZED
            await self.initialize()

    async def run(self, history: Sequence[HistoryItem]) -> EngineResult:
        async with self._run_lock:
            await self.initialize()
            return await self._require_engine().invoke(history)

    async def stream_events(self, history: Sequence[HistoryItem]) -> AsyncIterator[StreamEvent]:
        """Stream reduced events for one run.

        The session stays locked until the iterator is exhausted or closed.
        """
        async with self._run_lock:
            await self.initialize()
            engine = self._require_engine()
            events = reduce_stream(engine.stream(history))
            try:
                async for event in events:
                    yield event
            finally:
                await events.aclose()

    async def stream_run(self, history: Sequence[HistoryItem], callbacks: Optional[StreamCallbacks] = None) -> None:
        callbacks = callbacks or StreamCallbacks()
        events = self.stream_events(history)
        try:
            async for event in events:
                await callbacks.dispatch(event)
        finally:
            await events.aclose()

    def get_mcp_server_states(self) -> Dict[str, ServerConnectionState]:
        return self.connections.get_server_states()

    def is_mcp_connected(self) -> bool:
        return self.connections.is_connected()

    def get_stats(self) -> Dict[str, Any]:
        return self.observer.get_session_stats()

    async def aclose(self) -> None:
        async with self._run_lock:
            await self.connections.disconnect()
            self._engine = None
            self._state = SessionState.UNINITIALIZED

    def _require_engine(self) -> AgentEngine:
        if self._engine is None:
            raise RuntimeError("Agent not initialized")
        return self._engine


@functools.lru_cache(maxsize=None)
def get_agent_session() -> AgentSession:
    """The process-wide session, built from the config home on first use.

    Variables from a local `.env` file are loaded first; existing environment
    values take precedence.
    """
    load_dotenv()
    settings = load_settings()
    configure_logging(settings.verbose)
    return AgentSession(settings=settings)
