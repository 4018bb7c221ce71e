"""Tool-calling agent loop that reports progress as a stream of steps."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..observability import AgentObserver
from ..providers.base import ChatProvider
from ..providers.types import (
    ChatMessage,
    FunctionCall,
    FunctionResponse,
    GenerationConfig,
    LLMResponse,
    StreamDelta,
    ToolSchema,
)
from .messages import MODEL_NODE, TOOLS_NODE, AIMessage, HumanMessage, ToolCallRequest, ToolMessage
from .retry import RetryConfig, retry_with_backoff
from .transcript import Message

logger = logging.getLogger(__name__)


HistoryItem = Union[Message, Mapping[str, Any], HumanMessage, AIMessage]


@dataclass
class EngineResult:
    """Outcome of a non-streaming run."""

    output: str
    messages: List[Union[AIMessage, ToolMessage]] = field(default_factory=list)
    steps: int = 0


class AgentEngine:
    """Provider-agnostic agent loop over a fixed tool set.

    Each model turn may request tools; their results are fed back until the
    model answers without tool calls or ``max_steps`` turns have run.
    """

    def __init__(
        self,
        provider: ChatProvider,
        tools: Sequence[Any] = (),
        generation_config: Optional[GenerationConfig] = None,
        max_steps: int = 25,
        retry_config: Optional[RetryConfig] = None,
        observer: Optional[AgentObserver] = None,
    ):
        self.provider = provider
        self.generation_config = generation_config or GenerationConfig()
        self.max_steps = max_steps
        self.retry_config = retry_config or RetryConfig()
        self.observer = observer or AgentObserver()

        # Tools registry: name -> tool; the first server listing a name wins
        self._tools: Dict[str, Any] = {}
        for tool in tools:
            if tool.name in self._tools:
                logger.warning("Duplicate tool name %s; keeping the first registration", tool.name)
                continue
            self._tools[tool.name] = tool

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    def _tool_schemas(self) -> Optional[List[ToolSchema]]:
        if not self._tools:
            return None
        return [tool.schema() for tool in self._tools.values()]

    async def stream(self, history: Sequence[HistoryItem]) -> AsyncIterator[Dict[str, Any]]:
        """Run the loop, yielding ``{node: {"messages": [...]}}`` steps.

        ``model_request`` steps carry an AIMessage whose content is the
        cumulative text of the current turn; the last one of a turn carries
        its tool calls. ``tools`` steps carry one ToolMessage per call.
        """
        config, messages = self._prepare(history)

        for step in range(1, self.max_steps + 1):
            self.observer.log_step_start(step)
            step_started = time.time()
            turn = _StreamTurn(cumulative=getattr(self.provider, "emits_cumulative_deltas", False))

            async for delta in self.provider.generate_stream(
                messages=list(messages),
                tools=self._tool_schemas(),
                config=config,
            ):
                if turn.feed(delta):
                    yield {MODEL_NODE: {"messages": [AIMessage(content=turn.text, id=turn.message_id)]}}

            response = turn.finish()
            self._log_llm(step, step_started, response)
            calls = response.function_calls
            if response.text or calls:
                yield {MODEL_NODE: {"messages": [self._to_ai_message(response, turn.message_id)]}}

            messages.append(ChatMessage.assistant(response.text, calls))
            if not calls:
                self.observer.log_step_end(step, (time.time() - step_started) * 1000)
                return

            tool_messages = await self._execute_tools(calls)
            messages.append(ChatMessage.tool_results([_to_function_response(m) for m in tool_messages]))
            yield {TOOLS_NODE: {"messages": tool_messages}}
            self.observer.log_step_end(step, (time.time() - step_started) * 1000)

        logger.warning("Agent stopped after reaching max_steps=%d", self.max_steps)

    async def invoke(self, history: Sequence[HistoryItem]) -> EngineResult:
        """Run the loop to completion without streaming."""
        config, messages = self._prepare(history)
        produced: List[Union[AIMessage, ToolMessage]] = []
        output = ""

        for step in range(1, self.max_steps + 1):
            self.observer.log_step_start(step)
            step_started = time.time()
            response = await self._call_llm(messages, config)
            _assign_call_ids(response.function_calls)
            self._log_llm(step, step_started, response)

            ai_message = self._to_ai_message(response)
            produced.append(ai_message)
            messages.append(ChatMessage.assistant(response.text, response.function_calls))
            if response.text:
                output = response.text

            if not response.function_calls:
                self.observer.log_step_end(step, (time.time() - step_started) * 1000)
                return EngineResult(output=output, messages=produced, steps=step)

            tool_messages = await self._execute_tools(response.function_calls)
            produced.extend(tool_messages)
            messages.append(ChatMessage.tool_results([_to_function_response(m) for m in tool_messages]))
            self.observer.log_step_end(step, (time.time() - step_started) * 1000)

        logger.warning("Agent stopped after reaching max_steps=%d", self.max_steps)
        return EngineResult(output=output, messages=produced, steps=self.max_steps)

    async def _call_llm(self, messages: List[ChatMessage], config: GenerationConfig) -> LLMResponse:
        """Call the model with retry logic."""

        async def make_request() -> LLMResponse:
            return await self.provider.generate(messages=list(messages), tools=self._tool_schemas(), config=config)

        return await retry_with_backoff(make_request, self.retry_config)

    async def _execute_tools(self, calls: List[FunctionCall]) -> List[ToolMessage]:
        return list(await asyncio.gather(*(self._execute_tool(call) for call in calls)))

    async def _execute_tool(self, call: FunctionCall) -> ToolMessage:
        """Execute a single tool call. Failures become error ToolMessages."""
        started = time.time()
        args = dict(call.arguments or {})
        tool = self._tools.get(call.name)

        if tool is None:
            content = f"Error: Unknown tool '{call.name}'"
            success = False
            self.observer.log_error("unknown_tool", f"Tool '{call.name}' not found", {"tool": call.name})
        else:
            try:
                content = await tool.call(args)
                success = True
            except Exception as e:
                content = str(e) or type(e).__name__
                success = False
                self.observer.log_error("tool_execution", content, {"tool": call.name, "args": args})

        self.observer.log_tool_call(call.name, args, content, (time.time() - started) * 1000, success=success)
        return ToolMessage(
            content=content,
            tool_call_id=call.id or "",
            name=call.name,
            status="success" if success else "error",
        )

    def _prepare(self, history: Sequence[HistoryItem]) -> Tuple[GenerationConfig, List[ChatMessage]]:
        system_parts, messages = to_chat_messages(history)
        config = self.generation_config
        if system_parts:
            prompt = "\n\n".join(p for p in [config.system_prompt, *system_parts] if p)
            config = replace(config, system_prompt=prompt)
        return config, messages

    def _to_ai_message(self, response: LLMResponse, message_id: Optional[str] = None) -> AIMessage:
        message = AIMessage(
            content=response.text,
            tool_calls=[ToolCallRequest(name=c.name, args=dict(c.arguments or {}), id=c.id) for c in response.function_calls],
        )
        if message_id:
            message.id = message_id
        return message

    def _log_llm(self, step: int, started: float, response: LLMResponse) -> None:
        usage = response.usage or {}
        tokens = usage.get("total_tokens")
        self.observer.log_llm_request(
            model=getattr(self.provider, "model", "unknown"),
            step=step,
            duration_ms=(time.time() - started) * 1000,
            tokens=int(tokens) if tokens is not None else None,
        )
        self.observer.log_llm_response(
            step=step,
            text=response.text,
            tool_calls=[{"name": c.name, "arguments": c.arguments, "id": c.id} for c in response.function_calls],
        )


class _StreamTurn:
    """Aggregates provider deltas of one model turn into a response."""

    def __init__(self, cumulative: bool = False) -> None:
        self.cumulative = cumulative
        self.message_id = f"ai-{uuid.uuid4().hex}"
        self.text = ""
        self.usage: Optional[Dict[str, int]] = None
        self._calls: Dict[str, FunctionCall] = {}
        self._order: List[str] = []
        self._arg_buffers: Dict[str, str] = {}
        self._last_key: Optional[str] = None

    def feed(self, delta: StreamDelta) -> bool:
        """Apply one delta. Returns True when the visible text grew."""
        text_changed = False
        if delta.text:
            normalized = self._increment(self.text, delta.text)
            if normalized:
                self.text += normalized
                text_changed = True

        if delta.function_call_start:
            key = self._key_for(delta, delta.function_call_start.id)
            existing = self._calls.get(key)
            if existing is None:
                self._calls[key] = FunctionCall(
                    name=delta.function_call_start.name,
                    arguments={},
                    id=delta.function_call_start.id or delta.function_call_id,
                )
                self._order.append(key)
            elif not existing.name:
                existing.name = delta.function_call_start.name
            self._arg_buffers.setdefault(key, "")
            self._last_key = key

        if delta.function_call_delta:
            key = self._key_for(delta, None, fallback=self._last_key)
            if key not in self._calls:
                self._calls[key] = FunctionCall(name="", arguments={}, id=delta.function_call_id)
                self._order.append(key)
            prior = self._arg_buffers.get(key, "")
            self._arg_buffers[key] = prior + self._increment(prior, delta.function_call_delta)
            self._last_key = key

        if delta.usage:
            self.usage = {**(self.usage or {}), **delta.usage}
        return text_changed

    def finish(self) -> LLMResponse:
        calls: List[FunctionCall] = []
        for key in self._order:
            call = self._calls[key]
            buffer = self._arg_buffers.get(key, "")
            if buffer:
                try:
                    parsed = json.loads(buffer)
                except ValueError:
                    logger.warning("Discarding unparseable arguments for tool %s", call.name)
                    parsed = {}
                call.arguments = parsed if isinstance(parsed, dict) else {}
            calls.append(call)
        _assign_call_ids(calls)
        return LLMResponse(text=self.text, function_calls=calls, usage=self.usage)

    def _increment(self, accumulated: str, incoming: str) -> str:
        if self.cumulative:
            return normalize_stream_text_delta(accumulated, incoming)
        return incoming

    def _key_for(self, delta: StreamDelta, call_id: Optional[str], fallback: Optional[str] = None) -> str:
        if call_id or delta.function_call_id:
            return f"id:{call_id or delta.function_call_id}"
        if delta.function_call_index is not None:
            return f"idx:{delta.function_call_index}"
        return fallback or f"stream:{len(self._order)}"


def normalize_stream_text_delta(accumulated_text: str, incoming_text: str) -> str:
    """Normalize deltas from providers that send the full text-so-far.

    Returns only the part of ``incoming_text`` not already accumulated.
    """
    if not incoming_text:
        return ""
    if not accumulated_text:
        return incoming_text
    if incoming_text.startswith(accumulated_text):
        return incoming_text[len(accumulated_text) :]
    if accumulated_text.endswith(incoming_text):
        return ""

    overlap_max = min(len(accumulated_text), len(incoming_text))
    for size in range(overlap_max, 0, -1):
        if accumulated_text.endswith(incoming_text[:size]):
            return incoming_text[size:]
    return incoming_text


def to_chat_messages(history: Sequence[HistoryItem]) -> Tuple[List[str], List[ChatMessage]]:
    """Split caller history into extra system prompt text and chat messages."""
    system_parts: List[str] = []
    messages: List[ChatMessage] = []
    for item in history:
        role, content = _role_and_content(item)
        if role == "system":
            if content:
                system_parts.append(content)
        elif role == "assistant":
            if content:
                messages.append(ChatMessage.assistant(content))
        else:
            messages.append(ChatMessage.user(content))
    return system_parts, messages


def _role_and_content(item: HistoryItem) -> Tuple[str, str]:
    if isinstance(item, Message):
        return item.role, item.text
    if isinstance(item, HumanMessage):
        return "user", item.content
    if isinstance(item, AIMessage):
        return "assistant", item.content
    if isinstance(item, Mapping):
        return str(item.get("role", "user")), str(item.get("content") or "")
    raise TypeError(f"Unsupported history item: {type(item).__name__}")


def _assign_call_ids(calls: List[FunctionCall]) -> None:
    for call in calls:
        if not call.id:
            call.id = f"call_{uuid.uuid4().hex}"


def _to_function_response(message: ToolMessage) -> FunctionResponse:
    return FunctionResponse(
        name=message.name,
        content=message.content,
        call_id=message.tool_call_id or None,
        is_error=message.status == "error",
    )
