"""Anthropic Messages API provider (Anthropic itself and compatible endpoints)."""

from __future__ import annotations

import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from anthropic import AsyncAnthropic

from .types import (
    ChatMessage,
    FunctionCall,
    GenerationConfig,
    LLMResponse,
    StreamDelta,
    ToolSchema,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


class AnthropicProvider:
    """Provider for the Anthropic Messages API."""

    emits_cumulative_deltas = False

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: str = "",
        client: Optional[AsyncAnthropic] = None,
    ) -> None:
        self.model = model
        self.api_base = api_base or ""
        self.client = client or AsyncAnthropic(api_key=api_key, base_url=api_base or None)

    async def generate(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> LLMResponse:
        kwargs = self._build_kwargs(messages, tools, config)
        response = await self.client.messages.create(**kwargs)
        return self._from_anthropic_message(response)

    async def generate_stream(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> AsyncIterator[StreamDelta]:
        kwargs = self._build_kwargs(messages, tools, config)
        kwargs["stream"] = True
        stream = await self.client.messages.create(**kwargs)
        call_ids_by_index: Dict[int, str] = {}

        async for event in stream:
            for delta in self._iter_stream_deltas(event, call_ids_by_index):
                yield delta

    def _build_kwargs(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": self._to_anthropic_messages(messages),
            "max_tokens": config.max_tokens if config.max_tokens and config.max_tokens > 0 else DEFAULT_MAX_TOKENS,
        }
        if config.system_prompt:
            kwargs["system"] = config.system_prompt
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        converted_tools = self._to_anthropic_tools(tools)
        if converted_tools:
            kwargs["tools"] = converted_tools
        return kwargs

    def _to_anthropic_messages(self, messages: List[ChatMessage]) -> List[Dict[str, Any]]:
        result: List[Dict[str, Any]] = []
        pending_ids: Dict[str, List[str]] = {}

        for msg in messages:
            if msg.role == "tool":
                blocks = []
                for part in msg.parts:
                    response = part.function_response
                    if not response:
                        continue
                    call_id = response.call_id
                    if not call_id and pending_ids.get(response.name):
                        call_id = pending_ids[response.name].pop(0)
                    blocks.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": call_id or f"toolu_{uuid.uuid4().hex}",
                            "content": response.content,
                            "is_error": response.is_error,
                        }
                    )
                if blocks:
                    result.append({"role": "user", "content": blocks})
                continue

            if msg.role != "assistant":
                result.append({"role": "user", "content": msg.text})
                continue

            content: List[Dict[str, Any]] = []
            if msg.text:
                content.append({"type": "text", "text": msg.text})
            for part in msg.parts:
                call = part.function_call
                if not call:
                    continue
                call.id = call.id or f"toolu_{uuid.uuid4().hex}"
                pending_ids.setdefault(call.name, []).append(call.id)
                content.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments or {}})
            if content:
                result.append({"role": "assistant", "content": content})

        return result

    def _to_anthropic_tools(self, tools: Optional[List[ToolSchema]]) -> Optional[List[Dict[str, Any]]]:
        if not tools:
            return None
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters or {"type": "object", "properties": {}},
            }
            for tool in tools
        ]

    def _from_anthropic_message(self, response: Any) -> LLMResponse:
        text_chunks: List[str] = []
        function_calls: List[FunctionCall] = []
        for block in getattr(response, "content", None) or []:
            block_type = getattr(block, "type", "")
            if block_type == "text":
                text_chunks.append(getattr(block, "text", "") or "")
            elif block_type == "tool_use":
                function_calls.append(
                    FunctionCall(
                        name=getattr(block, "name", "") or "",
                        arguments=dict(getattr(block, "input", None) or {}),
                        id=getattr(block, "id", None),
                    )
                )

        usage = None
        usage_data = getattr(response, "usage", None)
        if usage_data:
            prompt = int(getattr(usage_data, "input_tokens", 0) or 0)
            completion = int(getattr(usage_data, "output_tokens", 0) or 0)
            usage = {"prompt_tokens": prompt, "completion_tokens": completion, "total_tokens": prompt + completion}

        return LLMResponse(text="".join(text_chunks), function_calls=function_calls, usage=usage, raw=response)

    def _iter_stream_deltas(self, event: Any, call_ids_by_index: Dict[int, str]) -> List[StreamDelta]:
        event_type = getattr(event, "type", None)
        index = getattr(event, "index", None)

        if event_type == "content_block_start":
            block = getattr(event, "content_block", None)
            if getattr(block, "type", None) != "tool_use":
                return []
            call_id = getattr(block, "id", None)
            if isinstance(index, int) and call_id:
                call_ids_by_index[index] = call_id
            return [
                StreamDelta(
                    function_call_start=FunctionCall(name=getattr(block, "name", "") or "", arguments={}, id=call_id),
                    function_call_id=call_id,
                    function_call_index=index,
                )
            ]

        if event_type == "content_block_delta":
            delta = getattr(event, "delta", None)
            delta_type = getattr(delta, "type", None)
            if delta_type == "text_delta":
                text = getattr(delta, "text", "") or ""
                return [StreamDelta(text=text)] if text else []
            if delta_type == "input_json_delta":
                partial = getattr(delta, "partial_json", "") or ""
                if not partial:
                    return []
                return [
                    StreamDelta(
                        function_call_delta=partial,
                        function_call_id=call_ids_by_index.get(index) if isinstance(index, int) else None,
                        function_call_index=index,
                    )
                ]
            return []

        if event_type == "message_delta":
            stop_reason = getattr(getattr(event, "delta", None), "stop_reason", None)
            usage_data = getattr(event, "usage", None)
            usage = None
            if usage_data is not None:
                output_tokens = int(getattr(usage_data, "output_tokens", 0) or 0)
                usage = {"completion_tokens": output_tokens, "total_tokens": output_tokens}
            if stop_reason or usage:
                return [
                    StreamDelta(
                        function_call_end=stop_reason == "tool_use",
                        finish_reason=stop_reason,
                        usage=usage,
                    )
                ]
        return []
