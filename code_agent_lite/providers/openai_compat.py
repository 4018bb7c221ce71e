"""OpenAI-compatible chat provider (OpenAI itself and custom endpoints)."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from .types import (
    ChatMessage,
    FunctionCall,
    GenerationConfig,
    LLMResponse,
    StreamDelta,
    ToolSchema,
)

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider:
    """Provider for OpenAI-compatible chat completion APIs."""

    # Text and argument deltas are increments, not snapshots.
    emits_cumulative_deltas = False

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: str = "",
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.api_base = api_base or ""
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=api_base or None)

    async def generate(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> LLMResponse:
        kwargs = self._build_chat_kwargs(
            messages=self._to_openai_messages(messages, config.system_prompt),
            tools=self._to_openai_tools(tools),
            config=config,
            stream=False,
        )
        completion = await self.client.chat.completions.create(**kwargs)
        return self._from_openai_completion(completion)

    async def generate_stream(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> AsyncIterator[StreamDelta]:
        kwargs = self._build_chat_kwargs(
            messages=self._to_openai_messages(messages, config.system_prompt),
            tools=self._to_openai_tools(tools),
            config=config,
            stream=True,
        )
        stream = await self.client.chat.completions.create(**kwargs)
        call_ids_by_index: Dict[int, str] = {}

        async for chunk in stream:
            for delta in self._iter_stream_deltas(chunk, call_ids_by_index):
                yield delta

    def _build_chat_kwargs(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        config: GenerationConfig,
        stream: bool,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": stream,
        }
        if config.max_tokens and config.max_tokens > 0:
            kwargs["max_tokens"] = config.max_tokens
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        return kwargs

    def _to_openai_messages(self, messages: List[ChatMessage], system_prompt: str) -> List[Dict[str, Any]]:
        result: List[Dict[str, Any]] = []
        if system_prompt:
            result.append({"role": "system", "content": system_prompt})

        # Tool results without an id are matched to the oldest open call of the same name.
        pending_ids: Dict[str, List[str]] = {}

        for msg in messages:
            if msg.role == "tool":
                for part in msg.parts:
                    response = part.function_response
                    if not response:
                        continue
                    call_id = response.call_id
                    if not call_id:
                        if pending_ids.get(response.name):
                            call_id = pending_ids[response.name].pop(0)
                        else:
                            call_id = f"tool_{uuid.uuid4().hex}"
                    result.append({"role": "tool", "tool_call_id": call_id, "content": response.content})
                continue

            role = "assistant" if msg.role == "assistant" else "user"
            message: Dict[str, Any] = {"role": role, "content": msg.text}

            tool_calls = []
            for part in msg.parts:
                call = part.function_call
                if not call:
                    continue
                call.id = call.id or f"tool_{uuid.uuid4().hex}"
                pending_ids.setdefault(call.name, []).append(call.id)
                tool_calls.append(
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments or {})},
                    }
                )
            if tool_calls:
                message["tool_calls"] = tool_calls
            result.append(message)

        return result

    def _to_openai_tools(self, tools: Optional[List[ToolSchema]]) -> Optional[List[Dict[str, Any]]]:
        if not tools:
            return None
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def _from_openai_completion(self, completion) -> LLMResponse:
        if not completion.choices:
            raise RuntimeError("Empty LLM response: no choices")

        message = completion.choices[0].message
        text = self._normalize_message_content(getattr(message, "content", ""))
        function_calls: List[FunctionCall] = []

        for call in getattr(message, "tool_calls", None) or []:
            function = getattr(call, "function", None)
            if function is None:
                continue
            function_calls.append(
                FunctionCall(
                    name=getattr(function, "name", "") or "",
                    arguments=self._safe_parse_args(getattr(function, "arguments", None)),
                    id=getattr(call, "id", None),
                )
            )

        usage_data = getattr(completion, "usage", None)
        usage = None
        if usage_data:
            usage = {
                "prompt_tokens": int(getattr(usage_data, "prompt_tokens", 0) or 0),
                "completion_tokens": int(getattr(usage_data, "completion_tokens", 0) or 0),
                "total_tokens": int(getattr(usage_data, "total_tokens", 0) or 0),
            }

        return LLMResponse(text=text, function_calls=function_calls, usage=usage, raw=completion)

    def _iter_stream_deltas(self, chunk: Any, call_ids_by_index: Dict[int, str]) -> List[StreamDelta]:
        deltas: List[StreamDelta] = []
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            return deltas

        choice = choices[0]
        delta = getattr(choice, "delta", None)
        if delta is None:
            return deltas

        content = self._normalize_message_content(getattr(delta, "content", None))
        if content:
            deltas.append(StreamDelta(text=content))

        for tool_call in getattr(delta, "tool_calls", None) or []:
            call_index = getattr(tool_call, "index", None)
            if not isinstance(call_index, int):
                call_index = None
            raw_id = getattr(tool_call, "id", None)
            if call_index is not None and raw_id:
                call_ids_by_index[call_index] = raw_id
            call_id = raw_id or (call_ids_by_index.get(call_index) if call_index is not None else None)

            function = getattr(tool_call, "function", None)
            function_name = getattr(function, "name", None) if function else None
            args_delta = getattr(function, "arguments", None) if function else None

            if function_name:
                deltas.append(
                    StreamDelta(
                        function_call_start=FunctionCall(name=function_name, arguments={}, id=call_id),
                        function_call_id=call_id,
                        function_call_index=call_index,
                    )
                )
            if args_delta:
                deltas.append(
                    StreamDelta(
                        function_call_delta=str(args_delta),
                        function_call_id=call_id,
                        function_call_index=call_index,
                    )
                )

        finish_reason = getattr(choice, "finish_reason", None)
        if finish_reason:
            deltas.append(StreamDelta(function_call_end=finish_reason == "tool_calls", finish_reason=finish_reason))
        return deltas

    def _normalize_message_content(self, content: Any) -> str:
        if content is None:
            return ""
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(self._extract_text_from_content_item(item) for item in content)
        return str(content)

    def _extract_text_from_content_item(self, item: Any) -> str:
        if item is None:
            return ""
        if isinstance(item, str):
            return item
        if isinstance(item, dict):
            return str(item.get("text", "") or "")
        return str(getattr(item, "text", "") or "")

    def _safe_parse_args(self, arguments: Any) -> Dict[str, Any]:
        if not arguments:
            return {}
        if isinstance(arguments, dict):
            return arguments
        try:
            parsed = json.loads(arguments)
        except ValueError:
            logger.warning("Discarding unparseable tool arguments: %r", arguments)
            return {}
        return parsed if isinstance(parsed, dict) else {}
