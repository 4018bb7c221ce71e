"""Provider protocol definition."""

from __future__ import annotations

from typing import AsyncIterator, List, Optional, Protocol

from .types import ChatMessage, GenerationConfig, LLMResponse, StreamDelta, ToolSchema


class ChatProvider(Protocol):
    """Protocol for provider implementations."""

    model: str

    async def generate(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> LLMResponse: ...

    def generate_stream(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[ToolSchema]],
        config: GenerationConfig,
    ) -> AsyncIterator[StreamDelta]: ...
