"""Provider-agnostic message and tool types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class FunctionCall:
    """Represents a tool/function call from the model."""

    name: str
    arguments: Dict[str, Any]
    id: Optional[str] = None


@dataclass
class FunctionResponse:
    """Represents a tool/function result sent back to the model."""

    name: str
    content: str
    call_id: Optional[str] = None
    is_error: bool = False


@dataclass
class ChatPart:
    """A part of a chat message: text, tool call, or tool result."""

    text: Optional[str] = None
    function_call: Optional[FunctionCall] = None
    function_response: Optional[FunctionResponse] = None

    @classmethod
    def from_text(cls, text: str) -> "ChatPart":
        return cls(text=text)

    @classmethod
    def from_function_call(cls, call: FunctionCall) -> "ChatPart":
        return cls(function_call=call)

    @classmethod
    def from_function_response(cls, response: FunctionResponse) -> "ChatPart":
        return cls(function_response=response)


@dataclass
class ChatMessage:
    """Provider-agnostic chat message."""

    role: str  # "user" | "assistant" | "tool"
    parts: List[ChatPart] = field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "ChatMessage":
        return cls(role="user", parts=[ChatPart.from_text(text)])

    @classmethod
    def assistant(cls, text: str, calls: Optional[List[FunctionCall]] = None) -> "ChatMessage":
        parts = [ChatPart.from_text(text)] if text else []
        parts.extend(ChatPart.from_function_call(c) for c in calls or [])
        return cls(role="assistant", parts=parts)

    @classmethod
    def tool_results(cls, responses: List[FunctionResponse]) -> "ChatMessage":
        return cls(role="tool", parts=[ChatPart.from_function_response(r) for r in responses])

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if p.text)


@dataclass
class ToolSchema:
    """Tool schema in JSON Schema format."""

    name: str
    description: str
    parameters: Dict[str, Any]


@dataclass
class GenerationConfig:
    """Common generation settings passed to providers."""

    system_prompt: str = ""
    max_tokens: int = 4096
    temperature: Optional[float] = None


@dataclass
class StreamDelta:
    """Single chunk from a streaming response."""

    text: Optional[str] = None
    function_call_start: Optional[FunctionCall] = None
    function_call_delta: Optional[str] = None
    function_call_id: Optional[str] = None
    function_call_index: Optional[int] = None
    function_call_end: bool = False
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, int]] = None


@dataclass
class LLMResponse:
    """Normalized response from a provider."""

    text: str = ""
    function_calls: List[FunctionCall] = field(default_factory=list)
    usage: Optional[Dict[str, int]] = None
    raw: Any = None
