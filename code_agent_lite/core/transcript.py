"""Caller-owned conversation transcript and the builder that applies stream events to it."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from .events import (
    StreamCallbacks,
    StreamEvent,
    TextDelta,
    ToolCallRecord,
    ToolCompleted,
    ToolFailed,
    ToolStarted,
    now_ms,
)

Role = Literal["user", "assistant", "system"]


@dataclass
class TextPart:
    content: str
    type: Literal["text"] = "text"


@dataclass
class ToolCallPart:
    tool_call: ToolCallRecord
    type: Literal["tool_call"] = "tool_call"


MessagePart = Union[TextPart, ToolCallPart]


@dataclass
class Message:
    """One transcript entry, rendered from its ordered parts."""

    role: Role
    parts: List[MessagePart] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: int = field(default_factory=now_ms)
    is_streaming: bool = False

    @property
    def text(self) -> str:
        return text_content(self.parts)


def text_content(parts: List[MessagePart]) -> str:
    return "".join(part.content for part in parts if isinstance(part, TextPart))


class TranscriptBuilder:
    """Mutates a transcript list as a streamed run progresses.

    While a message streams, its parts are only appended to or have their
    last text part extended; tool-call records are updated in place.
    """

    def __init__(self, messages: Optional[List[Message]] = None):
        self.messages: List[Message] = messages if messages is not None else []
        self._current: Optional[Message] = None

    @property
    def current(self) -> Optional[Message]:
        return self._current

    def add_user_message(self, content: str) -> Message:
        message = Message(role="user", parts=[TextPart(content)])
        self.messages.append(message)
        return message

    def start_assistant_message(self) -> Message:
        message = Message(role="assistant", is_streaming=True)
        self.messages.append(message)
        self._current = message
        return message

    def append_text(self, chunk: str) -> None:
        parts = self._require_current().parts
        if parts and isinstance(parts[-1], TextPart):
            parts[-1].content += chunk
        else:
            parts.append(TextPart(chunk))

    def insert_tool_call(self, record: ToolCallRecord) -> None:
        self._require_current().parts.append(ToolCallPart(record))

    def update_tool_call(
        self,
        tool_call_id: str,
        status: Literal["running", "success", "error"],
        output: Optional[str] = None,
    ) -> Optional[ToolCallRecord]:
        for part in self._require_current().parts:
            if isinstance(part, ToolCallPart) and part.tool_call.id == tool_call_id:
                part.tool_call.status = status
                part.tool_call.end_time = now_ms()
                part.tool_call.output = output
                return part.tool_call
        return None

    def finish_streaming(self) -> Optional[Message]:
        message, self._current = self._current, None
        if message is not None:
            message.is_streaming = False
        return message

    def apply(self, event: StreamEvent) -> None:
        if isinstance(event, TextDelta):
            self.append_text(event.text)
        elif isinstance(event, ToolStarted):
            self.insert_tool_call(event.call)
        elif isinstance(event, ToolCompleted):
            self.update_tool_call(event.id, "success", event.result)
        elif isinstance(event, ToolFailed):
            self.update_tool_call(event.id, "error", event.error)

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_text_chunk=self.append_text,
            on_tool_call_start=self.insert_tool_call,
            on_tool_call_complete=lambda call_id, result: self.update_tool_call(call_id, "success", result),
            on_tool_call_error=lambda call_id, error: self.update_tool_call(call_id, "error", error),
        )

    def to_history(self, include_streaming: bool = False) -> List[Dict[str, str]]:
        """Role/content pairs for the next run. The streaming placeholder is skipped."""
        return [
            {"role": m.role, "content": m.text}
            for m in self.messages
            if include_streaming or not m.is_streaming
        ]

    def _require_current(self) -> Message:
        if self._current is None:
            raise RuntimeError("No assistant message is streaming; call start_assistant_message() first")
        return self._current


class TranscriptSerializer:
    """Converts transcripts to and from JSON-safe dicts."""

    @staticmethod
    def serialize_message(message: Message) -> Dict[str, Any]:
        return {
            "id": message.id,
            "role": message.role,
            "timestamp": message.timestamp,
            "is_streaming": message.is_streaming,
            "parts": [TranscriptSerializer._serialize_part(p) for p in message.parts],
        }

    @staticmethod
    def deserialize_message(data: Dict[str, Any]) -> Message:
        return Message(
            id=data["id"],
            role=data["role"],
            timestamp=int(data.get("timestamp", 0)),
            is_streaming=bool(data.get("is_streaming", False)),
            parts=[TranscriptSerializer._deserialize_part(p) for p in data.get("parts", [])],
        )

    @classmethod
    def dump(cls, messages: List[Message]) -> List[Dict[str, Any]]:
        return [cls.serialize_message(m) for m in messages]

    @classmethod
    def load(cls, data: List[Dict[str, Any]]) -> List[Message]:
        return [cls.deserialize_message(d) for d in data]

    @staticmethod
    def _serialize_part(part: MessagePart) -> Dict[str, Any]:
        if isinstance(part, ToolCallPart):
            return {"type": "tool_call", "tool_call": asdict(part.tool_call)}
        return {"type": "text", "content": part.content}

    @staticmethod
    def _deserialize_part(data: Dict[str, Any]) -> MessagePart:
        part_type = data.get("type")
        if part_type == "tool_call":
            return ToolCallPart(ToolCallRecord(**data["tool_call"]))
        if part_type == "text":
            return TextPart(data.get("content", ""))
        raise ValueError(f"Unknown message part type: {part_type!r}")
