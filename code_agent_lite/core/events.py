"""Events emitted while an agent run streams, and the callback adapter."""

from __future__ import annotations

import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional, Union


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ToolCallRecord:
    """Lifecycle of one tool call as shown in the transcript."""

    id: str
    name: str
    status: Literal["running", "success", "error"] = "running"
    start_time: int = field(default_factory=now_ms)
    end_time: Optional[int] = None
    input: Optional[str] = None
    output: Optional[str] = None


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolStarted:
    call: ToolCallRecord


@dataclass(frozen=True)
class ToolCompleted:
    id: str
    result: str


@dataclass(frozen=True)
class ToolFailed:
    id: str
    error: str


StreamEvent = Union[TextDelta, ToolStarted, ToolCompleted, ToolFailed]


@dataclass
class StreamCallbacks:
    """Optional per-event callbacks. Each may be a plain or a coroutine function."""

    on_text_chunk: Optional[Callable[[str], Any]] = None
    on_tool_call_start: Optional[Callable[[ToolCallRecord], Any]] = None
    on_tool_call_complete: Optional[Callable[[str, str], Any]] = None
    on_tool_call_error: Optional[Callable[[str, str], Any]] = None

    async def dispatch(self, event: StreamEvent) -> None:
        if isinstance(event, TextDelta):
            await _invoke(self.on_text_chunk, event.text)
        elif isinstance(event, ToolStarted):
            await _invoke(self.on_tool_call_start, event.call)
        elif isinstance(event, ToolCompleted):
            await _invoke(self.on_tool_call_complete, event.id, event.result)
        elif isinstance(event, ToolFailed):
            await _invoke(self.on_tool_call_error, event.id, event.error)


async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
