"""Reduces engine steps into ordered text and tool-call lifecycle events."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any, AsyncIterator, Iterable, List, Optional, Set

from ..errors import StreamProtocolError
from .events import StreamEvent, TextDelta, ToolCallRecord, ToolCompleted, ToolFailed, ToolStarted, now_ms
from .messages import MODEL_NODE

logger = logging.getLogger(__name__)

_MISSING = object()


class EventStreamReducer:
    """Stateful reducer for one agent invocation.

    Guarantees per call id: at most one ToolStarted, and at most one
    terminal event which only follows a ToolStarted. Concatenating every
    TextDelta of a model turn reproduces that turn's final text.
    """

    def __init__(self) -> None:
        self._pending: Set[str] = set()
        self._last_content = ""

    @property
    def pending(self) -> Set[str]:
        return set(self._pending)

    def drain_pending(self) -> List[str]:
        """Forget and return every call still awaiting a result."""
        pending = sorted(self._pending)
        self._pending.clear()
        return pending

    def reduce(self, step: Any) -> List[StreamEvent]:
        """Events for one ``{node name: node output}`` step. Malformed parts are skipped."""
        events: List[StreamEvent] = []
        try:
            items = self._items_of(step)
        except StreamProtocolError as e:
            logger.debug("Skipping unrecognized step: %s", e)
            return events

        for node_name, output in items:
            try:
                messages = self._messages_of(node_name, output)
            except StreamProtocolError as e:
                logger.debug("Skipping output of node %s: %s", node_name, e)
                continue
            for message in messages:
                try:
                    events.extend(self._reduce_message(node_name, message))
                except StreamProtocolError as e:
                    logger.debug("Skipping message from node %s: %s", node_name, e)
        return events

    def _items_of(self, step: Any) -> Iterable:
        if not isinstance(step, Mapping):
            raise StreamProtocolError(f"step is {type(step).__name__}, expected a mapping")
        return list(step.items())

    def _messages_of(self, node_name: str, output: Any) -> List[Any]:
        if output is None:
            return []
        if not isinstance(output, Mapping):
            raise StreamProtocolError(f"output is {type(output).__name__}, expected a mapping")
        messages = output.get("messages")
        if messages is None:
            return []
        if not isinstance(messages, (list, tuple)):
            raise StreamProtocolError(f"messages is {type(messages).__name__}, expected a list")
        return list(messages)

    def _reduce_message(self, node_name: str, message: Any) -> List[StreamEvent]:
        if not isinstance(message, Mapping) and not hasattr(message, "content"):
            raise StreamProtocolError(f"{type(message).__name__} is not a message")

        tool_call_id = _field(message, "tool_call_id")
        if tool_call_id:
            return self._reduce_tool_result(message, str(tool_call_id))

        if node_name != MODEL_NODE:
            return []

        events: List[StreamEvent] = []
        content = _field(message, "content")
        if isinstance(content, str) and content:
            delta = self._text_delta(content)
            if delta:
                events.append(TextDelta(delta))

        tool_calls = _field(message, "tool_calls") or []
        if not isinstance(tool_calls, (list, tuple)):
            raise StreamProtocolError("tool_calls is not a list")
        for tool_call in tool_calls:
            started = self._start_tool_call(tool_call)
            if started is not None:
                events.append(started)
        return events

    def _reduce_tool_result(self, message: Any, tool_call_id: str) -> List[StreamEvent]:
        # Results for calls this invocation never started are ignored.
        if tool_call_id not in self._pending:
            return []
        self._pending.discard(tool_call_id)
        content = _stringify(_field(message, "content"))
        if _field(message, "status") == "error":
            return [ToolFailed(tool_call_id, content)]
        return [ToolCompleted(tool_call_id, content)]

    def _text_delta(self, content: str) -> str:
        last = self._last_content
        self._last_content = content
        if content == last:
            return ""
        if content.startswith(last):
            return content[len(last) :]
        return content

    def _start_tool_call(self, tool_call: Any) -> Optional[ToolStarted]:
        call_id = _field(tool_call, "id") or str(uuid.uuid4())
        if call_id in self._pending:
            return None
        self._pending.add(call_id)
        args = _field(tool_call, "args")
        record = ToolCallRecord(
            id=call_id,
            name=str(_field(tool_call, "name") or "unknown"),
            status="running",
            start_time=now_ms(),
            input=_stringify(args if args is not None else {}),
        )
        return ToolStarted(record)


async def reduce_stream(steps: AsyncIterator[Any]) -> AsyncIterator[StreamEvent]:
    """Reduce an engine step stream with a fresh reducer.

    If the stream raises, every tool call still pending is reported as
    failed before the error propagates.
    """
    reducer = EventStreamReducer()
    try:
        async for step in steps:
            for event in reducer.reduce(step):
                yield event
    except Exception as e:
        message = str(e) or type(e).__name__
        for call_id in reducer.drain_pending():
            yield ToolFailed(call_id, message)
        raise


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    value = getattr(obj, name, _MISSING)
    return None if value is _MISSING else value


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)
