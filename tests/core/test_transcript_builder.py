"""Tests for the caller-side transcript builder."""

import json

import pytest

from code_agent_lite.core.events import TextDelta, ToolCallRecord, ToolCompleted, ToolFailed, ToolStarted
from code_agent_lite.core.transcript import (
    Message,
    TextPart,
    ToolCallPart,
    TranscriptBuilder,
    TranscriptSerializer,
)


def _record(call_id, name="ls"):
    return ToolCallRecord(id=call_id, name=name, start_time=1000, input="{}")


def test_events_build_interleaved_parts():
    builder = TranscriptBuilder()
    builder.add_user_message("list files")
    builder.start_assistant_message()

    for event in [
        TextDelta("Let me "),
        TextDelta("look."),
        ToolStarted(_record("c1")),
        ToolCompleted("c1", "a.py"),
        TextDelta("Found "),
        TextDelta("a.py"),
    ]:
        builder.apply(event)
    message = builder.finish_streaming()

    assert message.is_streaming is False
    assert [type(p) for p in message.parts] == [TextPart, ToolCallPart, TextPart]
    assert message.parts[0].content == "Let me look."
    assert message.parts[2].content == "Found a.py"
    call = message.parts[1].tool_call
    assert (call.status, call.output) == ("success", "a.py")
    assert call.end_time is not None
    assert message.text == "Let me look.Found a.py"


def test_failed_tool_call_is_marked_error():
    builder = TranscriptBuilder()
    builder.start_assistant_message()
    builder.apply(ToolStarted(_record("c1", "rm")))
    builder.apply(ToolFailed("c1", "permission denied"))

    call = builder.current.parts[0].tool_call
    assert (call.status, call.output) == ("error", "permission denied")


def test_update_unknown_call_returns_none():
    builder = TranscriptBuilder()
    builder.start_assistant_message()
    assert builder.update_tool_call("missing", "success", "x") is None


def test_appending_without_streaming_message_raises():
    builder = TranscriptBuilder()
    with pytest.raises(RuntimeError):
        builder.append_text("orphan")


@pytest.mark.asyncio
async def test_callbacks_drive_the_builder():
    builder = TranscriptBuilder()
    builder.start_assistant_message()
    callbacks = builder.callbacks()

    await callbacks.dispatch(TextDelta("hi"))
    await callbacks.dispatch(ToolStarted(_record("c1")))
    await callbacks.dispatch(ToolCompleted("c1", "done"))

    parts = builder.current.parts
    assert parts[0].content == "hi"
    assert parts[1].tool_call.status == "success"


def test_history_skips_streaming_placeholder():
    builder = TranscriptBuilder()
    builder.add_user_message("one")
    builder.start_assistant_message()
    builder.append_text("partial")

    assert builder.to_history() == [{"role": "user", "content": "one"}]
    assert builder.to_history(include_streaming=True)[-1] == {"role": "assistant", "content": "partial"}


def test_serializer_round_trips_through_json():
    message = Message(
        role="assistant",
        parts=[TextPart("before"), ToolCallPart(_record("c1")), TextPart("after")],
        id="m1",
        timestamp=42,
    )

    restored = TranscriptSerializer.load(json.loads(json.dumps(TranscriptSerializer.dump([message]))))

    assert restored == [message]


def test_serializer_rejects_unknown_part():
    with pytest.raises(ValueError, match="Unknown message part type"):
        TranscriptSerializer.deserialize_message({"id": "m", "role": "user", "parts": [{"type": "image"}]})
