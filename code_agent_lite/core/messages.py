"""Messages carried by engine steps."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

# Node names used as keys of engine steps
MODEL_NODE = "model_request"
TOOLS_NODE = "tools"


@dataclass
class ToolCallRequest:
    """A tool call as requested by the model."""

    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class HumanMessage:
    content: str


@dataclass
class AIMessage:
    """Assistant output. ``content`` is cumulative for the current model turn."""

    content: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    id: str = field(default_factory=lambda: f"ai-{uuid.uuid4().hex}")


@dataclass
class ToolMessage:
    """Result of one tool call, correlated by ``tool_call_id``."""

    content: str
    tool_call_id: str
    name: str = ""
    status: Literal["success", "error"] = "success"
