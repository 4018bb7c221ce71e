"""Tools exposed by connected MCP servers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import ToolExecutionError
from ..providers.types import ToolSchema

EMPTY_INPUT_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}


@dataclass
class McpTool:
    """A tool listed by one server, callable through that server's session."""

    name: str
    description: str
    server_id: str
    session: Any = field(repr=False)
    input_schema: Dict[str, Any] = field(default_factory=lambda: dict(EMPTY_INPUT_SCHEMA))

    @classmethod
    def from_listing(cls, server_id: str, session: Any, listed: Any) -> "McpTool":
        return cls(
            name=listed.name,
            description=getattr(listed, "description", None) or "",
            server_id=server_id,
            session=session,
            input_schema=dict(getattr(listed, "inputSchema", None) or EMPTY_INPUT_SCHEMA),
        )

    def schema(self) -> ToolSchema:
        return ToolSchema(name=self.name, description=self.description, parameters=self.input_schema)

    async def call(self, arguments: Optional[Dict[str, Any]] = None) -> str:
        """Invoke the tool and return its content as text.

        Raises:
            ToolExecutionError: If the server reports the call as failed.
        """
        result = await self.session.call_tool(self.name, arguments or {})
        text = flatten_content(getattr(result, "content", None) or [])
        if not text and getattr(result, "structuredContent", None):
            text = json.dumps(result.structuredContent, ensure_ascii=False)
        if getattr(result, "isError", False):
            raise ToolExecutionError(self.name, text or f"Tool '{self.name}' reported an error")
        return text


def flatten_content(content: List[Any]) -> str:
    """Join MCP content blocks into plain text."""
    chunks: List[str] = []
    for item in content:
        item_type = getattr(item, "type", None)
        if item_type == "text":
            chunks.append(item.text)
        elif item_type == "resource":
            resource = getattr(item, "resource", None)
            chunks.append(getattr(resource, "text", None) or str(getattr(resource, "uri", "")))
        elif item_type in ("image", "audio"):
            chunks.append(f"[{item_type}: {getattr(item, 'mimeType', 'unknown')}]")
        elif item_type == "resource_link":
            chunks.append(str(getattr(item, "uri", "")))
        else:
            chunks.append(str(item))
    return "\n".join(chunk for chunk in chunks if chunk)
