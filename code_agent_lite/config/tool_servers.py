"""MCP tool-server configuration: models and the persisted document."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .store import JsonDocumentStore, document_path

logger = logging.getLogger(__name__)

TOOL_SERVER_FILENAME = "mcp.json"


class _ServerFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    enabled: bool = True


class StdioServerConfig(_ServerFields):
    """Server launched as a subprocess speaking MCP over stdin/stdout."""

    transport: Literal["stdio"] = "stdio"
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    cwd: Optional[str] = None


class HttpServerConfig(_ServerFields):
    """Remote server reached over streamable HTTP."""

    transport: Literal["http"] = "http"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)


ToolServerConfig = Annotated[
    Union[StdioServerConfig, HttpServerConfig],
    Field(discriminator="transport"),
]

_server_adapter: TypeAdapter = TypeAdapter(ToolServerConfig)


def parse_tool_server(data: Dict[str, Any]) -> ToolServerConfig:
    return _server_adapter.validate_python(data)


def dump_tool_server(config: ToolServerConfig) -> Dict[str, Any]:
    return config.model_dump(by_alias=True, exclude_none=True)


class ToolServerDocument(BaseModel):
    servers: List[ToolServerConfig] = Field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {"servers": [dump_tool_server(s) for s in self.servers]}

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ToolServerDocument":
        servers: List[ToolServerConfig] = []
        for index, raw in enumerate(data.get("servers") or []):
            try:
                servers.append(parse_tool_server(raw))
            except ValidationError as e:
                logger.warning("Skipping invalid tool server entry #%d: %s", index, e)
        return cls(servers=servers)


def _empty_document() -> Dict[str, Any]:
    return ToolServerDocument().to_json()


class ToolServerConfigService:
    """CRUD over the persisted tool-server document."""

    def __init__(self, store: Optional[JsonDocumentStore] = None, home: Optional[Path] = None):
        self.store = store or JsonDocumentStore(
            document_path(TOOL_SERVER_FILENAME, home),
            default_factory=_empty_document,
        )
        self._document: Optional[ToolServerDocument] = None

    def _load(self) -> ToolServerDocument:
        if self._document is None:
            self._document = ToolServerDocument.from_json(self.store.load())
        return self._document

    def _save(self) -> None:
        self.store.save(self._load().to_json())

    def reload(self) -> None:
        self._document = None
        self._load()

    def get_servers(self) -> List[ToolServerConfig]:
        return [s.model_copy(deep=True) for s in self._load().servers]

    def get_enabled_servers(self) -> List[ToolServerConfig]:
        return [s for s in self.get_servers() if s.enabled]

    def get_server(self, server_id: str) -> Optional[ToolServerConfig]:
        for server in self._load().servers:
            if server.id == server_id:
                return server.model_copy(deep=True)
        return None

    def add_server(self, data: Dict[str, Any]) -> ToolServerConfig:
        payload = dict(data)
        payload["id"] = str(uuid.uuid4())
        server = parse_tool_server(payload)
        self._load().servers.append(server)
        self._save()
        logger.info("Added tool server %s (%s)", server.name, server.transport)
        return server.model_copy(deep=True)

    def update_server(self, server_id: str, updates: Dict[str, Any]) -> Optional[ToolServerConfig]:
        document = self._load()
        index = self._index_of(server_id)
        if index is None:
            return None
        merged = dump_tool_server(document.servers[index])
        merged.update({k: v for k, v in updates.items() if k != "id"})
        updated = parse_tool_server(merged)
        document.servers[index] = updated
        self._save()
        return updated.model_copy(deep=True)

    def delete_server(self, server_id: str) -> bool:
        document = self._load()
        index = self._index_of(server_id)
        if index is None:
            return False
        document.servers.pop(index)
        self._save()
        return True

    def toggle_server(self, server_id: str) -> Optional[ToolServerConfig]:
        document = self._load()
        index = self._index_of(server_id)
        if index is None:
            return None
        server = document.servers[index]
        server.enabled = not server.enabled
        self._save()
        return server.model_copy(deep=True)

    def _index_of(self, server_id: str) -> Optional[int]:
        for index, server in enumerate(self._load().servers):
            if server.id == server_id:
                return index
        return None
