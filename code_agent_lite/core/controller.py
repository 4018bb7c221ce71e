"""Validated configuration changes that keep the live session in sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config.validator import (
    ConfigIssue,
    decode_json_field,
    has_errors,
    validate_provider_form,
    validate_tool_server_form,
)
from ..errors import AgentLiteError
from .session import AgentSession

logger = logging.getLogger(__name__)


@dataclass
class ChangeResult:
    """Outcome of one configuration change."""

    ok: bool
    issues: List[ConfigIssue] = field(default_factory=list)
    item: Any = None
    reinitialized: bool = False
    error: Optional[str] = None


class ConfigController:
    """Applies provider and tool-server edits, reinitializing the session when
    the running engine is affected."""

    def __init__(self, session: AgentSession):
        self.session = session
        self.providers = session.providers
        self.tool_servers = session.tool_servers
        self.resolver = session.resolver

    async def add_provider(self, form: Dict[str, Any]) -> ChangeResult:
        issues = validate_provider_form(form, self.resolver.environ)
        if has_errors(issues):
            return ChangeResult(ok=False, issues=issues)
        provider = self.providers.add_provider(provider_payload(form))
        # Only the very first provider changes what the session runs on.
        if len(self.providers.get_providers()) == 1:
            return await self._reinitialize(ChangeResult(ok=True, issues=issues, item=provider))
        return ChangeResult(ok=True, issues=issues, item=provider)

    async def update_provider(self, provider_id: str, form: Dict[str, Any]) -> ChangeResult:
        issues = validate_provider_form(form, self.resolver.environ)
        if has_errors(issues):
            return ChangeResult(ok=False, issues=issues)
        before = self._active_provider_id()
        updated = self.providers.update_provider(provider_id, provider_payload(form))
        if updated is None:
            return ChangeResult(ok=False, issues=issues, error=f"Provider {provider_id} not found")
        result = ChangeResult(ok=True, issues=issues, item=updated)
        after = self._active_provider_id()
        if after == provider_id or after != before:
            return await self._reinitialize(result)
        return result

    async def delete_provider(self, provider_id: str) -> ChangeResult:
        existing = self.providers.get_provider(provider_id)
        if existing is None or not self.providers.delete_provider(provider_id):
            return ChangeResult(ok=False, error=f"Provider {provider_id} not found")
        result = ChangeResult(ok=True, item=existing)
        if existing.is_default and self.resolver.has_valid_provider():
            return await self._reinitialize(result)
        return result

    async def toggle_provider(self, provider_id: str) -> ChangeResult:
        before = self._active_provider_id()
        updated = self.providers.toggle_provider(provider_id)
        if updated is None:
            return ChangeResult(ok=False, error=f"Provider {provider_id} not found")
        result = ChangeResult(ok=True, item=updated)
        if self._active_provider_id() != before:
            return await self._reinitialize(result)
        return result

    async def set_default_provider(self, provider_id: str) -> ChangeResult:
        if not self.providers.set_default_provider(provider_id):
            return ChangeResult(ok=False, error=f"Provider {provider_id} not found or disabled")
        return await self._reinitialize(ChangeResult(ok=True, item=self.providers.get_provider(provider_id)))

    async def add_tool_server(self, form: Dict[str, Any]) -> ChangeResult:
        issues = validate_tool_server_form(form)
        if has_errors(issues):
            return ChangeResult(ok=False, issues=issues)
        server = self.tool_servers.add_server(tool_server_payload(form))
        return await self._reinitialize(ChangeResult(ok=True, issues=issues, item=server))

    async def update_tool_server(self, server_id: str, form: Dict[str, Any]) -> ChangeResult:
        issues = validate_tool_server_form(form)
        if has_errors(issues):
            return ChangeResult(ok=False, issues=issues)
        updated = self.tool_servers.update_server(server_id, tool_server_payload(form))
        if updated is None:
            return ChangeResult(ok=False, issues=issues, error=f"Tool server {server_id} not found")
        return await self._reinitialize(ChangeResult(ok=True, issues=issues, item=updated))

    async def delete_tool_server(self, server_id: str) -> ChangeResult:
        if not self.tool_servers.delete_server(server_id):
            return ChangeResult(ok=False, error=f"Tool server {server_id} not found")
        return await self._reinitialize(ChangeResult(ok=True))

    async def toggle_tool_server(self, server_id: str) -> ChangeResult:
        updated = self.tool_servers.toggle_server(server_id)
        if updated is None:
            return ChangeResult(ok=False, error=f"Tool server {server_id} not found")
        return await self._reinitialize(ChangeResult(ok=True, item=updated))

    def _active_provider_id(self) -> Optional[str]:
        active = self.resolver.get_default_provider()
        return active.id if active is not None else None

    async def _reinitialize(self, result: ChangeResult) -> ChangeResult:
        try:
            await self.session.reinitialize()
        except AgentLiteError as e:
            logger.error("Reinitialization after config change failed: %s", e)
            result.error = str(e)
        result.reinitialized = True
        return result


def provider_payload(form: Dict[str, Any]) -> Dict[str, Any]:
    """Form values to a persisted provider mapping.

    Blank optionals map to ``None`` so an update clears a previously saved value.
    """
    provider_type = form.get("type") or "openai"
    payload: Dict[str, Any] = {
        "name": _strip(form.get("name")),
        "type": provider_type,
        "enabled": bool(form.get("enabled", True)),
        "model": _strip(form.get("model")),
        "apiKey": _strip(form.get("apiKey")),
        "baseURL": _strip(form.get("baseURL")) or None,
        "temperature": float(form["temperature"]) if _strip(form.get("temperature")) else None,
        "maxTokens": int(float(form["maxTokens"])) if _strip(form.get("maxTokens")) else None,
    }
    if provider_type == "custom":
        payload["protocol"] = form.get("protocol") or "openai"
    return payload


def tool_server_payload(form: Dict[str, Any]) -> Dict[str, Any]:
    transport = form.get("transport") or "stdio"
    payload: Dict[str, Any] = {
        "name": _strip(form.get("name")),
        "transport": transport,
        "enabled": bool(form.get("enabled", True)),
    }
    if transport == "stdio":
        payload["command"] = _strip(form.get("command"))
        payload["args"] = decode_json_field(form.get("args")) or []
        payload["env"] = decode_json_field(form.get("env")) or {}
        payload["cwd"] = _strip(form.get("cwd")) or None
    else:
        payload["url"] = _strip(form.get("url"))
        payload["headers"] = decode_json_field(form.get("headers")) or {}
    return payload


def _strip(value: Any) -> str:
    return "" if value is None else str(value).strip()
