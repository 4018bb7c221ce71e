"""Validation of provider and tool-server form input before it is persisted."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ConfigIssue:
    """A single validation issue tied to a form field."""

    field: str
    message: str
    severity: Severity = Severity.ERROR


def has_errors(issues: List[ConfigIssue]) -> bool:
    return any(issue.severity is Severity.ERROR for issue in issues)


def validate_provider_form(data: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> List[ConfigIssue]:
    """Validate provider form data.

    Args:
        data: Form values keyed the way they are persisted (``apiKey``,
            ``baseURL``, ``maxTokens``).
        environ: Environment used to decide whether a blank API key can be
            backfilled. Defaults to ``os.environ``.

    Returns:
        List of ConfigIssue (empty = valid)
    """
    env = os.environ if environ is None else environ
    issues: List[ConfigIssue] = []
    provider_type = str(data.get("type") or "openai")

    if provider_type not in ("openai", "anthropic", "custom"):
        issues.append(ConfigIssue("type", f"Unknown provider type '{provider_type}'"))

    if not _text(data.get("name")):
        issues.append(ConfigIssue("name", "Name is required"))

    if not _text(data.get("model")):
        issues.append(ConfigIssue("model", "Model is required"))

    if not _text(data.get("apiKey")):
        env_key = f"{provider_type.upper()}_API_KEY"
        if not env.get(env_key):
            issues.append(ConfigIssue("apiKey", "API Key is required (config or environment)"))

    base_url = _text(data.get("baseURL"))
    if provider_type == "custom":
        if not base_url:
            issues.append(ConfigIssue("baseURL", "Base URL is required for custom providers"))
        protocol = data.get("protocol") or "openai"
        if protocol not in ("openai", "anthropic"):
            issues.append(ConfigIssue("protocol", f"Unknown protocol '{protocol}'"))
    if base_url and not _is_valid_url(base_url):
        issues.append(ConfigIssue("baseURL", "Invalid URL format"))

    temperature = data.get("temperature")
    if _text(temperature):
        value = _as_number(temperature)
        if value is None or value < 0 or value > 2:
            issues.append(ConfigIssue("temperature", "Temperature must be between 0 and 2"))

    max_tokens = data.get("maxTokens")
    if _text(max_tokens):
        value = _as_number(max_tokens)
        if value is None or value <= 0:
            issues.append(ConfigIssue("maxTokens", "Max tokens must be a positive number"))

    return issues


def validate_tool_server_form(data: Dict[str, Any]) -> List[ConfigIssue]:
    """Validate tool-server form data.

    ``args``, ``env`` and ``headers`` may arrive either as already-decoded
    values or as JSON text typed by the user.
    """
    issues: List[ConfigIssue] = []
    transport = data.get("transport") or "stdio"

    if not _text(data.get("name")):
        issues.append(ConfigIssue("name", "Name is required"))

    if transport == "stdio":
        if not _text(data.get("command")):
            issues.append(ConfigIssue("command", "Command is required"))
        issues.extend(_check_json_field(data, "args", list, "Arguments must be a JSON array"))
        issues.extend(_check_json_field(data, "env", dict, "Environment must be a JSON object"))
    elif transport == "http":
        url = _text(data.get("url"))
        if not url:
            issues.append(ConfigIssue("url", "URL is required"))
        elif not _is_valid_url(url):
            issues.append(ConfigIssue("url", "Invalid URL format"))
        issues.extend(_check_json_field(data, "headers", dict, "Headers must be a JSON object"))
    else:
        issues.append(ConfigIssue("transport", f"Unknown transport '{transport}'"))

    return issues


def decode_json_field(value: Any) -> Any:
    """Return ``value`` decoded from JSON text, or unchanged if it is not text."""
    if isinstance(value, str):
        return json.loads(value) if value.strip() else None
    return value


def _check_json_field(data: Dict[str, Any], field: str, expected: type, message: str) -> List[ConfigIssue]:
    raw = data.get(field)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return []
    try:
        value = decode_json_field(raw)
    except ValueError:
        return [ConfigIssue(field, "Invalid JSON format")]
    if not isinstance(value, expected):
        return [ConfigIssue(field, message)]
    return []


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)
