"""Runtime settings loaded from ``settings.yaml`` in the config home."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .store import document_path

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.yaml"

DEFAULT_SYSTEM_PROMPT = (
    "You are a coding assistant running in the user's terminal. "
    "Use the available tools when they help answer the request, "
    "and keep answers concise."
)

DEFAULT_MEMORY_FILES = ("AGENTS.md", "CLAUDE.md")


@dataclass
class AgentSettings:
    """Knobs for the engine and the tool-server handshake."""

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_steps: int = 25
    tool_server_timeout: float = 30.0
    max_tokens: int = 4096
    verbose: bool = False
    # Project instruction files appended to the system prompt, relative to the working directory
    memory_files: List[str] = field(default_factory=lambda: list(DEFAULT_MEMORY_FILES))


def load_settings(path: Optional[Path] = None) -> AgentSettings:
    """Load settings from YAML, falling back to defaults for anything missing.

    Args:
        path: Explicit settings file. Defaults to ``<config home>/settings.yaml``.

    Returns:
        AgentSettings with file values overlaid on the defaults.

    Raises:
        ValueError: If the file exists but is not a mapping.
    """
    target = Path(path) if path else document_path(SETTINGS_FILENAME)
    if not target.exists():
        return AgentSettings()

    with open(target, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file must be a mapping: {target}")

    return _from_mapping(data)


def _from_mapping(data: Dict[str, Any]) -> AgentSettings:
    known = {f.name for f in fields(AgentSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("Ignoring unknown settings keys: %s", ", ".join(unknown))
    settings = AgentSettings(**{k: v for k, v in data.items() if k in known})
    if settings.max_steps < 1:
        raise ValueError("max_steps must be at least 1")
    if settings.tool_server_timeout <= 0:
        raise ValueError("tool_server_timeout must be positive")
    if not isinstance(settings.memory_files, list) or not all(isinstance(n, str) for n in settings.memory_files):
        raise ValueError("memory_files must be a list of file names")
    return settings


def build_system_prompt(settings: AgentSettings, workdir: Optional[Path] = None) -> str:
    """Append the project's memory files to the configured system prompt.

    Files listed in ``settings.memory_files`` are read from ``workdir``
    (default: the current directory). Missing or empty files are skipped.
    """
    root = Path(workdir) if workdir else Path.cwd()
    sections = [settings.system_prompt]
    for name in settings.memory_files:
        path = root / name
        if not path.is_file():
            continue
        content = path.read_text(encoding="utf-8").strip()
        if content:
            logger.debug("Loaded project memory from %s", path)
            sections.append(f"# Project instructions ({name})\n\n{content}")
    return "\n\n".join(sections)
