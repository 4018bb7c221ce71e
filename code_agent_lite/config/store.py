"""JSON document persistence under the config home."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

CONFIG_HOME_ENV = "CODE_AGENT_LITE_HOME"
DEFAULT_CONFIG_DIRNAME = ".code-agent-lite"


def get_config_home() -> Path:
    """Directory holding provider.json, mcp.json and settings.yaml."""
    override = os.environ.get(CONFIG_HOME_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_CONFIG_DIRNAME


class JsonDocumentStore:
    """Load and save one JSON document.

    A missing file is created from ``default_factory``. A file that cannot be
    parsed is logged and replaced by the default document, so a corrupt config
    never blocks startup.
    """

    def __init__(
        self,
        path: Path,
        default_factory: Callable[[], Dict[str, Any]],
        owner_only: bool = False,
    ) -> None:
        self.path = Path(path)
        self.default_factory = default_factory
        self.owner_only = owner_only

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            document = self.default_factory()
            self.save(document)
            return document

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Failed to read %s, falling back to defaults: %s", self.path, e)
            document = self.default_factory()
            self.save(document)
            return document

        if not isinstance(data, dict):
            logger.warning("Config document %s is not an object, falling back to defaults", self.path)
            document = self.default_factory()
            self.save(document)
            return document
        return data

    def save(self, document: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)
        if self.owner_only:
            self._restrict_permissions()

    def _restrict_permissions(self) -> None:
        try:
            os.chmod(self.path, 0o600)
        except OSError as e:
            # Not every filesystem supports POSIX modes.
            logger.warning("Could not restrict permissions on %s: %s", self.path, e)


def document_path(filename: str, home: Optional[Path] = None) -> Path:
    return (home or get_config_home()) / filename
