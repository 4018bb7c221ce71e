"""Global pytest fixtures for deterministic test environment."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_runtime_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Clear provider env that can leak into tests on developer machines."""
    for key in (
        "OPENAI_API_KEY",
        "OPENAI_MODEL",
        "OPENAI_BASE_URL",
        "ANTHROPIC_API_KEY",
        "ANTHROPIC_MODEL",
        "ANTHROPIC_BASE_URL",
        "CUSTOM_API_KEY",
        "CUSTOM_BASE_URL",
        "CODE_AGENT_LITE_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)
    # Never touch the real ~/.code-agent-lite
    monkeypatch.setenv("CODE_AGENT_LITE_HOME", str(tmp_path / "home"))


@pytest.fixture
def config_home(tmp_path: Path) -> Path:
    return tmp_path / "home"
