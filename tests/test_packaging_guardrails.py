"""Guardrails for packaging configuration."""

from __future__ import annotations

from pathlib import Path

import tomllib

REPO_ROOT = Path(__file__).resolve().parents[1]
PYPROJECT_PATH = REPO_ROOT / "pyproject.toml"


def _load_pyproject() -> dict:
    return tomllib.loads(PYPROJECT_PATH.read_text(encoding="utf-8"))


def test_wheel_ships_only_the_package() -> None:
    pyproject = _load_pyproject()
    wheel_cfg = pyproject.get("tool", {}).get("hatch", {}).get("build", {}).get("targets", {}).get("wheel", {})
    assert wheel_cfg.get("packages") == ["code_agent_lite"]


def test_runtime_dependencies_cover_provider_and_tool_sdks() -> None:
    pyproject = _load_pyproject()
    names = {dep.split(">")[0].split("=")[0].strip() for dep in pyproject["project"]["dependencies"]}
    assert {"openai", "anthropic", "mcp", "httpx", "pydantic", "pyyaml", "python-dotenv"} <= names


def test_test_extra_has_async_runner() -> None:
    pyproject = _load_pyproject()
    test_deps = " ".join(pyproject["project"]["optional-dependencies"]["test"])
    assert "pytest-asyncio" in test_deps


def test_mcp_floor_provides_streamable_http_client() -> None:
    pyproject = _load_pyproject()
    [mcp_dep] = [dep for dep in pyproject["project"]["dependencies"] if dep.startswith("mcp")]
    floor = mcp_dep.split(">=")[1].split(",")[0]
    assert tuple(int(part) for part in floor.split(".")) >= (1, 24)
