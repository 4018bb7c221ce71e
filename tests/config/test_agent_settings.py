"""Tests for settings.yaml loading."""

import pytest

from code_agent_lite.config.settings import DEFAULT_SYSTEM_PROMPT, AgentSettings, build_system_prompt, load_settings


def test_missing_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "settings.yaml")
    assert settings == AgentSettings()
    assert settings.system_prompt == DEFAULT_SYSTEM_PROMPT


def test_default_path_is_in_config_home(config_home):
    config_home.mkdir(parents=True, exist_ok=True)
    (config_home / "settings.yaml").write_text("max_steps: 7\n", encoding="utf-8")

    assert load_settings().max_steps == 7


def test_values_overlay_defaults(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "system_prompt: Be terse.\ntool_server_timeout: 5\nverbose: true\n",
        encoding="utf-8",
    )
    settings = load_settings(path)

    assert settings.system_prompt == "Be terse."
    assert settings.tool_server_timeout == 5
    assert settings.verbose is True
    assert settings.max_steps == 25


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("", encoding="utf-8")
    assert load_settings(path) == AgentSettings()


def test_unknown_keys_are_ignored_with_warning(tmp_path, caplog):
    path = tmp_path / "settings.yaml"
    path.write_text("max_steps: 3\ntheme: dark\n", encoding="utf-8")

    with caplog.at_level("WARNING"):
        settings = load_settings(path)

    assert settings.max_steps == 3
    assert "theme" in caplog.text


def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        load_settings(path)


@pytest.mark.parametrize("body", ["max_steps: 0\n", "tool_server_timeout: 0\n", "memory_files: AGENTS.md\n"])
def test_out_of_range_values_rejected(tmp_path, body):
    path = tmp_path / "settings.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(path)


def test_build_system_prompt_reads_memory_files_in_order(tmp_path):
    (tmp_path / "CLAUDE.md").write_text("second", encoding="utf-8")
    (tmp_path / "AGENTS.md").write_text("first", encoding="utf-8")

    prompt = build_system_prompt(AgentSettings(system_prompt="Base."), tmp_path)

    assert prompt == (
        "Base.\n\n# Project instructions (AGENTS.md)\n\nfirst\n\n# Project instructions (CLAUDE.md)\n\nsecond"
    )


def test_memory_files_setting_overrides_defaults(tmp_path):
    (tmp_path / "AGENTS.md").write_text("ignored", encoding="utf-8")
    (tmp_path / "NOTES.md").write_text("kept", encoding="utf-8")
    path = tmp_path / "settings.yaml"
    path.write_text("memory_files:\n  - NOTES.md\n", encoding="utf-8")

    prompt = build_system_prompt(load_settings(path), tmp_path)

    assert "kept" in prompt
    assert "ignored" not in prompt
