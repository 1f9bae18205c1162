"""Unit tests for configuration loading."""

import pytest
import yaml

from retro_core.config import (
    DEFAULT_CONFIG,
    get_ai_config,
    get_analysis_window_days,
    get_claude_dir,
    get_confidence_threshold,
    get_hooks_config,
    get_retro_home,
    load_config,
    save_config,
)
from retro_core.exceptions import ConfigurationError


class TestLoadConfig:
    def test_defaults_without_file(self, retro_home):
        assert load_config() == DEFAULT_CONFIG

    def test_file_overrides_defaults(self, retro_home):
        (retro_home / "config.yaml").write_text(
            yaml.safe_dump({"hooks": {"auto_analyze_max_sessions": 3}})
        )
        config = load_config()
        assert config["hooks"]["auto_analyze_max_sessions"] == 3
        assert config["hooks"]["analyze_cooldown_minutes"] == 1440

    def test_explicit_path(self, retro_home, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("analysis:\n  confidence_threshold: 0.9\n")
        assert get_confidence_threshold(load_config(str(path))) == 0.9

    def test_env_config_path(self, retro_home, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("ai:\n  model: opus\n")
        monkeypatch.setenv("RETRO_CONFIG_PATH", str(path))
        assert load_config()["ai"]["model"] == "opus"

    def test_analysis_window(self, retro_home):
        assert get_analysis_window_days(load_config()) == 14
        (retro_home / "config.yaml").write_text("analysis:\n  window_days: 30\n")
        assert get_analysis_window_days(load_config()) == 30

    def test_log_level_env_override(self, retro_home, monkeypatch):
        monkeypatch.setenv("RETRO_LOG_LEVEL", "debug")
        assert load_config()["server"]["log_level"] == "DEBUG"

    def test_invalid_explicit_file_raises(self, retro_home, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("hooks: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_non_mapping_explicit_file_raises(self, retro_home, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_invalid_default_file_ignored(self, retro_home):
        (retro_home / "config.yaml").write_text("hooks: [unclosed\n")
        assert load_config() == DEFAULT_CONFIG

    def test_missing_explicit_file_uses_defaults(self, retro_home, tmp_path):
        assert load_config(str(tmp_path / "missing.yaml")) == DEFAULT_CONFIG


class TestHelpers:
    def test_retro_home_env(self, retro_home):
        assert get_retro_home() == retro_home

    def test_save_and_reload(self, retro_home):
        config = load_config()
        config["hooks"]["auto_apply"] = False
        path = save_config(config)
        assert path == retro_home / "config.yaml"
        assert load_config()["hooks"]["auto_apply"] is False

    def test_section_defaults_filled(self):
        assert get_hooks_config({"hooks": {"auto_apply": False}})["ingest_cooldown_minutes"] == 5
        assert get_ai_config({})["max_generation_retries"] == 2

    def test_claude_dir_expands_tilde(self):
        path = get_claude_dir({"paths": {"claude_dir": "~/agent"}})
        assert not str(path).startswith("~")
