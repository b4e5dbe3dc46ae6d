"""
Unit tests for config.yaml loading and getters.
"""

import pytest

from asmgr import config
from asmgr.settings import TIMING


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    monkeypatch.setattr(config, "CONFIG_PATH", path)
    return path


class TestLoadConfig:
    """Test reading the file."""

    def test_missing_file(self, config_file):
        assert config.load_config() == {}

    def test_invalid_yaml(self, config_file):
        config_file.write_text("tick_interval: [unclosed\n")
        assert config.load_config() == {}

    def test_non_mapping(self, config_file):
        config_file.write_text("- just\n- a list\n")
        assert config.load_config() == {}

    def test_save_then_load(self, config_file):
        config.save_config({"default_agent": "gemini", "tick_interval": 0.5})
        assert config.load_config() == {"default_agent": "gemini", "tick_interval": 0.5}


class TestGetters:
    """Getters fall back to defaults on bad values."""

    def test_defaults(self, config_file):
        assert config.get_tick_interval() == TIMING.tick_interval
        assert config.get_default_agent() == "claude"
        assert config.get_log_level() is None
        assert config.get_diff_mode() == "full"
        assert config.get_extra_waiting_markers() == []
        assert config.get_filter_overrides() == {}

    def test_tick_interval(self, config_file):
        config_file.write_text("tick_interval: 2\n")
        assert config.get_tick_interval() == 2.0

    @pytest.mark.parametrize("raw", ["0", "-1", "fast"])
    def test_tick_interval_rejected(self, config_file, raw):
        config_file.write_text(f"tick_interval: {raw}\n")
        assert config.get_tick_interval() == TIMING.tick_interval

    def test_log_level_uppercased(self, config_file):
        config_file.write_text("log_level: debug\n")
        assert config.get_log_level() == "DEBUG"

    def test_diff_mode(self, config_file):
        config_file.write_text("diff_mode: Session\n")
        assert config.get_diff_mode() == "session"
        config_file.write_text("diff_mode: staged\n")
        assert config.get_diff_mode() == "full"

    def test_waiting_markers_lowercased(self, config_file):
        config_file.write_text("waiting_markers:\n  - Approve Plan\n  - 42\n  - {nested: x}\n")
        assert config.get_extra_waiting_markers() == ["approve plan", "42"]

    def test_filter_overrides_keep_mappings(self, config_file):
        config_file.write_text(
            "filters:\n"
            "  claude:\n"
            "    skip_prefixes: ['? for shortcuts']\n"
            "  gemini: nope\n"
        )
        assert config.get_filter_overrides() == {"claude": {"skip_prefixes": ["? for shortcuts"]}}
