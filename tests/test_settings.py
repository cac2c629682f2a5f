"""Tests for settings loading."""

import pytest

from interface_mcp.utils.settings import Settings, load_settings, settings_from_mapping


class TestSettingsFromMapping:
    """Test settings_from_mapping function."""

    def test_defaults(self):
        settings = settings_from_mapping({})
        assert settings == Settings()
        assert settings.hidden_timeout_s == 1.0
        assert settings.flatten_routers is None

    def test_prefixed_keys(self):
        settings = settings_from_mapping({
            "INTERFACE_MCP_HIDDEN_TIMEOUT_S": "0.5",
            "INTERFACE_MCP_HIDDEN_ERROR_DEFAULT": "Hidden",
            "INTERFACE_MCP_FLATTEN_ROUTERS": "yes",
            "INTERFACE_MCP_PORT": "9000",
            "INTERFACE_MCP_LOG_LEVEL": "debug",
            "PORT": "1",
        })
        assert settings.hidden_timeout_s == 0.5
        assert settings.hidden_error_default == "hidden"
        assert settings.flatten_routers is True
        assert settings.port == 9000
        assert settings.log_level == "DEBUG"

    def test_empty_values_are_ignored(self):
        assert settings_from_mapping({"INTERFACE_MCP_PORT": ""}).port == 8085

    @pytest.mark.parametrize("key,value", [
        ("INTERFACE_MCP_FLATTEN_ROUTERS", "maybe"),
        ("INTERFACE_MCP_HIDDEN_ERROR_DEFAULT", "sometimes"),
        ("INTERFACE_MCP_HIDDEN_TIMEOUT_S", "0"),
        ("INTERFACE_MCP_PORT", "eighty"),
    ])
    def test_bad_values(self, key, value):
        with pytest.raises(ValueError):
            settings_from_mapping({key: value})


class TestLoadSettings:
    """Test load_settings function."""

    def test_reads_dotenv_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("INTERFACE_MCP_HIDDEN_SLOW_WARN_S", raising=False)
        (tmp_path / ".env").write_text("INTERFACE_MCP_HIDDEN_SLOW_WARN_S=0.25\n")
        try:
            assert load_settings().hidden_slow_warn_s == 0.25
        finally:
            monkeypatch.delenv("INTERFACE_MCP_HIDDEN_SLOW_WARN_S", raising=False)

    def test_environment_wins_over_dotenv(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("INTERFACE_MCP_PORT", "7000")
        (tmp_path / ".env").write_text("INTERFACE_MCP_PORT=7001\n")
        assert load_settings().port == 7000

    def test_without_dotenv(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("INTERFACE_MCP_PORT", raising=False)
        (tmp_path / ".env").write_text("INTERFACE_MCP_PORT=7001\n")
        assert load_settings(use_dotenv=False).port == 8085
