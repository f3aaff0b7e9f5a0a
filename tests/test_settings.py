"""Tests for settings loading and validation."""
import pytest

from config.settings import get_settings, load_settings, reset_settings, settings_from_dict


class TestSettings:
    def test_defaults(self):
        settings = settings_from_dict({})
        assert settings.session_timeout_minutes == 30
        assert settings.session_cleanup_interval_minutes == 5
        assert settings.enable_builtin_history is True
        assert settings.max_flows_per_user is None
        assert settings.security.max_input_length == 10000
        assert settings.security.action_timeout_ms == 5000
        assert settings.security.hook_timeout_ms == 10000
        assert settings.actions.fetch_failure_strategy == "warn"

    def test_nested_sections(self):
        settings = settings_from_dict({
            "security": {"max_input_length": 500, "allowed_input_patterns": ["^\\w+$"]},
            "actions": {"fetch_failure_strategy": "stop"},
        })
        assert settings.security.max_input_length == 500
        assert settings.security.allowed_input_patterns == ["^\\w+$"]
        assert settings.actions.fetch_failure_strategy == "stop"

    def test_env_substitution(self, monkeypatch):
        monkeypatch.setenv("SKILLFLOW_TEST_DIR", "/srv/flows")
        assert settings_from_dict({"flows_dir": "${SKILLFLOW_TEST_DIR}"}).flows_dir == "/srv/flows"

    def test_unset_env_left_as_is(self, monkeypatch):
        monkeypatch.delenv("SKILLFLOW_NOT_SET", raising=False)
        assert settings_from_dict({"flows_dir": "${SKILLFLOW_NOT_SET}"}).flows_dir == "${SKILLFLOW_NOT_SET}"

    @pytest.mark.parametrize("raw", [
        {"session_timeout_minutes": 0},
        {"session_timeout_minutes": 2000},
        {"session_cleanup_interval_minutes": 61},
        {"max_flows_per_user": 0},
        {"security": {"max_input_length": 0}},
        {"actions": {"fetch_failure_strategy": "explode"}},
    ])
    def test_out_of_range_rejected(self, raw):
        with pytest.raises(ValueError):
            settings_from_dict(raw)

    def test_load_from_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("session_timeout_minutes: 45\nsecurity:\n  hook_timeout_ms: 2000\n")
        monkeypatch.setenv("SKILLFLOW_CONFIG", str(path))
        reset_settings()
        settings = get_settings()
        assert settings.session_timeout_minutes == 45
        assert settings.security.hook_timeout_ms == 2000
        assert get_settings() is settings

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings.session_timeout_minutes == 30

    def test_paths_expand_user(self):
        settings = settings_from_dict({"flows_dir": "~/flows"})
        assert "~" not in str(settings.flows_path)
