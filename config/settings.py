"""
Configuration loader for the SkillFlow engine.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


FETCH_FAILURE_STRATEGIES = ("stop", "warn", "silent")


@dataclass
class SecurityConfig:
    max_input_length: int = 10000                  # characters
    allowed_input_patterns: Optional[list[str]] = None
    action_timeout_ms: int = 5000                  # legacy action calls
    hook_timeout_ms: int = 10000                   # lifecycle hooks


@dataclass
class ActionsConfig:
    fetch_failure_strategy: str = "warn"           # "stop" | "warn" | "silent"


@dataclass
class Settings:
    app_name: str = "SkillFlow"
    debug: bool = False
    flows_dir: str = "~/.skillflow/flows"
    data_dir: str = "~/.skillflow/data"            # file-backed spreadsheets / calendar
    session_timeout_minutes: int = 30
    session_cleanup_interval_minutes: int = 5
    enable_builtin_history: bool = True
    max_flows_per_user: Optional[int] = None
    timezone: str = "UTC"
    security: SecurityConfig = field(default_factory=SecurityConfig)
    actions: ActionsConfig = field(default_factory=ActionsConfig)

    @property
    def flows_path(self) -> Path:
        return Path(self.flows_dir).expanduser().resolve()

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser().resolve()


_settings: Optional[Settings] = None


_ENV_VAR = re.compile(r'\$\{(\w+)\}')


def _substitute_env_vars(value: str) -> str:
    """Expand ${NAME} from the environment; unset names are kept verbatim."""
    return _ENV_VAR.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _check_range(name: str, value: Any, low: int, high: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        raise ValueError(f"{name} must be an integer between {low} and {high}, got {value!r}")
    return value


def validate_settings(settings: Settings) -> Settings:
    """Reject out-of-range values. Returns the same settings object."""
    _check_range("session_timeout_minutes", settings.session_timeout_minutes, 1, 1440)
    _check_range("session_cleanup_interval_minutes",
                 settings.session_cleanup_interval_minutes, 1, 60)
    if settings.max_flows_per_user is not None:
        _check_range("max_flows_per_user", settings.max_flows_per_user, 1, 1000)
    if settings.security.max_input_length <= 0:
        raise ValueError("security.max_input_length must be positive")
    if settings.security.action_timeout_ms <= 0 or settings.security.hook_timeout_ms <= 0:
        raise ValueError("security timeouts must be positive")
    if settings.actions.fetch_failure_strategy not in FETCH_FAILURE_STRATEGIES:
        raise ValueError(
            f"actions.fetch_failure_strategy must be one of {', '.join(FETCH_FAILURE_STRATEGIES)}"
        )
    return settings


def settings_from_dict(raw: dict[str, Any]) -> Settings:
    """Build Settings from an already-parsed mapping."""
    raw = _process_values(raw or {})
    settings = Settings()

    settings.app_name = raw.get("app_name", settings.app_name)
    settings.debug = raw.get("debug", settings.debug)
    settings.flows_dir = raw.get("flows_dir", settings.flows_dir)
    settings.data_dir = raw.get("data_dir", settings.data_dir)
    settings.session_timeout_minutes = raw.get(
        "session_timeout_minutes", settings.session_timeout_minutes)
    settings.session_cleanup_interval_minutes = raw.get(
        "session_cleanup_interval_minutes", settings.session_cleanup_interval_minutes)
    settings.enable_builtin_history = raw.get(
        "enable_builtin_history", settings.enable_builtin_history)
    settings.max_flows_per_user = raw.get("max_flows_per_user", settings.max_flows_per_user)
    settings.timezone = raw.get("timezone", settings.timezone)

    if "security" in raw:
        sec = raw["security"] or {}
        settings.security = SecurityConfig(
            max_input_length=sec.get("max_input_length", 10000),
            allowed_input_patterns=sec.get("allowed_input_patterns"),
            action_timeout_ms=sec.get("action_timeout_ms", 5000),
            hook_timeout_ms=sec.get("hook_timeout_ms", 10000),
        )

    if "actions" in raw:
        act = raw["actions"] or {}
        settings.actions = ActionsConfig(
            fetch_failure_strategy=act.get("fetch_failure_strategy", "warn"),
        )

    return validate_settings(settings)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "SKILLFLOW_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    raw: dict[str, Any] = {}
    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

    _settings = settings_from_dict(raw)
    return _settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings():
    """Drop the cached settings (tests)."""
    global _settings
    _settings = None
