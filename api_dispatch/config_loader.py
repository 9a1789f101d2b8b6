"""Config Loader - Loads dispatcher runtime configuration.

Handles loading YAML config files with environment variable substitution and
turning named target entries into Target values.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

from api_dispatch.models import DispatcherConfig, Method, TargetConfig
from api_dispatch.target import Target
from api_dispatch.tasks import RequestPlain, Task

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ConfigError(Exception):
    """Raised when configuration loading fails."""


def load_dispatcher_config(config_path: Path) -> DispatcherConfig:
    """Load runtime configuration from YAML with ${ENV_VAR} substitution."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return DispatcherConfig.model_validate(raw_config)
    except Exception as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def get_target_config(config: DispatcherConfig, name: str) -> TargetConfig:
    """Look up a named target, listing the available names on failure."""
    if name not in config.targets:
        available = ", ".join(config.targets.keys()) or "(none)"
        raise ConfigError(f"Target '{name}' not found in config. Available: {available}")
    return config.targets[name]


def build_target(
    target_config: TargetConfig,
    path: str = "",
    method: Method = Method.GET,
    task: Task | None = None,
    headers: dict[str, str] | None = None,
    sample_data: bytes = b"",
) -> Target:
    """Combine a configured target with per-call details. Call headers win."""
    merged_headers = dict(target_config.headers)
    if headers:
        merged_headers.update(headers)
    return Target(
        base_url=target_config.base_url,
        path=path,
        method=method,
        task=task if task is not None else RequestPlain(),
        sample_data=sample_data,
        headers=merged_headers or None,
        validate=target_config.validate_status,
    )


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
