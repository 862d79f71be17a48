"""
Configuration file loading.

Loads ``filebridge.yaml`` (and ``filebridge.{env}.yaml`` when an environment
is given) over built-in defaults.
"""

import copy
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from filebridge.config.resolver import resolve_config
from filebridge.exceptions import ConfigurationError

CONFIG_FILENAME = "filebridge.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "scheduler": {
        "enabled": True,
        "timezone": "UTC",
    },
    "store": {
        "type": "duckdb",
        "path": "data/filebridge.duckdb",
    },
    "transfer": {
        "max_attempts": 3,
        "retry_delay_s": 1.0,
        "verify_size": True,
        # None: per-protocol defaults (SMB listings lag longer than SFTP)
        "verify_attempts": None,
        "verify_interval_s": None,
        "confirm_delete": True,
        "delete_confirm_attempts": 30,
        "delete_confirm_interval_s": 1.0,
        "progress_interval_s": 0.5,
    },
    "hooks": {
        "max_output_bytes": 4096,
        "webhook_timeout_ms": 10_000,
        "shell_timeout_ms": 30_000,
    },
    "service": {
        "host": "127.0.0.1",
        "port": 8080,
    },
    "logging": {
        "level": "INFO",
        "console_type": "rich",
    },
}


class Config:
    """FileBridge configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any]):
        self.data = data
        self.scheduler = data.get("scheduler", {})
        self.store = data.get("store", {})
        self.transfer = data.get("transfer", {})
        self.hooks = data.get("hooks", {})

    @classmethod
    def defaults(cls) -> "Config":
        return cls(copy.deepcopy(DEFAULT_CONFIG))

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        value: Any = self.data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        if "." in key:
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            if isinstance(value, dict):
                return Config(value)
            return value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        value: Any = self.data
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                return False
            value = value[k]
        return True

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def validate(self) -> None:
        """Validate configuration structure and content."""
        errors = []

        timezone = self.get("scheduler.timezone")
        try:
            ZoneInfo(str(timezone))
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"scheduler.timezone '{timezone}' is not a valid IANA timezone")

        store_type = self.get("store.type")
        if store_type not in ("duckdb", "memory"):
            errors.append(f"store.type must be 'duckdb' or 'memory', got '{store_type}'")

        for key in ("transfer.max_attempts", "hooks.max_output_bytes", "hooks.webhook_timeout_ms", "hooks.shell_timeout_ms"):
            value = self.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                errors.append(f"{key} must be a positive integer, got {value!r}")

        if errors:
            raise ConfigurationError("\n".join(errors))


def load_config(
    project_path: Path | None = None,
    env: str | None = None,
    config_file: Path | None = None,
) -> Config:
    """
    Load FileBridge configuration.

    A missing config file is not an error: the defaults apply.

    Args:
        project_path: Directory holding ``filebridge.yaml`` (default: cwd)
        env: Environment name; ``filebridge.{env}.yaml`` overrides the base file
        config_file: Explicit config file path (takes precedence over project_path)

    Returns:
        Validated Config instance
    """
    if project_path is None:
        project_path = Path.cwd()
    base_path = config_file or project_path / CONFIG_FILENAME

    config_data = copy.deepcopy(DEFAULT_CONFIG)
    if base_path.exists():
        _merge_dict(config_data, _read_yaml(base_path))
    elif config_file is not None:
        raise ConfigurationError(f"Configuration file not found: {config_file}")

    if env:
        env_path = base_path.with_name(f"{base_path.stem}.{env}{base_path.suffix}")
        if env_path.exists():
            _merge_dict(config_data, _read_yaml(env_path))

    config = Config(resolve_config(config_data))
    config.validate()
    return config


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark is not None else ""
        raise ConfigurationError(f"Error parsing {path.name}{where}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}: {path}")
    return data


def _merge_dict(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value
