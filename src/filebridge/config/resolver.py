"""
Environment variable substitution for configuration values.

Supports ``${VAR_NAME}`` and ``${VAR_NAME:-default}``; unknown variables
without a default are left untouched.
"""

import os
import re
from typing import Any

_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def resolve_config(config_data: dict[str, Any]) -> dict[str, Any]:
    """
    Resolve ``${VAR}`` placeholders throughout a configuration mapping.

    Args:
        config_data: Configuration dictionary

    Returns:
        Resolved configuration
    """
    return _resolve_value(config_data)


def _resolve_value(value: Any) -> Any:
    """Recursively resolve values in configuration."""
    if isinstance(value, dict):
        return {k: _resolve_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_value(item) for item in value]
    elif isinstance(value, str):
        return _VAR_PATTERN.sub(_substitute, value)
    else:
        return value


def _substitute(match: re.Match[str]) -> str:
    name, default = match.group(1), match.group(2)
    env_value = os.getenv(name)
    if env_value is not None:
        return env_value
    if default is not None:
        return default
    return match.group(0)
