"""
Configuration management: YAML loading, defaults and environment resolution.
"""

from filebridge.config.loader import DEFAULT_CONFIG, Config, load_config
from filebridge.config.resolver import resolve_config

__all__ = [
    "DEFAULT_CONFIG",
    "load_config",
    "Config",
    "resolve_config",
]
