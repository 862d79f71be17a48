"""
Shared CLI setup: configuration and logging.
"""

from pathlib import Path

import typer

from filebridge.config import Config, load_config
from filebridge.exceptions import ConfigurationError
from filebridge.utils.logging import setup_logging_from_config


def initialize(
    project_dir: Path,
    env: str | None = None,
    config_file: Path | None = None,
    verbose: bool = False,
) -> Config:
    """Load config and configure logging; exits with code 1 on a bad config."""
    try:
        config = load_config(project_dir, env=env, config_file=config_file)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    if verbose:
        config.data.setdefault("logging", {})["level"] = "DEBUG"
    setup_logging_from_config(config.data, project_dir)
    return config
