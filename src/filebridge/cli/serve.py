"""
filebridge serve - Long-running service.

Runs the cron scheduler for active jobs plus an HTTP API:
- POST /api/jobs/{id}/run - Trigger a manual run
- GET /api/jobs/{id}/dry-run - Preview a run
- GET /api/runs/{id} - Run record with its transfer logs and hook runs
- PUT /api/settings/timezone - Change the scheduler timezone
- GET /health - Health check
"""

from pathlib import Path

import typer

from filebridge.cli.common import initialize
from filebridge.service.server import run_service

app = typer.Typer(name="serve", help="Run FileBridge as a long-running service", invoke_without_command=True)


@app.callback()
def serve(
    ctx: typer.Context,
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    no_scheduler: bool = typer.Option(False, "--no-scheduler", help="Disable background scheduler"),
    host: str | None = typer.Option(None, help="Host to bind to (default: service.host)"),
    port: int | None = typer.Option(None, help="Port to bind to (default: service.port)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """
    Run FileBridge as a long-running service.

    Jobs left running by a previous process are marked as errored on start.
    """
    if ctx.invoked_subcommand is None:
        config = initialize(project_dir, env=env, config_file=config_file, verbose=verbose)
        if no_scheduler:
            config.data["scheduler"]["enabled"] = False
        run_service(config, host=host, port=port)
