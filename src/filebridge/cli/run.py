"""
filebridge run - Execute one job immediately.
"""

import asyncio
from pathlib import Path

import typer
from rich.console import Console

from filebridge.cli.common import initialize
from filebridge.exceptions import FileBridgeError
from filebridge.models import RunStatus, RunTrigger
from filebridge.store import create_store
from filebridge.transfer import TransferEngine
from filebridge.utils.logging import get_logger

logger = get_logger("filebridge.cli.run")
console = Console()


def run(
    job_id: int = typer.Argument(..., help="Job id"),
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """
    Run a job now, as a manual trigger.

    Exits with code 1 when the run fails and 2 when the job is already running.
    """
    config = initialize(project_dir, env=env, config_file=config_file, verbose=verbose)
    store = create_store(config)
    engine = TransferEngine(store, config)

    try:
        run_record = asyncio.run(engine.run_job(job_id, RunTrigger.MANUAL))
    except FileBridgeError as e:
        logger.error(f"Run of job {job_id} failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    if run_record is None:
        typer.echo(f"Job {job_id} is already running", err=True)
        raise typer.Exit(2)

    color = "green" if run_record.status == RunStatus.SUCCESS else "red"
    console.print(
        f"[{color}]Run {run_record.id}: {run_record.status}[/{color}] "
        f"({run_record.files_transferred} file(s), {run_record.bytes_transferred} bytes)"
    )
    if run_record.error_message:
        console.print(f"[dim]{run_record.error_message}[/dim]")
    if run_record.status != RunStatus.SUCCESS:
        raise typer.Exit(1)
