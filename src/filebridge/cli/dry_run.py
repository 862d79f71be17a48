"""
filebridge dry-run - Preview what a run would transfer.

Lists the source and destination only; nothing is written and no run is
recorded.
"""

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from filebridge.cli.common import initialize
from filebridge.exceptions import FileBridgeError
from filebridge.store import create_store
from filebridge.transfer import DryRunResult, TransferEngine

console = Console()


def dry_run(
    job_id: int = typer.Argument(..., help="Job id"),
    format: str = typer.Option("table", "--format", help="Output format: table, json"),
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Config file"),
) -> None:
    """Show which files a run of JOB_ID would transfer, skip or extract."""
    config = initialize(project_dir, env=env, config_file=config_file)
    engine = TransferEngine(create_store(config), config)

    try:
        result = asyncio.run(engine.dry_run(job_id))
    except FileBridgeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    if format == "json":
        typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
        return
    _print_table(result)


def _print_table(result: DryRunResult) -> None:
    table = Table(title=f"Dry run: {result.job_name}", title_style="bold")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Action")
    table.add_column("After transfer", style="dim")

    for entry in result.files:
        if entry.skip_reason == "filter":
            action = "[dim]skip (filter)[/dim]"
        elif entry.skip_reason == "exists":
            action = "[yellow]skip (unchanged)[/yellow]" if entry.unchanged else "[yellow]skip (exists)[/yellow]"
        elif entry.would_extract:
            action = "[green]extract[/green]"
        else:
            action = "[green]transfer[/green]"
        after = entry.post_action
        if entry.move_destination and not entry.would_skip:
            after = f"move -> {entry.move_destination}"
        table.add_row(entry.name, str(entry.size), action, after)

    console.print(table)
    summary = (
        f"Source: {result.source_path}\n"
        f"Destination: {result.destination_path}\n"
        f"Filter: {result.file_filter}\n\n"
        f"{result.total_in_source} in source, {result.total_matched} matched\n"
        f"[green]{result.would_transfer} to transfer[/green] ({result.total_bytes} bytes), "
        f"{result.skipped_by_filter} filtered, {result.skipped_by_exists} at destination"
    )
    console.print(Panel(summary, title="Plan"))
