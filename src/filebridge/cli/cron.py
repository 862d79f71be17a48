"""
filebridge cron - Validate a cron expression and preview its fire times.
"""

import typer
from rich.console import Console

from filebridge.exceptions import ConfigurationError, CronParseError
from filebridge.scheduler import next_fire_times

console = Console()


def cron(
    expression: str = typer.Argument(..., help="Cron expression, e.g. '*/15 * * * *'"),
    count: int = typer.Option(5, "--count", "-n", help="Number of fire times to show"),
    timezone: str = typer.Option("UTC", "--timezone", "-z", help="IANA timezone"),
) -> None:
    """Validate EXPRESSION and print its next fire times."""
    try:
        times = next_fire_times(expression, count, timezone=timezone)
    except (CronParseError, ConfigurationError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    console.print(f"[bold]{expression}[/bold] ({timezone})")
    for fire_time in times:
        console.print(f"  {fire_time.isoformat()}")
