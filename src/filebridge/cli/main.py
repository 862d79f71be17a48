"""
Main CLI entry point.
"""

import typer

from filebridge import __version__
from filebridge.cli import serve
from filebridge.cli.cron import cron
from filebridge.cli.dry_run import dry_run
from filebridge.cli.run import run


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"filebridge version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="filebridge",
    help="FileBridge - scheduled file transfers between SFTP servers and SMB shares",
    add_completion=True,
)

app.add_typer(serve.app, name="serve")
app.command(name="run")(run)
app.command(name="dry-run")(dry_run)
app.command(name="cron")(cron)


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        help="Show version and exit.",
    ),
):
    """
    FileBridge - scheduled file transfers between SFTP servers and SMB shares.

    Run 'filebridge <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        if not version:
            typer.echo(ctx.get_help())
            raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
