"""Retro CLI entry point."""

import typer

from . import __version__
from .console import console
from .inspect_commands import log_command, patterns_command, status_command
from .pipeline import (
    analyze_command,
    auto_command,
    generate_command,
    ingest_command,
    init_command,
    sync_command,
)
from .review_command import review_command

app = typer.Typer(
    name="retro",
    help="Retro - curate agent knowledge from your session history",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"retro version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Retro - curate agent knowledge from your session history."""
    pass


app.command(name="init")(init_command)
app.command(name="ingest")(ingest_command)
app.command(name="analyze")(analyze_command)
app.command(name="generate")(generate_command)
app.command(name="review")(review_command)
app.command(name="sync")(sync_command)
app.command(name="auto")(auto_command)
app.command(name="patterns")(patterns_command)
app.command(name="log")(log_command)
app.command(name="status")(status_command)


if __name__ == "__main__":
    app()
