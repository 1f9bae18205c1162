"""Pipeline commands: init, ingest, analyze, generate, sync, auto."""

from typing import Optional

import typer

from retro_core.config import CONFIG_FILENAME, DEFAULT_CONFIG, get_retro_home, save_config
from retro_core.database import RetroDatabase

from .common import exit_on_error, get_system
from .console import console, print_info, print_panel, print_success, print_warning

GLOBAL_OPTION = typer.Option(
    False, "--global", "-g", help="Operate on every project instead of the current repository"
)


def init_command(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
) -> None:
    """Create the retro data directory, database and default config."""
    home = get_retro_home()
    config_path = home / CONFIG_FILENAME

    with exit_on_error():
        db = RetroDatabase(retro_home=home)
        if config_path.exists() and not force:
            print_info(f"Config already exists: {config_path}")
        else:
            save_config(DEFAULT_CONFIG, config_path)
            print_success(f"Wrote config: {config_path}")

    print_panel(
        "retro initialized",
        f"Data directory: {home}\n"
        f"Database: {db.db_path} (schema {db.get_schema_version()})\n\n"
        "Next: [bold]retro analyze[/bold] then [bold]retro generate[/bold] "
        "and [bold]retro review[/bold]",
        style="green",
    )


def ingest_command(global_scope: bool = GLOBAL_OPTION) -> None:
    """Record new or changed session transcripts."""
    system = get_system()
    with exit_on_error():
        result = system.ingest(system.scope(global_scope))

    print_success(
        f"Ingested {result.sessions_ingested} sessions "
        f"({result.sessions_skipped} unchanged, {result.sessions_found} found)"
    )
    for error in result.errors:
        print_warning(error)


def analyze_command(
    global_scope: bool = GLOBAL_OPTION,
    since: Optional[int] = typer.Option(
        None,
        "--since",
        min=1,
        help="Analyze sessions active in the last N days (default: analysis.window_days)",
    ),
) -> None:
    """Ingest, then analyze unanalyzed sessions for patterns."""
    system = get_system()
    with exit_on_error():
        with console.status("Analyzing sessions..."):
            result = system.analyze(system.scope(global_scope), since)

    if result.sessions_analyzed == 0:
        console.print(f"[dim]No new sessions to analyze in the last {result.window_days} days.[/dim]")
        return

    print_success(
        f"Analyzed {result.sessions_analyzed} sessions: "
        f"{result.new_patterns} new patterns, {result.updated_patterns} updated"
    )
    if result.recovered or result.dropped:
        print_warning(
            f"{result.recovered} proposals recovered, {result.dropped} dropped "
            "(unknown or malformed references)"
        )
    console.print(f"[dim]Total active patterns: {result.total_patterns}[/dim]")
    if result.input_tokens or result.output_tokens:
        console.print(
            f"[dim]Tokens: {result.input_tokens} in, {result.output_tokens} out[/dim]"
        )


def generate_command(global_scope: bool = GLOBAL_OPTION) -> None:
    """Generate artifacts for qualifying patterns into the review queue."""
    system = get_system()
    with exit_on_error():
        with console.status("Generating artifacts..."):
            result = system.generate(system.scope(global_scope))

    if result.qualifying == 0:
        console.print("[dim]No qualifying patterns.[/dim]")
        return

    print_success(f"Queued {result.projections_created} items for review")
    if result.generation_failed:
        print_warning(f"Generation failed for {result.generation_failed} patterns")
    console.print("[dim]Run `retro review` to apply or dismiss them.[/dim]")


def sync_command() -> None:
    """Reset patterns whose change request was closed without merging."""
    system = get_system()
    with exit_on_error():
        result = system.sync()

    if result.checked == 0:
        console.print("[dim]No open change requests to check.[/dim]")
        return
    print_success(
        f"Checked {result.checked} change requests: {result.closed} closed, "
        f"{result.patterns_reset} patterns reset"
    )
    if result.errors:
        print_warning(f"{result.errors} change requests could not be checked")


def auto_command(global_scope: bool = GLOBAL_OPTION) -> None:
    """Run the auto pipeline silently (for hooks). Stage errors go to the audit log."""
    system = get_system()
    with exit_on_error():
        system.auto(system.scope(global_scope))
