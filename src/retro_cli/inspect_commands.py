"""Read-only commands: patterns, log, status."""

from datetime import timedelta

import typer

from retro_core.models import PatternStatus
from retro_core.util import to_iso, utc_now

from .common import exit_on_error, get_system
from .console import (
    console,
    create_table,
    key_value_table,
    print_error,
    print_info,
    print_table,
    status_text,
)


def patterns_command(
    status: str | None = typer.Option(
        None,
        "--status",
        "-s",
        help="Filter by status: discovered, active, archived or dismissed",
    ),
) -> None:
    """List discovered patterns."""
    status_filter = None
    if status:
        try:
            status_filter = PatternStatus(status.lower())
        except ValueError:
            print_error(f"Unknown status: {status}")
            raise typer.Exit(1)

    system = get_system()
    patterns = system.patterns(status_filter)
    if not patterns:
        console.print("[dim]No patterns found.[/dim]")
        return

    table = create_table("Patterns")
    table.add_column("Status", style="magenta")
    table.add_column("Conf", justify="right")
    table.add_column("Seen", justify="right")
    table.add_column("Target", style="blue")
    table.add_column("Description", style="green")

    for p in patterns:
        description = p.description if len(p.description) <= 60 else p.description[:57] + "..."
        if p.generation_failed:
            description += " [red](generation failed)[/red]"
        table.add_row(
            status_text(p.status),
            f"{p.confidence:.2f}",
            str(p.times_seen),
            p.suggested_target.value,
            description,
        )
    print_table(table)


def log_command(
    since_hours: int = typer.Option(24, "--since-hours", help="Show entries from the last N hours"),
) -> None:
    """Show audit log entries."""
    system = get_system()
    since = to_iso(utc_now() - timedelta(hours=since_hours))
    entries = system.audit_entries(since)
    if not entries:
        console.print("[dim]No audit entries.[/dim]")
        return

    table = create_table(f"Audit log (last {since_hours}h)")
    table.add_column("Time", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Details")
    for entry in entries:
        details = ", ".join(f"{k}={v}" for k, v in sorted(entry.details.items()))
        table.add_row(entry.timestamp[:19], entry.action, details)
    print_table(table)


def status_command() -> None:
    """Show store counts, last runs and anything waiting for you."""
    system = get_system()
    with exit_on_error():
        stats = system.get_stats()
        meta = system.metadata()
        nudge = system.pending_nudge()

    rows = [
        ("Database", stats["database_path"]),
        ("Schema", stats["schema_version"]),
        ("Sessions", str(stats.get("ingested_sessions_count", 0))),
        ("Unanalyzed", str(stats.get("unanalyzed_sessions", 0))),
    ]
    rows += [(f"Patterns ({s})", str(n)) for s, n in sorted(stats.get("patterns_by_status", {}).items())]
    rows += [(f"Items ({s})", str(n)) for s, n in sorted(stats.get("projections_by_status", {}).items())]
    rows += [
        ("Last ingest", meta.last_ingest_at or "never"),
        ("Last analyze", meta.last_analyze_at or "never"),
        ("Last generate", meta.last_apply_at or "never"),
    ]
    print_table(key_value_table("retro status", rows))

    if nudge["change_requests"]:
        print_info("Change requests opened since you last checked:")
        for url in nudge["change_requests"]:
            console.print(f"  {url}")
    if nudge["pending_review"]:
        print_info(f"{nudge['pending_review']} items waiting: run `retro review`")
    system.clear_nudge()
