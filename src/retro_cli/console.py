"""Console output for the retro CLI.

Usage:
    from retro_cli.console import console, print_success, print_error

    print_success("Applied 3 items")
    print_error("Publishing shared items failed")

Errors go to stderr so that hook invocations keep stdout clean.
"""

from collections.abc import Iterable

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from retro_core.models import PatternStatus, SuggestedTarget

console = Console()
err_console = Console(stderr=True)

STATUS_STYLES = {
    PatternStatus.DISCOVERED: "[yellow]discovered[/yellow]",
    PatternStatus.ACTIVE: "[green]active[/green]",
    PatternStatus.ARCHIVED: "[dim]archived[/dim]",
    PatternStatus.DISMISSED: "[red]dismissed[/red]",
}

TARGET_LABELS = {
    SuggestedTarget.SKILL: "[skill]",
    SuggestedTarget.CLAUDE_MD: "[rule+]",
    SuggestedTarget.GLOBAL_AGENT: "[agent]",
}


def status_text(status: PatternStatus) -> str:
    return STATUS_STYLES.get(status, status.value)


def target_label(target: SuggestedTarget) -> str:
    return TARGET_LABELS.get(target, "[item]")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def print_panel(title: str, content: str, style: str = "blue") -> None:
    console.print(Panel(content, title=title, border_style=style))


def create_table(title: str = "") -> Table:
    return Table(title=title) if title else Table()


def key_value_table(title: str, rows: Iterable[tuple[str, str]]) -> Table:
    """Two-column table of labels and values (used by status)."""
    table = create_table(title)
    table.add_column("Item", style="cyan")
    table.add_column("Value")
    for label, value in rows:
        table.add_row(label, value)
    return table


def print_table(table: Table) -> None:
    console.print(table)


__all__ = [
    "console",
    "err_console",
    "status_text",
    "target_label",
    "print_success",
    "print_error",
    "print_warning",
    "print_info",
    "print_panel",
    "create_table",
    "key_value_table",
    "print_table",
]
