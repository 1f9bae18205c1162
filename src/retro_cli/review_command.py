"""The retro review command: list pending items and take decisions."""

import typer

from retro_core.exceptions import ReviewInputError
from retro_core.models import Pattern, Projection
from retro_core.review import ReviewQueue, parse_selections
from retro_core.util import shorten_path

from .common import exit_on_error, get_system
from .console import console, print_error, print_success, print_warning, target_label

PROMPT = 'Enter selections (e.g. "1a 2a 3d" or "all:a")'


def show_items(items: list[Projection], patterns: dict[str, Pattern]) -> None:
    console.print(f"\nPending review ([cyan]{len(items)}[/cyan] items):\n")
    for number, item in enumerate(items, start=1):
        pattern = patterns.get(item.pattern_id)
        description = pattern.description if pattern else "(unknown pattern)"
        label = target_label(item.target_type)
        console.print(f"  [bold]{number}.[/bold] [dim]{label}[/dim] {description}")
        console.print(f"     Target: [dim]{shorten_path(item.target_path)}[/dim]")
        if pattern:
            console.print(
                f"     Seen [cyan]{pattern.times_seen}[/cyan] times "
                f"(confidence: {pattern.confidence:.2f})"
            )
        console.print()


def prompt_selection(queue: ReviewQueue, items: list[Projection]):
    """Prompt until the input contains decisions; None when left empty."""
    while True:
        text = typer.prompt(PROMPT, default="", show_default=False).strip()
        if not text:
            return None
        try:
            selection = parse_selections(text, len(items))
        except ReviewInputError as e:
            print_error(str(e))
            continue

        for index in selection.previews:
            console.rule(f"Preview: item {index + 1}")
            console.print(queue.preview(items, index), markup=False)
            console.rule()

        if selection.decisions:
            return selection


def review_command(
    dry_run: bool = typer.Option(False, "--dry-run", help="List pending items without acting"),
) -> None:
    """Review generated items: apply (a), skip (s), dismiss (d), preview (p)."""
    system = get_system()
    with exit_on_error():
        system.sync()
        queue = system.review_queue()
        items = queue.pending()

    if not items:
        console.print("[dim]No items pending review.[/dim]")
        return

    show_items(items, queue.patterns_for(items))
    if dry_run:
        console.print("[yellow bold]Dry run: no actions taken.[/yellow bold]")
        return

    console.print("[dim]Actions: apply (a), skip (s), dismiss (d), preview (p)[/dim]")
    selection = prompt_selection(queue, items)
    if selection is None:
        console.print("[dim]No selections made.[/dim]")
        return

    with exit_on_error():
        with system.lock():
            outcome = queue.execute(items, selection)

    if outcome.applied:
        print_success(f"Applied {len(outcome.applied)} items")
    if outcome.apply and outcome.apply.change_request_url:
        console.print(f"  Change request: {outcome.apply.change_request_url}")
    if outcome.dismissed:
        print_success(f"Dismissed {len(outcome.dismissed)} items")
    if outcome.skipped:
        console.print(f"[dim]Skipped {len(outcome.skipped)} items[/dim]")
    if outcome.apply:
        for projection_id, error in outcome.apply.personal_errors.items():
            print_warning(f"Could not write item {projection_id}: {error}")
        if outcome.apply.stale:
            print_warning(f"{len(outcome.apply.stale)} items were no longer pending and were left alone")

    if outcome.shared_error:
        print_error(
            f"Publishing shared items failed; they remain pending review: {outcome.shared_error}"
        )
        raise typer.Exit(1)
