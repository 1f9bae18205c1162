"""
Review queue: pending_review items and batched human decisions.

Selections look like ``"1a 2d 3s"`` (apply / dismiss / skip by 1-based
index), ``"2p"`` to preview, or ``"all:a"`` for every item. Parsing is
strict: any bad token rejects the whole input and nothing is mutated.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from . import audit_log
from .database import (
    RetroDatabase,
    delete_pending_projection,
    get_patterns,
    get_pending_review_projections,
    update_pattern_status,
)
from .exceptions import ReviewInputError
from .executor import ApplyOutcome, Executor
from .models import Pattern, PatternStatus, Projection

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"^(\d+)([asdp])$", re.IGNORECASE)
_ALL_RE = re.compile(r"^all:([asd])$", re.IGNORECASE)


class ReviewAction(str, Enum):
    APPLY = "a"
    SKIP = "s"
    DISMISS = "d"
    PREVIEW = "p"


@dataclass
class ReviewSelection:
    """Parsed operator input. Indices are 0-based."""

    decisions: dict[int, ReviewAction] = field(default_factory=dict)
    previews: list[int] = field(default_factory=list)

    @property
    def preview_only(self) -> bool:
        return bool(self.previews) and not self.decisions

    @property
    def is_empty(self) -> bool:
        return not self.previews and not self.decisions


def _set_decision(selection: ReviewSelection, index: int, action: ReviewAction, token: str) -> None:
    current = selection.decisions.get(index)
    if current is not None and current != action:
        raise ReviewInputError(f"Conflicting decisions for item {index + 1} ('{token}')")
    selection.decisions[index] = action


def parse_selections(text: str, item_count: int) -> ReviewSelection:
    """Parse review input.

    Raises:
        ReviewInputError: Unknown token, out-of-range item, or two different
                          decisions for the same item
    """
    selection = ReviewSelection()
    for token in text.split():
        all_match = _ALL_RE.match(token)
        if all_match:
            action = ReviewAction(all_match.group(1).lower())
            for index in range(item_count):
                _set_decision(selection, index, action, token)
            continue

        match = _TOKEN_RE.match(token)
        if not match:
            raise ReviewInputError(
                f"Invalid selection '{token}'. Use e.g. \"1a 2d 3s\", \"2p\" or \"all:a\"."
            )

        number = int(match.group(1))
        if number < 1 or number > item_count:
            raise ReviewInputError(f"Item {number} is out of range (1-{item_count})")

        action = ReviewAction(match.group(2).lower())
        if action == ReviewAction.PREVIEW:
            if number - 1 not in selection.previews:
                selection.previews.append(number - 1)
        else:
            _set_decision(selection, number - 1, action, token)

    return selection


@dataclass
class ReviewOutcome:
    applied: list[str] = field(default_factory=list)
    dismissed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    apply: ApplyOutcome | None = None

    @property
    def shared_error(self) -> str | None:
        return self.apply.shared_error if self.apply else None


class ReviewQueue:
    """Lists pending items and executes batched decisions on them."""

    def __init__(self, db: RetroDatabase, executor: Executor, audit_path: Path):
        self.db = db
        self.executor = executor
        self.audit_path = audit_path

    def pending(self, project: str | None = None) -> list[Projection]:
        with self.db.connection() as conn:
            return get_pending_review_projections(conn, project)

    def patterns_for(self, items: list[Projection]) -> dict[str, Pattern]:
        wanted = {item.pattern_id for item in items}
        with self.db.connection() as conn:
            return {p.id: p for p in get_patterns(conn) if p.id in wanted}

    @staticmethod
    def preview(items: list[Projection], index: int) -> str:
        """Read-only view of an item's content."""
        return items[index].content

    def dismiss(self, item: Projection) -> bool:
        """Delete the projection and dismiss its pattern, both or neither."""
        with self.db.connection(immediate=True) as conn:
            if not delete_pending_projection(conn, item.id):
                logger.warning(f"Item {item.id} is no longer pending; not dismissed")
                return False
            update_pattern_status(conn, item.pattern_id, PatternStatus.DISMISSED)
        audit_log.append(
            self.audit_path,
            "review_dismissed",
            {"projection_id": item.id, "pattern_id": item.pattern_id, "target": item.target_path},
        )
        return True

    def execute(self, items: list[Projection], selection: ReviewSelection) -> ReviewOutcome:
        """Run the decisions in ``selection`` against ``items`` (as listed)."""
        outcome = ReviewOutcome()
        to_apply: list[Projection] = []

        for index in sorted(selection.decisions):
            item = items[index]
            action = selection.decisions[index]
            if action == ReviewAction.SKIP:
                outcome.skipped.append(item.id)
            elif action == ReviewAction.DISMISS:
                if self.dismiss(item):
                    outcome.dismissed.append(item.id)
            elif action == ReviewAction.APPLY:
                to_apply.append(item)

        if to_apply:
            result = self.executor.apply(to_apply, self.patterns_for(to_apply))
            outcome.apply = result
            outcome.applied = result.applied
            by_id = {item.id: item for item in to_apply}
            for projection_id in result.applied:
                item = by_id[projection_id]
                audit_log.append(
                    self.audit_path,
                    "review_applied",
                    {
                        "projection_id": item.id,
                        "pattern_id": item.pattern_id,
                        "track": item.track.value,
                        "target": item.target_path,
                        "change_request_url": (
                            result.change_request_url if projection_id in result.shared_applied else None
                        ),
                    },
                )
            if result.shared_error:
                audit_log.append(
                    self.audit_path,
                    "review_apply_error",
                    {"error": result.shared_error, "pending": result.shared_pending},
                )
            for projection_id, error in result.personal_errors.items():
                audit_log.append(
                    self.audit_path,
                    "review_apply_error",
                    {"error": error, "pending": [projection_id]},
                )

        logger.info(
            f"Review: {len(outcome.applied)} applied, {len(outcome.dismissed)} dismissed, "
            f"{len(outcome.skipped)} skipped"
        )
        return outcome
