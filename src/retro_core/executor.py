"""
Two-track executor for approved review items.

Personal track (global agents): each file is written in place, then its
projection becomes applied and its pattern active. Items succeed or fail
independently.

Shared track (skills, CLAUDE.md rules): all items of one batch go onto a
single branch cut from the forge's default branch, in one commit, behind one
change request. Only when the change request exists are the projections
marked applied (with its URL) and the patterns activated, in one
transaction. Any failure leaves every shared item pending_review.

Items are re-read before anything is written; one that is no longer
pending_review (dismissed or applied by another run) is left alone.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .artifacts import merge_claude_md, write_file_with_backup
from .database import RetroDatabase, activate_pattern, get_projection, mark_projection_applied
from .exceptions import ForgeError
from .forge import Forge
from .git import GitWorkspace
from .models import ApplyTrack, Pattern, Projection, ProjectionStatus, SuggestedTarget
from .util import to_iso, utc_now

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "retro/updates-"


@dataclass
class ApplyOutcome:
    """What happened to one batch of approved items."""

    personal_applied: list[str] = field(default_factory=list)
    personal_errors: dict[str, str] = field(default_factory=dict)
    shared_applied: list[str] = field(default_factory=list)
    shared_pending: list[str] = field(default_factory=list)
    change_request_url: str | None = None
    shared_error: str | None = None
    # Items decided on while listed but no longer pending when applied
    stale: list[str] = field(default_factory=list)

    @property
    def applied(self) -> list[str]:
        return self.personal_applied + self.shared_applied


def branch_name(now: datetime | None = None) -> str:
    return BRANCH_PREFIX + (now or utc_now()).strftime("%Y%m%d-%H%M%S")


def _change_request_text(items: list[Projection], patterns: dict[str, Pattern]) -> tuple[str, str]:
    title = f"retro: update {len(items)} context items"
    lines = ["## Retro Auto-Generated Updates", ""]
    for item in items:
        label = "skill" if item.target_type == SuggestedTarget.SKILL else "rule"
        pattern = patterns.get(item.pattern_id)
        description = pattern.description if pattern else item.target_path
        lines.append(f"- **[{label}]** {description}")
    lines.extend(["", "---", "Generated by `retro review`."])
    return title, "\n".join(lines)


class Executor:
    """Applies approved projections on their track."""

    def __init__(
        self,
        db: RetroDatabase,
        backup_dir: Path,
        git: GitWorkspace | None = None,
        forge: Forge | None = None,
    ):
        self.db = db
        self.backup_dir = backup_dir
        self.git = git
        self.forge = forge

    def apply(self, items: list[Projection], patterns: dict[str, Pattern]) -> ApplyOutcome:
        """Apply personal items first, then publish shared items as one batch."""
        outcome = ApplyOutcome()
        items, outcome.stale = self._still_pending(items)
        personal = [p for p in items if p.track == ApplyTrack.PERSONAL]
        shared = [p for p in items if p.track == ApplyTrack.SHARED]

        for item in personal:
            try:
                self._apply_personal(item)
            except OSError as e:
                logger.warning(f"Failed to write {item.target_path}: {e}")
                outcome.personal_errors[item.id] = str(e)
            else:
                outcome.personal_applied.append(item.id)

        if shared:
            try:
                url = self._publish_shared(shared, patterns)
            except (ForgeError, OSError) as e:
                logger.warning(f"Shared publish failed; {len(shared)} items stay pending: {e}")
                outcome.shared_error = str(e)
                outcome.shared_pending = [p.id for p in shared]
            else:
                outcome.change_request_url = url
                outcome.shared_applied = self._mark_shared_applied(shared, url)

        return outcome

    def _still_pending(self, items: list[Projection]) -> tuple[list[Projection], list[str]]:
        """Split items into those still pending review (re-read) and stale ids."""
        pending: list[Projection] = []
        stale: list[str] = []
        with self.db.connection() as conn:
            for item in items:
                current = get_projection(conn, item.id)
                if current is None or current.status != ProjectionStatus.PENDING_REVIEW:
                    logger.warning(f"Item {item.id} is no longer pending; not applied")
                    stale.append(item.id)
                else:
                    pending.append(current)
        return pending, stale

    # -------------------------------------------------------------------------
    # Personal track
    # -------------------------------------------------------------------------

    def _apply_personal(self, item: Projection) -> None:
        write_file_with_backup(Path(item.target_path), item.content, self.backup_dir)
        applied_at = to_iso(utc_now())
        with self.db.connection(immediate=True) as conn:
            if mark_projection_applied(conn, item.id, applied_at):
                activate_pattern(conn, item.pattern_id, applied_at)
        logger.info(f"Applied personal item {item.id} to {item.target_path}")

    # -------------------------------------------------------------------------
    # Shared track
    # -------------------------------------------------------------------------

    def _write_shared_files(self, items: list[Projection]) -> list[str]:
        """Write every shared item into the working tree; returns paths written."""
        rules_by_file: dict[str, list[str]] = defaultdict(list)
        written: list[str] = []

        for item in items:
            if item.target_type == SuggestedTarget.CLAUDE_MD:
                rules_by_file[item.target_path].append(item.content)
                continue
            write_file_with_backup(Path(item.target_path), item.content, self.backup_dir)
            written.append(item.target_path)

        for target, rules in rules_by_file.items():
            path = Path(target)
            existing = path.read_text(encoding="utf-8") if path.exists() else ""
            write_file_with_backup(path, merge_claude_md(existing, rules), self.backup_dir)
            written.append(target)

        return written

    def _publish_shared(self, items: list[Projection], patterns: dict[str, Pattern]) -> str:
        """Branch, write, commit, push and open one change request.

        The original branch (and any stashed work) is restored whatever happens.

        Raises:
            ForgeError: No forge/workspace, or any git/forge step failed
        """
        if self.git is None or self.forge is None:
            raise ForgeError("Shared items need a git repository and a forge")
        if not self.forge.is_available():
            raise ForgeError("Forge CLI is not available")

        base = self.forge.default_branch()
        original = self.git.current_branch()
        try:
            self.git.fetch(base)
        except ForgeError as e:
            logger.warning(f"Fetching {base} failed, branching from last known state: {e}")

        branch = branch_name()
        title, body = _change_request_text(items, patterns)
        stashed = self.git.stash_push()
        try:
            self.git.create_branch(branch, f"origin/{base}")
            try:
                files = self._write_shared_files(items)
                self.git.commit_files(
                    files, f"retro: update {len(files)} shared context items"
                )
                self.git.push_current_branch()
                url = self.forge.create_change_request(branch, base, title, body)
            finally:
                self.git.checkout(original)
        finally:
            if stashed:
                self.git.stash_pop()

        logger.info(f"Opened change request {url} for {len(items)} items")
        return url

    def _mark_shared_applied(self, items: list[Projection], url: str) -> list[str]:
        applied_at = to_iso(utc_now())
        applied: list[str] = []
        with self.db.connection(immediate=True) as conn:
            for item in items:
                if mark_projection_applied(conn, item.id, applied_at, change_request_url=url):
                    activate_pattern(conn, item.pattern_id, applied_at)
                    applied.append(item.id)
        return applied
