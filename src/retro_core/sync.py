"""
Sync reconciler: roll back state for change requests closed without merge.

Each distinct change-request URL on an applied projection is queried once.
Closed: every projection carrying that URL is deleted and its pattern reset
to discovered (so it can be generated again), in one transaction, followed
by one ``sync_reset`` audit entry. Open or merged: nothing to do. A failed query leaves that URL for the next
run and is recorded as a ``sync_error`` audit entry.

Running it again finds no projections for that URL, so it is a no-op.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from . import audit_log
from .database import (
    RetroDatabase,
    delete_projections_by_change_request,
    get_change_request_urls,
    reset_pattern_to_discovered,
)
from .exceptions import ForgeError
from .forge import ChangeRequestState, Forge

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    checked: int = 0
    closed: int = 0
    projections_removed: int = 0
    patterns_reset: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "closed": self.closed,
            "projections_removed": self.projections_removed,
            "patterns_reset": self.patterns_reset,
            "errors": self.errors,
        }


def sync(db: RetroDatabase, forge: Forge | None, audit_path: Path) -> SyncResult:
    """Reconcile applied projections against their change requests."""
    result = SyncResult()
    if forge is None or not forge.is_available():
        logger.debug("sync: forge not available, skipping")
        return result

    with db.connection() as conn:
        urls = get_change_request_urls(conn)

    for url in urls:
        result.checked += 1
        try:
            state = forge.change_request_state(url)
        except ForgeError as e:
            logger.warning(f"sync: could not check {url}: {e}")
            audit_log.append(audit_path, "sync_error", {"change_request_url": url, "error": str(e)})
            result.errors += 1
            continue

        if state != ChangeRequestState.CLOSED:
            continue

        with db.connection(immediate=True) as conn:
            pattern_ids = delete_projections_by_change_request(conn, url)
            reset = sum(reset_pattern_to_discovered(conn, pid) for pid in pattern_ids)

        if not pattern_ids:
            continue

        result.closed += 1
        result.projections_removed += len(pattern_ids)
        result.patterns_reset += reset
        audit_log.append(
            audit_path,
            "sync_reset",
            {"change_request_url": url, "pattern_ids": pattern_ids, "patterns_reset": reset},
        )
        logger.info(f"sync: {url} closed without merge; reset {reset} patterns")

    return result
