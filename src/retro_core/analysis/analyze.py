"""
Analysis: feed unanalyzed sessions to the backend in batches and merge.

Each batch commits its merge plan together with the analyzed_at markers of
its sessions, so a failed batch leaves those sessions unanalyzed and earlier
batches intact.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from ..config import get_analysis_window_days

from ..database import (
    RetroDatabase,
    get_patterns,
    get_unanalyzed_sessions,
    mark_sessions_analyzed,
    pattern_count_by_status,
)
from ..models import PatternStatus
from ..util import to_iso, utc_now
from .backend import AnalysisBackend
from .merge import apply_merge_plan, process_updates

logger = logging.getLogger(__name__)

BATCH_SIZE = 20


@dataclass
class AnalyzeResult:
    sessions_analyzed: int = 0
    new_patterns: int = 0
    updated_patterns: int = 0
    redirected: int = 0
    recovered: int = 0
    dropped: int = 0
    total_patterns: int = 0
    window_days: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    def to_dict(self) -> dict:
        return {
            "sessions_analyzed": self.sessions_analyzed,
            "new_patterns": self.new_patterns,
            "updated_patterns": self.updated_patterns,
            "redirected": self.redirected,
            "recovered": self.recovered,
            "dropped": self.dropped,
            "total_patterns": self.total_patterns,
            "window_days": self.window_days,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
        }


def analysis_cutoff(window_days: int, now: datetime | None = None) -> str:
    """Earliest transcript mtime still inside the analysis window."""
    return to_iso((now or utc_now()) - timedelta(days=window_days))


def analyze(
    db: RetroDatabase,
    backend: AnalysisBackend,
    config: dict[str, Any],
    project: str | None = None,
    window_days: int | None = None,
    now: datetime | None = None,
) -> AnalyzeResult:
    """Analyze every unanalyzed session in scope and in the window.

    ``window_days`` defaults to ``analysis.window_days``; sessions whose
    transcript last changed before the window are left unanalyzed.

    Raises:
        BackendError: The backend failed; batches before it stay committed
    """
    batch_size = int(config.get("analysis", {}).get("batch_size", BATCH_SIZE)) or BATCH_SIZE
    if window_days is None:
        window_days = get_analysis_window_days(config)
    result = AnalyzeResult(window_days=window_days)
    since = analysis_cutoff(window_days, now)

    with db.connection() as conn:
        sessions = get_unanalyzed_sessions(conn, project, since)

    if not sessions:
        return result

    usage_before = replace(backend.usage)
    for start in range(0, len(sessions), batch_size):
        batch = sessions[start:start + batch_size]
        readable = [s for s in batch if Path(s.session_path).exists()]
        for missing in set(s.session_id for s in batch) - set(s.session_id for s in readable):
            logger.warning(f"Session file not found, marking analyzed: {missing}")

        # Reload so patterns inserted by earlier batches are merge candidates
        with db.connection() as conn:
            existing = get_patterns(conn, [PatternStatus.DISCOVERED, PatternStatus.ACTIVE], project)
            dismissed = get_patterns(conn, [PatternStatus.DISMISSED], project)

        updates = backend.propose_patterns(readable, existing) if readable else []
        seen_at = to_iso(utc_now())
        plan = process_updates(updates, existing, project, dismissed=dismissed, seen_at=seen_at)

        with db.connection(immediate=True) as conn:
            inserted, updated = apply_merge_plan(conn, plan, seen_at)
            mark_sessions_analyzed(conn, [s.session_id for s in batch], seen_at)

        result.sessions_analyzed += len(batch)
        result.new_patterns += inserted
        result.updated_patterns += updated
        result.redirected += plan.redirected
        result.recovered += plan.recovered
        result.dropped += plan.dropped
        logger.info(
            f"Analyzed batch of {len(batch)} sessions: {inserted} new, {updated} updated"
        )

    spent = backend.usage.since(usage_before)
    result.input_tokens = spent.input_tokens
    result.output_tokens = spent.output_tokens

    with db.connection() as conn:
        result.total_patterns = pattern_count_by_status(
            conn, PatternStatus.DISCOVERED
        ) + pattern_count_by_status(conn, PatternStatus.ACTIVE)
    return result
