"""
Pattern storage: inserts, merges, status transitions and qualification queries.

Lifecycle: discovered -> active -> (archived); discovered/active -> dismissed.
Archived and dismissed are terminal; merges never touch them.
"""

import json
import logging
import sqlite3
from collections.abc import Iterable

from ..models import Pattern, PatternStatus, ProjectionStatus, SuggestedTarget

logger = logging.getLogger(__name__)

OPEN_STATUSES = (PatternStatus.DISCOVERED, PatternStatus.ACTIVE)

_OPEN_PROJECTION_STATUSES = (
    ProjectionStatus.PENDING_REVIEW.value,
    ProjectionStatus.APPLIED.value,
)


def insert_pattern(conn: sqlite3.Connection, pattern: Pattern) -> None:
    data = pattern.to_dict()
    columns = ", ".join(data.keys())
    placeholders = ", ".join("?" for _ in data)
    conn.execute(
        f"INSERT INTO patterns ({columns}) VALUES ({placeholders})",
        tuple(data.values()),
    )


def get_pattern(conn: sqlite3.Connection, pattern_id: str) -> Pattern | None:
    row = conn.execute("SELECT * FROM patterns WHERE id = ?", (pattern_id,)).fetchone()
    return Pattern.from_row(row) if row else None


def get_patterns(
    conn: sqlite3.Connection,
    statuses: Iterable[PatternStatus] | None = None,
    project: str | None = None,
) -> list[Pattern]:
    """Get patterns filtered by status and scope.

    Args:
        statuses: Status filter (None = all statuses)
        project: Project scope (None = every project, i.e. global scope)
    """
    conditions = []
    params: list = []

    if statuses is not None:
        values = [s.value for s in statuses]
        conditions.append(f"status IN ({', '.join('?' for _ in values)})")
        params.extend(values)
    if project is not None:
        conditions.append("project = ?")
        params.append(project)

    where_clause = " AND ".join(conditions) if conditions else "1=1"
    rows = conn.execute(
        f"SELECT * FROM patterns WHERE {where_clause} ORDER BY first_seen, id",
        tuple(params),
    ).fetchall()
    return [Pattern.from_row(row) for row in rows]


def update_pattern_merge(
    conn: sqlite3.Connection,
    pattern_id: str,
    new_sessions: Iterable[str],
    new_confidence: float,
    seen_at: str,
    additional_times_seen: int,
    related_files: Iterable[str] = (),
) -> bool:
    """Fold new evidence into an open pattern.

    confidence = max(old, new); times_seen grows; source_sessions and
    related_files are unions; last_seen = max(old, seen_at).

    Returns:
        False if the pattern is missing or no longer open (nothing changed)
    """
    row = conn.execute(
        "SELECT * FROM patterns WHERE id = ?", (pattern_id,)
    ).fetchone()
    if row is None:
        return False

    existing = Pattern.from_row(row)
    if existing.status not in OPEN_STATUSES:
        logger.warning(
            f"Ignoring merge into {existing.status.value} pattern {pattern_id}"
        )
        return False

    sessions = sorted(set(existing.source_sessions) | set(new_sessions))
    files = sorted(set(existing.related_files) | set(related_files))
    confidence = max(existing.confidence, new_confidence)
    last_seen = max(existing.last_seen, seen_at)

    conn.execute(
        """
        UPDATE patterns
        SET confidence = ?, times_seen = times_seen + ?, source_sessions = ?,
            related_files = ?, last_seen = ?
        WHERE id = ?
        """,
        (
            confidence,
            max(0, additional_times_seen),
            json.dumps(sessions),
            json.dumps(files),
            last_seen,
            pattern_id,
        ),
    )
    return True


def update_pattern_status(
    conn: sqlite3.Connection, pattern_id: str, status: PatternStatus
) -> int:
    cursor = conn.execute(
        "UPDATE patterns SET status = ? WHERE id = ?", (status.value, pattern_id)
    )
    return cursor.rowcount


def activate_pattern(conn: sqlite3.Connection, pattern_id: str, projected_at: str) -> int:
    """Mark a pattern active after its projection was applied."""
    cursor = conn.execute(
        """
        UPDATE patterns SET status = ?, last_projected = ?
        WHERE id = ? AND status IN (?, ?)
        """,
        (
            PatternStatus.ACTIVE.value,
            projected_at,
            pattern_id,
            PatternStatus.DISCOVERED.value,
            PatternStatus.ACTIVE.value,
        ),
    )
    return cursor.rowcount


def reset_pattern_to_discovered(conn: sqlite3.Connection, pattern_id: str) -> int:
    """Make a pattern eligible for regeneration (terminal statuses untouched)."""
    cursor = conn.execute(
        """
        UPDATE patterns SET status = ?
        WHERE id = ? AND status NOT IN (?, ?)
        """,
        (
            PatternStatus.DISCOVERED.value,
            pattern_id,
            PatternStatus.ARCHIVED.value,
            PatternStatus.DISMISSED.value,
        ),
    )
    return cursor.rowcount


def set_generation_failed(conn: sqlite3.Connection, pattern_id: str, failed: bool = True) -> None:
    conn.execute(
        "UPDATE patterns SET generation_failed = ? WHERE id = ?",
        (1 if failed else 0, pattern_id),
    )


def pattern_count_by_status(conn: sqlite3.Connection, status: PatternStatus) -> int:
    row = conn.execute(
        "SELECT COUNT(*) as cnt FROM patterns WHERE status = ?", (status.value,)
    ).fetchone()
    return row["cnt"] if row else 0


def _qualifying_sql(project: str | None) -> tuple[str, list]:
    params: list = [
        PatternStatus.DISCOVERED.value,
        PatternStatus.ACTIVE.value,
        SuggestedTarget.DB_ONLY.value,
        *_OPEN_PROJECTION_STATUSES,
    ]
    sql = """
        SELECT p.* FROM patterns p
        WHERE p.status IN (?, ?)
        AND p.confidence >= ?
        AND p.suggested_target != ?
        AND p.generation_failed = 0
        AND NOT EXISTS (
            SELECT 1 FROM projections pr
            WHERE pr.pattern_id = p.id AND pr.status IN (?, ?)
        )
    """
    if project is not None:
        sql += " AND p.project = ?"
        params.append(project)
    return sql, params


def get_qualifying_patterns(
    conn: sqlite3.Connection, threshold: float, project: str | None = None
) -> list[Pattern]:
    """Patterns eligible for artifact generation.

    Criteria:
    - status is discovered or active
    - confidence >= threshold
    - suggested_target is not db_only
    - generation has not failed
    - no pending_review or applied projection exists
    """
    sql, params = _qualifying_sql(project)
    params.insert(2, threshold)
    rows = conn.execute(
        sql + " ORDER BY p.confidence DESC, p.times_seen DESC, p.id", tuple(params)
    ).fetchall()
    return [Pattern.from_row(row) for row in rows]


def has_unprojected_patterns(
    conn: sqlite3.Connection, threshold: float, project: str | None = None
) -> bool:
    """Data trigger for the generate stage."""
    sql, params = _qualifying_sql(project)
    params.insert(2, threshold)
    row = conn.execute(f"SELECT EXISTS ({sql}) as found", tuple(params)).fetchone()
    return bool(row["found"]) if row else False
