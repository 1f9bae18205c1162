"""
Projection storage: the review queue.

A pattern has at most one open (pending_review or applied) projection. The
partial unique index idx_projections_one_open enforces this; inserts that
would violate it are ignored rather than raised.
"""

import logging
import sqlite3

from ..models import PatternStatus, Projection, ProjectionStatus

logger = logging.getLogger(__name__)


def insert_projection(conn: sqlite3.Connection, projection: Projection) -> bool:
    """Queue a projection.

    Returns:
        False if the pattern already has an open projection (nothing inserted)
    """
    data = projection.to_dict()
    columns = ", ".join(data.keys())
    placeholders = ", ".join("?" for _ in data)
    cursor = conn.execute(
        f"INSERT OR IGNORE INTO projections ({columns}) VALUES ({placeholders})",
        tuple(data.values()),
    )
    if cursor.rowcount == 0:
        logger.debug(f"Pattern {projection.pattern_id} already has an open projection")
        return False
    return True


def get_projection(conn: sqlite3.Connection, projection_id: str) -> Projection | None:
    row = conn.execute(
        "SELECT * FROM projections WHERE id = ?", (projection_id,)
    ).fetchone()
    return Projection.from_row(row) if row else None


def get_open_projection(conn: sqlite3.Connection, pattern_id: str) -> Projection | None:
    row = conn.execute(
        "SELECT * FROM projections WHERE pattern_id = ? AND status IN (?, ?)",
        (
            pattern_id,
            ProjectionStatus.PENDING_REVIEW.value,
            ProjectionStatus.APPLIED.value,
        ),
    ).fetchone()
    return Projection.from_row(row) if row else None


def get_pending_review_projections(
    conn: sqlite3.Connection, project: str | None = None
) -> list[Projection]:
    """Pending items joined to patterns that are still open, oldest first.

    Items whose pattern was dismissed or archived are excluded.
    """
    params: list = [
        ProjectionStatus.PENDING_REVIEW.value,
        PatternStatus.DISCOVERED.value,
        PatternStatus.ACTIVE.value,
    ]
    sql = """
        SELECT pr.* FROM projections pr
        JOIN patterns p ON p.id = pr.pattern_id
        WHERE pr.status = ? AND p.status IN (?, ?)
    """
    if project is not None:
        sql += " AND p.project = ?"
        params.append(project)
    sql += " ORDER BY pr.created_at, pr.id"
    rows = conn.execute(sql, tuple(params)).fetchall()
    return [Projection.from_row(row) for row in rows]


def pending_review_count(conn: sqlite3.Connection) -> int:
    row = conn.execute(
        """
        SELECT COUNT(*) as cnt FROM projections pr
        JOIN patterns p ON p.id = pr.pattern_id
        WHERE pr.status = ? AND p.status IN (?, ?)
        """,
        (
            ProjectionStatus.PENDING_REVIEW.value,
            PatternStatus.DISCOVERED.value,
            PatternStatus.ACTIVE.value,
        ),
    ).fetchone()
    return row["cnt"] if row else 0


def mark_projection_applied(
    conn: sqlite3.Connection,
    projection_id: str,
    applied_at: str,
    change_request_url: str | None = None,
) -> int:
    """Move a pending projection to applied (no-op for other statuses)."""
    cursor = conn.execute(
        """
        UPDATE projections
        SET status = ?, applied_at = ?, change_request_url = ?
        WHERE id = ? AND status = ?
        """,
        (
            ProjectionStatus.APPLIED.value,
            applied_at,
            change_request_url,
            projection_id,
            ProjectionStatus.PENDING_REVIEW.value,
        ),
    )
    return cursor.rowcount


def delete_pending_projection(conn: sqlite3.Connection, projection_id: str) -> int:
    cursor = conn.execute(
        "DELETE FROM projections WHERE id = ? AND status = ?",
        (projection_id, ProjectionStatus.PENDING_REVIEW.value),
    )
    return cursor.rowcount


def get_change_request_urls(conn: sqlite3.Connection) -> list[str]:
    """Distinct change-request URLs of applied projections."""
    rows = conn.execute(
        """
        SELECT DISTINCT change_request_url FROM projections
        WHERE status = ? AND change_request_url IS NOT NULL
        ORDER BY change_request_url
        """,
        (ProjectionStatus.APPLIED.value,),
    ).fetchall()
    return [row["change_request_url"] for row in rows]


def delete_projections_by_change_request(
    conn: sqlite3.Connection, change_request_url: str
) -> list[str]:
    """Delete applied projections linked to a change request.

    Returns:
        Pattern ids that lost their projection
    """
    rows = conn.execute(
        """
        SELECT DISTINCT pattern_id FROM projections
        WHERE change_request_url = ? AND status = ?
        """,
        (change_request_url, ProjectionStatus.APPLIED.value),
    ).fetchall()
    pattern_ids = [row["pattern_id"] for row in rows]

    conn.execute(
        "DELETE FROM projections WHERE change_request_url = ? AND status = ?",
        (change_request_url, ProjectionStatus.APPLIED.value),
    )
    return pattern_ids


def change_requests_applied_since(
    conn: sqlite3.Connection, since: str | None
) -> list[str]:
    """Change-request URLs with items applied after ``since`` (all if None)."""
    params: list = [ProjectionStatus.APPLIED.value]
    sql = """
        SELECT DISTINCT change_request_url FROM projections
        WHERE status = ? AND change_request_url IS NOT NULL
    """
    if since is not None:
        sql += " AND applied_at > ?"
        params.append(since)
    rows = conn.execute(sql + " ORDER BY change_request_url", tuple(params)).fetchall()
    return [row["change_request_url"] for row in rows]
