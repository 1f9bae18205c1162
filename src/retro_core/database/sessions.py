"""
Session markers: what ingestion has recorded and what analysis has consumed.

All functions take an open connection so callers control the transaction.
"""

import logging
import sqlite3

from ..models import SessionMarker

logger = logging.getLogger(__name__)


def _project_clause(project: str | None) -> tuple[str, tuple]:
    if project is None:
        return "", ()
    return " AND project = ?", (project,)


def _scope_clause(project: str | None, since: str | None) -> tuple[str, tuple]:
    """Project filter plus an activity cutoff on the transcript mtime.

    Rows recorded without an mtime fall back to their ingestion time.
    """
    clause, params = _project_clause(project)
    if since is None:
        return clause, params
    return (
        clause + " AND COALESCE(NULLIF(file_mtime, ''), ingested_at) >= ?",
        params + (since,),
    )


def is_session_ingested(
    conn: sqlite3.Connection, session_id: str, file_size: int, file_mtime: str
) -> bool:
    """True if the session was recorded with the same size and mtime."""
    row = conn.execute(
        "SELECT file_size, file_mtime FROM ingested_sessions WHERE session_id = ?",
        (session_id,),
    ).fetchone()
    if row is None:
        return False
    return row["file_size"] == file_size and row["file_mtime"] == file_mtime


def record_ingested_session(conn: sqlite3.Connection, marker: SessionMarker) -> None:
    """Insert or refresh a session marker.

    A refreshed marker keeps its analyzed_at: analysis is recorded once.
    """
    conn.execute(
        """
        INSERT INTO ingested_sessions
        (session_id, project, session_path, file_size, file_mtime, ingested_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(session_id) DO UPDATE SET
            project = excluded.project,
            session_path = excluded.session_path,
            file_size = excluded.file_size,
            file_mtime = excluded.file_mtime,
            ingested_at = excluded.ingested_at
        """,
        (
            marker.session_id,
            marker.project,
            marker.session_path,
            marker.file_size,
            marker.file_mtime,
            marker.ingested_at,
        ),
    )


def get_session(conn: sqlite3.Connection, session_id: str) -> SessionMarker | None:
    row = conn.execute(
        "SELECT * FROM ingested_sessions WHERE session_id = ?", (session_id,)
    ).fetchone()
    return SessionMarker.from_row(row) if row else None


def get_unanalyzed_sessions(
    conn: sqlite3.Connection, project: str | None = None, since: str | None = None
) -> list[SessionMarker]:
    """Sessions not yet analyzed, oldest first.

    With ``since``, only sessions whose transcript changed at or after it.
    """
    clause, params = _scope_clause(project, since)
    rows = conn.execute(
        f"""
        SELECT * FROM ingested_sessions
        WHERE analyzed_at IS NULL{clause}
        ORDER BY ingested_at, session_id
        """,
        params,
    ).fetchall()
    return [SessionMarker.from_row(row) for row in rows]


def unanalyzed_session_count(
    conn: sqlite3.Connection, project: str | None = None, since: str | None = None
) -> int:
    clause, params = _scope_clause(project, since)
    row = conn.execute(
        f"SELECT COUNT(*) as cnt FROM ingested_sessions WHERE analyzed_at IS NULL{clause}",
        params,
    ).fetchone()
    return row["cnt"] if row else 0


def has_unanalyzed_sessions(
    conn: sqlite3.Connection, project: str | None = None, since: str | None = None
) -> bool:
    """Data trigger for the analyze stage."""
    return unanalyzed_session_count(conn, project, since) > 0


def mark_sessions_analyzed(
    conn: sqlite3.Connection, session_ids: list[str], analyzed_at: str
) -> int:
    """Set analyzed_at on the given sessions (only where still unset)."""
    marked = 0
    for session_id in session_ids:
        cursor = conn.execute(
            """
            UPDATE ingested_sessions SET analyzed_at = ?
            WHERE session_id = ? AND analyzed_at IS NULL
            """,
            (analyzed_at, session_id),
        )
        marked += cursor.rowcount
    return marked


def ingested_session_count(conn: sqlite3.Connection, project: str | None = None) -> int:
    clause, params = _project_clause(project)
    row = conn.execute(
        f"SELECT COUNT(*) as cnt FROM ingested_sessions WHERE 1=1{clause}", params
    ).fetchone()
    return row["cnt"] if row else 0


def last_ingested_at(conn: sqlite3.Connection) -> str | None:
    row = conn.execute("SELECT MAX(ingested_at) as latest FROM ingested_sessions").fetchone()
    return row["latest"] if row else None


def list_projects(conn: sqlite3.Connection) -> list[str]:
    """All distinct projects with ingested sessions."""
    rows = conn.execute(
        "SELECT DISTINCT project FROM ingested_sessions ORDER BY project"
    ).fetchall()
    return [row["project"] for row in rows]
