"""Single-row orchestration metadata (auto-mode last-run timestamps)."""

import sqlite3

from ..models import OrchestrationMetadata

STAGE_FIELDS = {
    "ingest": "last_ingest_at",
    "analyze": "last_analyze_at",
    "apply": "last_apply_at",
    "nudge": "last_nudge_at",
}


def get_metadata(conn: sqlite3.Connection) -> OrchestrationMetadata:
    row = conn.execute("SELECT * FROM orchestration_meta WHERE id = 1").fetchone()
    return OrchestrationMetadata.from_row(row)


def touch_stage(conn: sqlite3.Connection, stage: str, timestamp: str) -> None:
    """Record the last-run time of a stage.

    Raises:
        ValueError: If stage is not one of STAGE_FIELDS
    """
    column = STAGE_FIELDS.get(stage)
    if column is None:
        raise ValueError(f"Unknown stage: {stage}")
    conn.execute("INSERT OR IGNORE INTO orchestration_meta (id) VALUES (1)")
    conn.execute(f"UPDATE orchestration_meta SET {column} = ? WHERE id = 1", (timestamp,))
