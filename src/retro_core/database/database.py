"""
Core database connection and schema management for the retro store.

The store holds:
- ingested_sessions (session markers, analyzed_at set once)
- patterns (merge/confidence engine output)
- projections (review queue items)
- orchestration_meta (single-row last-run timestamps for auto mode)

Location: ~/.retro/retro.db (or $RETRO_HOME/retro.db)
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..config import get_retro_home

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = "1.0.0"

DB_FILENAME = "retro.db"


def get_default_db_path(retro_home: Path | None = None) -> Path:
    """Get the default database path.

    Args:
        retro_home: Data directory. Defaults to $RETRO_HOME or ~/.retro.

    Returns:
        Path to retro.db
    """
    return (retro_home or get_retro_home()) / DB_FILENAME


# Embedded schema
SCHEMA = """
-- Schema metadata
CREATE TABLE IF NOT EXISTS schema_info (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Session markers produced by ingestion
CREATE TABLE IF NOT EXISTS ingested_sessions (
    session_id TEXT PRIMARY KEY,
    project TEXT NOT NULL,
    session_path TEXT NOT NULL,
    file_size INTEGER NOT NULL DEFAULT 0,
    file_mtime TEXT NOT NULL DEFAULT '',
    ingested_at TEXT NOT NULL,
    analyzed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_project ON ingested_sessions(project);
CREATE INDEX IF NOT EXISTS idx_sessions_analyzed ON ingested_sessions(analyzed_at);

-- Patterns discovered by analysis
CREATE TABLE IF NOT EXISTS patterns (
    id TEXT PRIMARY KEY,
    pattern_type TEXT NOT NULL,
    description TEXT NOT NULL,
    confidence REAL NOT NULL CHECK(confidence >= 0.0 AND confidence <= 1.0),
    times_seen INTEGER NOT NULL DEFAULT 1,
    first_seen TEXT NOT NULL,
    last_seen TEXT NOT NULL,
    last_projected TEXT,
    status TEXT NOT NULL DEFAULT 'discovered'
        CHECK(status IN ('discovered', 'active', 'archived', 'dismissed')),
    source_sessions TEXT NOT NULL DEFAULT '[]',     -- JSON array
    related_files TEXT NOT NULL DEFAULT '[]',       -- JSON array
    suggested_content TEXT NOT NULL DEFAULT '',
    suggested_target TEXT NOT NULL DEFAULT 'db_only',
    project TEXT,
    generation_failed INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_patterns_status ON patterns(status);
CREATE INDEX IF NOT EXISTS idx_patterns_target ON patterns(suggested_target);
CREATE INDEX IF NOT EXISTS idx_patterns_project ON patterns(project);

-- Projections (review queue)
CREATE TABLE IF NOT EXISTS projections (
    id TEXT PRIMARY KEY,
    pattern_id TEXT NOT NULL,
    target_type TEXT NOT NULL,
    target_path TEXT NOT NULL,
    content TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending_review'
        CHECK(status IN ('pending_review', 'applied', 'dismissed')),
    created_at TEXT NOT NULL,
    applied_at TEXT,
    change_request_url TEXT,
    FOREIGN KEY (pattern_id) REFERENCES patterns(id)
);

CREATE INDEX IF NOT EXISTS idx_projections_pattern ON projections(pattern_id);
CREATE INDEX IF NOT EXISTS idx_projections_status ON projections(status);
CREATE INDEX IF NOT EXISTS idx_projections_change_request ON projections(change_request_url);

-- At most one open (pending_review or applied) projection per pattern
CREATE UNIQUE INDEX IF NOT EXISTS idx_projections_one_open
    ON projections(pattern_id)
    WHERE status IN ('pending_review', 'applied');

-- Auto-mode last-run timestamps (single row)
CREATE TABLE IF NOT EXISTS orchestration_meta (
    id INTEGER PRIMARY KEY CHECK(id = 1),
    last_ingest_at TEXT,
    last_analyze_at TEXT,
    last_apply_at TEXT,
    last_nudge_at TEXT
);

INSERT OR IGNORE INTO orchestration_meta (id) VALUES (1);
"""


class RetroDatabase:
    """SQLite store for session markers, patterns, projections and metadata."""

    def __init__(self, db_path: Path | str | None = None, retro_home: Path | None = None):
        """Initialize database connection.

        Args:
            db_path: Explicit path to database file.
            retro_home: Data directory for the default location.
                        Ignored if db_path is provided.
        """
        if db_path:
            self.db_path = Path(db_path)
        else:
            self.db_path = get_default_db_path(retro_home)

        self._ensure_db_exists()

    def _ensure_db_exists(self) -> None:
        """Create database and schema if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.db_path, timeout=10.0)
        try:
            # WAL: one writer without blocking readers
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)
            conn.execute(
                "INSERT OR REPLACE INTO schema_info (key, value) VALUES (?, ?)",
                ("schema_version", SCHEMA_VERSION),
            )
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def connection(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Context manager for one transaction.

        Everything executed on the yielded connection commits together on
        normal exit and rolls back together on any exception.

        Args:
            immediate: Take the write lock up front (BEGIN IMMEDIATE) so that
                       read-then-write sequences see a stable snapshot.

        Yields:
            sqlite3.Connection with row_factory set to sqlite3.Row
        """
        conn = sqlite3.connect(self.db_path, timeout=10.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def execute(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Execute SQL and return all results."""
        with self.connection() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def execute_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        """Execute SQL and return first result."""
        with self.connection() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchone()

    def execute_update(self, sql: str, params: tuple = ()) -> int:
        """Execute UPDATE/DELETE and return rows affected."""
        with self.connection() as conn:
            cursor = conn.execute(sql, params)
            return cursor.rowcount

    def get_schema_version(self) -> str:
        """Get current schema version."""
        result = self.execute_one(
            "SELECT value FROM schema_info WHERE key = ?", ("schema_version",)
        )
        return result["value"] if result else "unknown"

    def get_journal_mode(self) -> str:
        """Report the journal mode (expected: wal)."""
        result = self.execute_one("PRAGMA journal_mode")
        return str(result[0]).lower() if result else "unknown"

    def get_stats(self) -> dict:
        """Get database statistics for diagnostics."""
        stats = {
            "schema_version": self.get_schema_version(),
            "database_path": str(self.db_path),
            "database_exists": self.db_path.exists(),
        }

        if not self.db_path.exists():
            return stats

        try:
            for table in ("ingested_sessions", "patterns", "projections"):
                result = self.execute_one(f"SELECT COUNT(*) as cnt FROM {table}")
                stats[f"{table}_count"] = result["cnt"] if result else 0

            rows = self.execute(
                "SELECT status, COUNT(*) as cnt FROM patterns GROUP BY status"
            )
            stats["patterns_by_status"] = {row["status"]: row["cnt"] for row in rows}

            rows = self.execute(
                "SELECT status, COUNT(*) as cnt FROM projections GROUP BY status"
            )
            stats["projections_by_status"] = {row["status"]: row["cnt"] for row in rows}

            result = self.execute_one(
                "SELECT COUNT(*) as cnt FROM ingested_sessions WHERE analyzed_at IS NULL"
            )
            stats["unanalyzed_sessions"] = result["cnt"] if result else 0

            stats["database_size_bytes"] = self.db_path.stat().st_size

        except sqlite3.OperationalError as e:
            stats["error"] = str(e)

        return stats
