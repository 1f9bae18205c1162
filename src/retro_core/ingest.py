"""
Session ingestion: record session markers for transcript files.

Transcripts live under ``<claude_dir>/projects/<encoded project>/*.jsonl``
where the encoded name is the project path with ``/`` replaced by ``-``.
A file is (re-)recorded when it is new or its size/mtime changed. Parsing
the transcript contents is left to the analysis backend.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from .config import get_claude_dir
from .database import RetroDatabase, is_session_ingested, record_ingested_session
from .exceptions import IngestError
from .models import SessionMarker
from .util import to_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Counts from one ingestion run."""

    sessions_found: int = 0
    sessions_ingested: int = 0
    sessions_skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def add(self, other: "IngestResult") -> None:
        self.sessions_found += other.sessions_found
        self.sessions_ingested += other.sessions_ingested
        self.sessions_skipped += other.sessions_skipped
        self.errors.extend(other.errors)

    def to_dict(self) -> dict:
        return {
            "sessions_found": self.sessions_found,
            "sessions_ingested": self.sessions_ingested,
            "sessions_skipped": self.sessions_skipped,
            "errors": len(self.errors),
        }


class SessionIngestor(Protocol):
    """Produces session markers. ``project=None`` means every project."""

    def ingest(self, db: RetroDatabase, project: str | None) -> IngestResult: ...


def encode_project_path(path: str) -> str:
    """/home/user/project -> -home-user-project"""
    return path.replace("/", "-")


def _naive_decode_project_path(encoded: str) -> str:
    # Only correct when no path component contains a hyphen
    return encoded.replace("-", "/")


def recover_project_path(sessions_dir: Path) -> str:
    """Read ``cwd`` from the first lines of a session file, else decode the name."""
    for path in sorted(sessions_dir.glob("*.jsonl")):
        try:
            with open(path, encoding="utf-8") as f:
                for _, line in zip(range(5), f):
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(data, dict) and isinstance(data.get("cwd"), str):
                        return data["cwd"]
        except OSError:
            continue
    return _naive_decode_project_path(sessions_dir.name)


class ClaudeHistoryIngestor:
    """Default ingestor over the agent's on-disk transcript directory."""

    def __init__(self, config: dict[str, Any]):
        self.claude_dir = get_claude_dir(config)
        self.exclude_projects: list[str] = list(
            config.get("privacy", {}).get("exclude_projects", [])
        )

    @property
    def projects_dir(self) -> Path:
        return self.claude_dir / "projects"

    def _is_excluded(self, project_path: str) -> bool:
        return any(excl and excl in project_path for excl in self.exclude_projects)

    def ingest(self, db: RetroDatabase, project: str | None) -> IngestResult:
        if project is not None:
            return self.ingest_project(db, project)
        return self.ingest_all_projects(db)

    def ingest_project(self, db: RetroDatabase, project_path: str) -> IngestResult:
        result = IngestResult()
        if self._is_excluded(project_path):
            logger.debug(f"Project excluded from ingestion: {project_path}")
            return result

        sessions_dir = self.projects_dir / encode_project_path(project_path)
        if not sessions_dir.is_dir():
            return result
        return self._ingest_dir(db, sessions_dir, project_path)

    def ingest_all_projects(self, db: RetroDatabase) -> IngestResult:
        total = IngestResult()
        if not self.projects_dir.is_dir():
            return total

        try:
            entries = sorted(p for p in self.projects_dir.iterdir() if p.is_dir())
        except OSError as e:
            raise IngestError(f"Cannot read projects directory {self.projects_dir}: {e}")

        for sessions_dir in entries:
            project_path = recover_project_path(sessions_dir)
            if self._is_excluded(project_path):
                continue
            total.add(self._ingest_dir(db, sessions_dir, project_path))
        return total

    def _ingest_dir(self, db: RetroDatabase, sessions_dir: Path, project_path: str) -> IngestResult:
        result = IngestResult()
        paths = sorted(sessions_dir.glob("*.jsonl"))
        result.sessions_found = len(paths)

        with db.connection(immediate=True) as conn:
            for path in paths:
                session_id = path.stem
                try:
                    stat = path.stat()
                except OSError as e:
                    result.errors.append(f"metadata error for {path}: {e}")
                    continue

                file_mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()
                if is_session_ingested(conn, session_id, stat.st_size, file_mtime):
                    result.sessions_skipped += 1
                    continue

                record_ingested_session(
                    conn,
                    SessionMarker(
                        session_id=session_id,
                        project=project_path,
                        session_path=str(path),
                        ingested_at=to_iso(utc_now()),
                        file_size=stat.st_size,
                        file_mtime=file_mtime,
                    ),
                )
                result.sessions_ingested += 1

        if result.errors:
            logger.warning(f"Ingestion of {project_path}: {len(result.errors)} errors")
        logger.debug(
            f"Ingested {result.sessions_ingested}/{result.sessions_found} sessions "
            f"from {project_path}"
        )
        return result
