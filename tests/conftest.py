"""Shared pytest fixtures for retro tests.

Every fixture works inside ``tmp_path``: a throwaway RETRO_HOME holding the
store, audit log and lockfile, and a throwaway agent home for transcripts.
"""

import copy
import json
import uuid
from collections.abc import Callable
from pathlib import Path

import pytest

from retro_core.config import DEFAULT_CONFIG
from retro_core.database import (
    RetroDatabase,
    insert_pattern,
    insert_projection,
    mark_sessions_analyzed,
    record_ingested_session,
)
from retro_core.models import (
    Pattern,
    PatternStatus,
    PatternType,
    Projection,
    ProjectionStatus,
    SessionMarker,
    SuggestedTarget,
)
from retro_core.util import to_iso, utc_now

from tests.helpers.sample_data import PROJECT, T0


# =============================================================================
# Path Fixtures
# =============================================================================


@pytest.fixture
def retro_home(tmp_path: Path, monkeypatch) -> Path:
    """Isolated data directory, also exported as RETRO_HOME."""
    home = tmp_path / "retro-home"
    home.mkdir()
    monkeypatch.setenv("RETRO_HOME", str(home))
    monkeypatch.delenv("RETRO_CONFIG_PATH", raising=False)
    monkeypatch.delenv("RETRO_LOG_LEVEL", raising=False)
    return home


@pytest.fixture
def claude_dir(tmp_path: Path) -> Path:
    path = tmp_path / "claude"
    (path / "projects").mkdir(parents=True)
    return path


@pytest.fixture
def audit_path(retro_home: Path) -> Path:
    return retro_home / "audit.jsonl"


@pytest.fixture
def lock_path(retro_home: Path) -> Path:
    return retro_home / "retro.lock"


@pytest.fixture
def backup_dir(retro_home: Path) -> Path:
    return retro_home / "backups"


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def config(claude_dir: Path) -> dict:
    """Default configuration pointing at the temporary agent home."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["paths"]["claude_dir"] = str(claude_dir)
    return cfg


@pytest.fixture
def db(retro_home: Path) -> RetroDatabase:
    return RetroDatabase(retro_home=retro_home)


@pytest.fixture
def make_pattern(db: RetroDatabase) -> Callable[..., Pattern]:
    """Insert a pattern with sensible defaults; keyword args override."""

    def _make(**overrides) -> Pattern:
        fields = {
            "id": str(uuid.uuid4()),
            "pattern_type": PatternType.REPETITIVE_INSTRUCTION,
            "description": "Always run the linter before committing",
            "confidence": 0.8,
            "first_seen": T0,
            "last_seen": T0,
            "times_seen": 1,
            "status": PatternStatus.DISCOVERED,
            "source_sessions": ["s1"],
            "suggested_content": "Run the linter before committing.",
            "suggested_target": SuggestedTarget.SKILL,
            "project": PROJECT,
        }
        fields.update(overrides)
        pattern = Pattern(**fields)
        with db.connection() as conn:
            insert_pattern(conn, pattern)
        return pattern

    return _make


@pytest.fixture
def make_projection(db: RetroDatabase, tmp_path: Path) -> Callable[..., Projection]:
    """Insert a projection for a pattern; target defaults follow the pattern."""

    def _make(pattern: Pattern, **overrides) -> Projection:
        target = overrides.pop("target_type", pattern.suggested_target)
        default_path = {
            SuggestedTarget.SKILL: tmp_path / "repo" / ".claude" / "skills" / pattern.id[:8] / "SKILL.md",
            SuggestedTarget.CLAUDE_MD: tmp_path / "repo" / "CLAUDE.md",
            SuggestedTarget.GLOBAL_AGENT: tmp_path / "claude" / "agents" / f"{pattern.id[:8]}.md",
        }.get(target, tmp_path / "other.md")
        fields = {
            "id": str(uuid.uuid4()),
            "pattern_id": pattern.id,
            "target_type": target,
            "target_path": str(default_path),
            "content": pattern.suggested_content or pattern.description,
            "created_at": T0,
            "status": ProjectionStatus.PENDING_REVIEW,
        }
        fields.update(overrides)
        projection = Projection(**fields)
        with db.connection() as conn:
            assert insert_projection(conn, projection)
        return projection

    return _make


@pytest.fixture
def write_transcript(claude_dir: Path) -> Callable[..., Path]:
    """Write a session transcript under the agent home's projects directory."""

    def _write(session_id: str, project: str = PROJECT, messages: list[str] | None = None) -> Path:
        sessions_dir = claude_dir / "projects" / project.replace("/", "-")
        sessions_dir.mkdir(parents=True, exist_ok=True)
        path = sessions_dir / f"{session_id}.jsonl"
        lines = [{"type": "user", "cwd": project, "message": {"role": "user", "content": m}}
                 for m in (messages or ["please use uv, not pip"])]
        path.write_text("\n".join(json.dumps(line) for line in lines) + "\n")
        return path

    return _write


@pytest.fixture
def make_session(db: RetroDatabase, write_transcript) -> Callable[..., SessionMarker]:
    """Record an ingested (unanalyzed) session with a transcript on disk."""

    def _make(
        session_id: str,
        project: str = PROJECT,
        analyzed_at: str | None = None,
        file_mtime: str | None = None,
    ) -> SessionMarker:
        path = write_transcript(session_id, project)
        marker = SessionMarker(
            session_id=session_id,
            project=project,
            session_path=str(path),
            ingested_at=T0,
            file_size=path.stat().st_size,
            file_mtime=file_mtime or to_iso(utc_now()),
            analyzed_at=analyzed_at,
        )
        with db.connection() as conn:
            record_ingested_session(conn, marker)
            if analyzed_at is not None:
                mark_sessions_analyzed(conn, [session_id], analyzed_at)
        return marker

    return _make
