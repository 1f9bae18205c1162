"""
Retro Models - Data classes for patterns, projections and session markers.
"""

import json
from dataclasses import dataclass, field
from enum import Enum


class PatternType(str, Enum):
    """Kind of recurring behavior found in session history."""

    REPETITIVE_INSTRUCTION = "repetitive_instruction"
    RECURRING_MISTAKE = "recurring_mistake"
    WORKFLOW_PATTERN = "workflow_pattern"
    STALE_CONTEXT = "stale_context"
    REDUNDANT_CONTEXT = "redundant_context"

    @classmethod
    def parse(cls, value: str | None) -> "PatternType":
        try:
            return cls(value)
        except ValueError:
            return cls.WORKFLOW_PATTERN


class PatternStatus(str, Enum):
    """Lifecycle status of a pattern."""

    DISCOVERED = "discovered"  # Found by analysis, not yet published
    ACTIVE = "active"  # Projection applied
    ARCHIVED = "archived"  # Stale (terminal)
    DISMISSED = "dismissed"  # Rejected in review (terminal)

    @property
    def is_terminal(self) -> bool:
        return self in (PatternStatus.ARCHIVED, PatternStatus.DISMISSED)


class SuggestedTarget(str, Enum):
    """Where a pattern should be projected."""

    SKILL = "skill"
    CLAUDE_MD = "claude_md"
    GLOBAL_AGENT = "global_agent"
    DB_ONLY = "db_only"  # Store only, never projected

    @classmethod
    def parse(cls, value: str | None) -> "SuggestedTarget":
        try:
            return cls(value)
        except ValueError:
            return cls.DB_ONLY


class ProjectionStatus(str, Enum):
    """Status of a projection in the review queue."""

    PENDING_REVIEW = "pending_review"
    APPLIED = "applied"
    DISMISSED = "dismissed"


class ApplyTrack(str, Enum):
    """Whether an approved item is written directly or published for review."""

    PERSONAL = "personal"  # Written in place (global agents)
    SHARED = "shared"  # Published as a change request (skills, CLAUDE.md)


def track_for_target(target: SuggestedTarget) -> ApplyTrack:
    """Map a projection target to its apply track."""
    if target == SuggestedTarget.GLOBAL_AGENT:
        return ApplyTrack.PERSONAL
    return ApplyTrack.SHARED


def _load_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    return list(json.loads(raw))


@dataclass
class SessionMarker:
    """An ingested session awaiting (or past) analysis."""

    session_id: str
    project: str
    session_path: str
    ingested_at: str
    file_size: int = 0
    file_mtime: str = ""
    analyzed_at: str | None = None

    @classmethod
    def from_row(cls, row) -> "SessionMarker":
        """Create from database row."""
        return cls(
            session_id=row["session_id"],
            project=row["project"],
            session_path=row["session_path"],
            ingested_at=row["ingested_at"],
            file_size=row["file_size"] or 0,
            file_mtime=row["file_mtime"] or "",
            analyzed_at=row["analyzed_at"],
        )


@dataclass
class Pattern:
    """A discovered recurring behavior with confidence and lifecycle status."""

    id: str
    pattern_type: PatternType
    description: str
    confidence: float
    first_seen: str
    last_seen: str
    times_seen: int = 1
    status: PatternStatus = PatternStatus.DISCOVERED
    source_sessions: list[str] = field(default_factory=list)
    related_files: list[str] = field(default_factory=list)
    suggested_content: str = ""
    suggested_target: SuggestedTarget = SuggestedTarget.DB_ONLY
    project: str | None = None
    generation_failed: bool = False
    last_projected: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for database insertion."""
        return {
            "id": self.id,
            "pattern_type": self.pattern_type.value,
            "description": self.description,
            "confidence": self.confidence,
            "times_seen": self.times_seen,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "last_projected": self.last_projected,
            "status": self.status.value,
            "source_sessions": json.dumps(sorted(set(self.source_sessions))),
            "related_files": json.dumps(sorted(set(self.related_files))),
            "suggested_content": self.suggested_content,
            "suggested_target": self.suggested_target.value,
            "project": self.project,
            "generation_failed": 1 if self.generation_failed else 0,
        }

    @classmethod
    def from_row(cls, row) -> "Pattern":
        """Create from database row."""
        return cls(
            id=row["id"],
            pattern_type=PatternType.parse(row["pattern_type"]),
            description=row["description"],
            confidence=float(row["confidence"]),
            times_seen=row["times_seen"],
            first_seen=row["first_seen"],
            last_seen=row["last_seen"],
            last_projected=row["last_projected"],
            status=PatternStatus(row["status"]),
            source_sessions=_load_list(row["source_sessions"]),
            related_files=_load_list(row["related_files"]),
            suggested_content=row["suggested_content"] or "",
            suggested_target=SuggestedTarget.parse(row["suggested_target"]),
            project=row["project"],
            generation_failed=bool(row["generation_failed"]),
        )


@dataclass
class Projection:
    """A generated artifact tied to one pattern, awaiting or past review."""

    id: str
    pattern_id: str
    target_type: SuggestedTarget
    target_path: str
    content: str
    created_at: str
    status: ProjectionStatus = ProjectionStatus.PENDING_REVIEW
    applied_at: str | None = None
    change_request_url: str | None = None

    @property
    def track(self) -> ApplyTrack:
        return track_for_target(self.target_type)

    def to_dict(self) -> dict:
        """Convert to dictionary for database insertion."""
        return {
            "id": self.id,
            "pattern_id": self.pattern_id,
            "target_type": self.target_type.value,
            "target_path": self.target_path,
            "content": self.content,
            "status": self.status.value,
            "created_at": self.created_at,
            "applied_at": self.applied_at,
            "change_request_url": self.change_request_url,
        }

    @classmethod
    def from_row(cls, row) -> "Projection":
        """Create from database row."""
        return cls(
            id=row["id"],
            pattern_id=row["pattern_id"],
            target_type=SuggestedTarget.parse(row["target_type"]),
            target_path=row["target_path"],
            content=row["content"],
            status=ProjectionStatus(row["status"]),
            created_at=row["created_at"],
            applied_at=row["applied_at"],
            change_request_url=row["change_request_url"],
        )


# =============================================================================
# Analysis proposals (AI backend output)
# =============================================================================


@dataclass
class NewPattern:
    """AI proposal for a pattern not yet in the store."""

    description: str
    confidence: float
    pattern_type: PatternType = PatternType.WORKFLOW_PATTERN
    source_sessions: list[str] = field(default_factory=list)
    related_files: list[str] = field(default_factory=list)
    suggested_content: str = ""
    suggested_target: SuggestedTarget = SuggestedTarget.DB_ONLY


@dataclass
class UpdateExisting:
    """AI proposal adding evidence to an existing pattern.

    ``draft`` carries optional replacement content; it is used to recover
    when ``existing_id`` does not reference a known pattern.
    """

    existing_id: str
    new_confidence: float
    new_sessions: list[str] = field(default_factory=list)
    draft: NewPattern | None = None


PatternUpdate = NewPattern | UpdateExisting


@dataclass
class OrchestrationMetadata:
    """Last-run timestamps for the auto-mode stages."""

    last_ingest_at: str | None = None
    last_analyze_at: str | None = None
    last_apply_at: str | None = None
    last_nudge_at: str | None = None

    @classmethod
    def from_row(cls, row) -> "OrchestrationMetadata":
        if row is None:
            return cls()
        return cls(
            last_ingest_at=row["last_ingest_at"],
            last_analyze_at=row["last_analyze_at"],
            last_apply_at=row["last_apply_at"],
            last_nudge_at=row["last_nudge_at"],
        )
