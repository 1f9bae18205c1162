"""
Retro Database Module

Single SQLite store (WAL mode) for everything the retro pipeline tracks:
- ingested_sessions: Session markers from ingestion
- patterns: Discovered patterns and their lifecycle
- projections: Generated artifacts awaiting or past review
- orchestration_meta: Auto-mode last-run timestamps

Database location: ~/.retro/retro.db (or $RETRO_HOME/retro.db)

Helper functions take an open connection so several of them can share one
transaction via ``RetroDatabase.connection()``.
"""

from .database import SCHEMA_VERSION, RetroDatabase, get_default_db_path
from .metadata import STAGE_FIELDS, get_metadata, touch_stage
from .patterns import (
    OPEN_STATUSES,
    activate_pattern,
    get_pattern,
    get_patterns,
    get_qualifying_patterns,
    has_unprojected_patterns,
    insert_pattern,
    pattern_count_by_status,
    reset_pattern_to_discovered,
    set_generation_failed,
    update_pattern_merge,
    update_pattern_status,
)
from .projections import (
    change_requests_applied_since,
    delete_pending_projection,
    delete_projections_by_change_request,
    get_change_request_urls,
    get_open_projection,
    get_pending_review_projections,
    get_projection,
    insert_projection,
    mark_projection_applied,
    pending_review_count,
)
from .sessions import (
    get_session,
    get_unanalyzed_sessions,
    has_unanalyzed_sessions,
    ingested_session_count,
    is_session_ingested,
    last_ingested_at,
    list_projects,
    mark_sessions_analyzed,
    record_ingested_session,
    unanalyzed_session_count,
)

__all__ = [
    # Database
    "RetroDatabase",
    "get_default_db_path",
    "SCHEMA_VERSION",
    # Sessions
    "record_ingested_session",
    "is_session_ingested",
    "get_session",
    "get_unanalyzed_sessions",
    "unanalyzed_session_count",
    "has_unanalyzed_sessions",
    "mark_sessions_analyzed",
    "ingested_session_count",
    "last_ingested_at",
    "list_projects",
    # Patterns
    "OPEN_STATUSES",
    "insert_pattern",
    "get_pattern",
    "get_patterns",
    "update_pattern_merge",
    "update_pattern_status",
    "activate_pattern",
    "reset_pattern_to_discovered",
    "set_generation_failed",
    "pattern_count_by_status",
    "get_qualifying_patterns",
    "has_unprojected_patterns",
    # Projections
    "insert_projection",
    "get_projection",
    "get_open_projection",
    "get_pending_review_projections",
    "pending_review_count",
    "mark_projection_applied",
    "delete_pending_projection",
    "get_change_request_urls",
    "delete_projections_by_change_request",
    "change_requests_applied_since",
    # Metadata
    "STAGE_FIELDS",
    "get_metadata",
    "touch_stage",
]
