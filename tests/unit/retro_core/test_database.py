"""Tests for the retro store (schema, sessions, patterns, projections, metadata)."""

import sqlite3

import pytest

from retro_core.database import (
    SCHEMA_VERSION,
    RetroDatabase,
    activate_pattern,
    change_requests_applied_since,
    delete_projections_by_change_request,
    get_change_request_urls,
    get_default_db_path,
    get_metadata,
    get_open_projection,
    get_pattern,
    get_pending_review_projections,
    get_qualifying_patterns,
    get_session,
    get_unanalyzed_sessions,
    has_unprojected_patterns,
    insert_projection,
    is_session_ingested,
    mark_projection_applied,
    mark_sessions_analyzed,
    pending_review_count,
    record_ingested_session,
    reset_pattern_to_discovered,
    set_generation_failed,
    touch_stage,
    unanalyzed_session_count,
    update_pattern_merge,
    update_pattern_status,
)
from retro_core.models import (
    PatternStatus,
    Projection,
    ProjectionStatus,
    SessionMarker,
    SuggestedTarget,
)

from tests.helpers.sample_data import PROJECT, T0


class TestSchema:
    """Tests for database creation."""

    def test_default_path_under_retro_home(self, retro_home):
        assert get_default_db_path() == retro_home / "retro.db"

    def test_creates_tables(self, db):
        conn = sqlite3.connect(db.db_path)
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        for table in ("ingested_sessions", "patterns", "projections", "orchestration_meta", "schema_info"):
            assert table in tables, f"Missing table: {table}"

    def test_schema_version_and_wal(self, db):
        assert db.get_schema_version() == SCHEMA_VERSION
        assert db.get_journal_mode() == "wal"

    def test_reopen_is_idempotent(self, db):
        again = RetroDatabase(db_path=db.db_path)
        assert again.get_schema_version() == SCHEMA_VERSION
        assert again.execute_one("SELECT COUNT(*) as cnt FROM orchestration_meta")["cnt"] == 1

    def test_transaction_rolls_back_on_error(self, db, make_pattern):
        pattern = make_pattern()
        with pytest.raises(RuntimeError):
            with db.connection() as conn:
                update_pattern_status(conn, pattern.id, PatternStatus.DISMISSED)
                raise RuntimeError("boom")

        with db.connection() as conn:
            assert get_pattern(conn, pattern.id).status == PatternStatus.DISCOVERED


class TestSessions:
    def _marker(self, session_id="s1", size=10, mtime="m1"):
        return SessionMarker(
            session_id=session_id,
            project=PROJECT,
            session_path=f"/tmp/{session_id}.jsonl",
            ingested_at=T0,
            file_size=size,
            file_mtime=mtime,
        )

    def test_change_detection(self, db):
        with db.connection() as conn:
            record_ingested_session(conn, self._marker())
            assert is_session_ingested(conn, "s1", 10, "m1")
            assert not is_session_ingested(conn, "s1", 11, "m1")
            assert not is_session_ingested(conn, "s2", 10, "m1")

    def test_reingest_keeps_analyzed_at(self, db):
        with db.connection() as conn:
            record_ingested_session(conn, self._marker())
            mark_sessions_analyzed(conn, ["s1"], "2026-01-02T00:00:00+00:00")
            record_ingested_session(conn, self._marker(size=99))
            marker = get_session(conn, "s1")

        assert marker.file_size == 99
        assert marker.analyzed_at == "2026-01-02T00:00:00+00:00"

    def test_analyzed_at_set_once(self, db):
        with db.connection() as conn:
            record_ingested_session(conn, self._marker())
            assert mark_sessions_analyzed(conn, ["s1"], "2026-01-02T00:00:00+00:00") == 1
            assert mark_sessions_analyzed(conn, ["s1"], "2026-01-03T00:00:00+00:00") == 0
            assert get_session(conn, "s1").analyzed_at == "2026-01-02T00:00:00+00:00"

    def test_unanalyzed_scoped_by_project(self, db):
        with db.connection() as conn:
            record_ingested_session(conn, self._marker("a"))
            other = self._marker("b")
            other.project = "/work/other"
            record_ingested_session(conn, other)

            assert unanalyzed_session_count(conn) == 2
            assert unanalyzed_session_count(conn, PROJECT) == 1
            assert [s.session_id for s in get_unanalyzed_sessions(conn, "/work/other")] == ["b"]


class TestPatternMerge:
    def test_merge_accumulates_evidence(self, db, make_pattern):
        pattern = make_pattern(confidence=0.6, times_seen=2, source_sessions=["s1", "s2"])
        with db.connection() as conn:
            assert update_pattern_merge(
                conn, pattern.id, ["s2", "s3"], 0.75, "2026-02-01T00:00:00+00:00", 1
            )
            merged = get_pattern(conn, pattern.id)

        assert merged.confidence == 0.75
        assert merged.times_seen == 3
        assert merged.source_sessions == ["s1", "s2", "s3"]
        assert merged.last_seen == "2026-02-01T00:00:00+00:00"
        assert merged.first_seen == T0

    def test_merge_never_lowers_confidence(self, db, make_pattern):
        pattern = make_pattern(confidence=0.9)
        with db.connection() as conn:
            update_pattern_merge(conn, pattern.id, ["s9"], 0.3, T0, 1)
            assert get_pattern(conn, pattern.id).confidence == 0.9

    @pytest.mark.parametrize("status", [PatternStatus.DISMISSED, PatternStatus.ARCHIVED])
    def test_merge_ignores_terminal_patterns(self, db, make_pattern, status):
        pattern = make_pattern(status=status, times_seen=1)
        with db.connection() as conn:
            assert not update_pattern_merge(conn, pattern.id, ["s9"], 1.0, T0, 1)
            assert get_pattern(conn, pattern.id).times_seen == 1

    def test_merge_missing_pattern(self, db):
        with db.connection() as conn:
            assert not update_pattern_merge(conn, "nope", ["s1"], 0.5, T0, 1)

    def test_confidence_check_constraint(self, db, make_pattern):
        with pytest.raises(sqlite3.IntegrityError):
            make_pattern(confidence=1.5)


class TestStatusTransitions:
    def test_activate_sets_last_projected(self, db, make_pattern):
        pattern = make_pattern()
        with db.connection() as conn:
            assert activate_pattern(conn, pattern.id, "2026-03-01T00:00:00+00:00") == 1
            active = get_pattern(conn, pattern.id)
        assert active.status == PatternStatus.ACTIVE
        assert active.last_projected == "2026-03-01T00:00:00+00:00"

    def test_activate_does_not_revive_dismissed(self, db, make_pattern):
        pattern = make_pattern(status=PatternStatus.DISMISSED)
        with db.connection() as conn:
            assert activate_pattern(conn, pattern.id, T0) == 0

    def test_reset_leaves_terminal_statuses(self, db, make_pattern):
        active = make_pattern(status=PatternStatus.ACTIVE)
        dismissed = make_pattern(status=PatternStatus.DISMISSED)
        with db.connection() as conn:
            assert reset_pattern_to_discovered(conn, active.id) == 1
            assert reset_pattern_to_discovered(conn, dismissed.id) == 0
            assert get_pattern(conn, active.id).status == PatternStatus.DISCOVERED
            assert get_pattern(conn, dismissed.id).status == PatternStatus.DISMISSED


class TestQualification:
    def test_qualifying_criteria(self, db, make_pattern, make_projection):
        good = make_pattern(confidence=0.7)
        make_pattern(confidence=0.69)
        make_pattern(suggested_target=SuggestedTarget.DB_ONLY)
        make_pattern(status=PatternStatus.DISMISSED)
        make_pattern(status=PatternStatus.ARCHIVED)
        failed = make_pattern()
        queued = make_pattern()
        make_projection(queued)
        with db.connection() as conn:
            set_generation_failed(conn, failed.id)
            qualifying = get_qualifying_patterns(conn, 0.7)
            assert has_unprojected_patterns(conn, 0.7)

        assert [p.id for p in qualifying] == [good.id]

    def test_nothing_qualifies(self, db, make_pattern):
        make_pattern(confidence=0.1)
        with db.connection() as conn:
            assert not has_unprojected_patterns(conn, 0.7)

    def test_project_scope(self, db, make_pattern):
        make_pattern(project="/work/other")
        with db.connection() as conn:
            assert get_qualifying_patterns(conn, 0.7, PROJECT) == []
            assert len(get_qualifying_patterns(conn, 0.7)) == 1


class TestProjections:
    def test_one_open_projection_per_pattern(self, db, make_pattern, make_projection):
        pattern = make_pattern()
        first = make_projection(pattern)
        duplicate = Projection(
            id="dup",
            pattern_id=pattern.id,
            target_type=SuggestedTarget.SKILL,
            target_path="/tmp/x",
            content="x",
            created_at=T0,
        )
        with db.connection() as conn:
            assert not insert_projection(conn, duplicate)
            assert get_open_projection(conn, pattern.id).id == first.id

    def test_applied_projection_also_blocks(self, db, make_pattern, make_projection):
        pattern = make_pattern()
        make_projection(pattern, status=ProjectionStatus.APPLIED, change_request_url="u1")
        with db.connection() as conn:
            assert not insert_projection(
                conn,
                Projection(
                    id="p2", pattern_id=pattern.id, target_type=SuggestedTarget.SKILL,
                    target_path="/tmp/x", content="x", created_at=T0,
                ),
            )

    def test_pending_excludes_dismissed_patterns(self, db, make_pattern, make_projection):
        kept = make_projection(make_pattern())
        gone = make_pattern()
        make_projection(gone)
        with db.connection() as conn:
            update_pattern_status(conn, gone.id, PatternStatus.DISMISSED)
            pending = get_pending_review_projections(conn)
            count = pending_review_count(conn)

        assert [p.id for p in pending] == [kept.id]
        assert count == 1

    def test_mark_applied_only_from_pending(self, db, make_pattern, make_projection):
        projection = make_projection(make_pattern())
        with db.connection() as conn:
            assert mark_projection_applied(conn, projection.id, T0, "url") == 1
            assert mark_projection_applied(conn, projection.id, T0, "other") == 0

    def test_change_request_bookkeeping(self, db, make_pattern, make_projection):
        a, b, c = make_pattern(), make_pattern(), make_pattern()
        for pattern in (a, b):
            make_projection(
                pattern, status=ProjectionStatus.APPLIED,
                change_request_url="https://forge/pr/1", applied_at="2026-01-05T00:00:00+00:00",
            )
        make_projection(
            c, status=ProjectionStatus.APPLIED,
            change_request_url="https://forge/pr/2", applied_at="2026-01-01T00:00:00+00:00",
        )

        with db.connection() as conn:
            assert get_change_request_urls(conn) == ["https://forge/pr/1", "https://forge/pr/2"]
            assert change_requests_applied_since(conn, "2026-01-02T00:00:00+00:00") == [
                "https://forge/pr/1"
            ]
            removed = delete_projections_by_change_request(conn, "https://forge/pr/1")
            assert sorted(removed) == sorted([a.id, b.id])
            assert get_change_request_urls(conn) == ["https://forge/pr/2"]


class TestMetadata:
    def test_defaults_to_empty(self, db):
        with db.connection() as conn:
            meta = get_metadata(conn)
        assert meta.last_ingest_at is None
        assert meta.last_apply_at is None

    def test_touch_stage(self, db):
        with db.connection() as conn:
            touch_stage(conn, "analyze", T0)
            assert get_metadata(conn).last_analyze_at == T0

    def test_unknown_stage(self, db):
        with pytest.raises(ValueError):
            with db.connection() as conn:
                touch_stage(conn, "deploy", T0)
