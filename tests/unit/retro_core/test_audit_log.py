"""Tests for the JSONL audit log."""

import json

from retro_core import audit_log


class TestAuditLog:
    def test_append_creates_file(self, tmp_path):
        path = tmp_path / "nested" / "audit.jsonl"
        entry = audit_log.append(path, "analyze_skipped", {"reason": "cooldown"})

        [line] = path.read_text().splitlines()
        data = json.loads(line)
        assert data["action"] == "analyze_skipped"
        assert data["details"] == {"reason": "cooldown"}
        assert data["timestamp"] == entry.timestamp

    def test_read_in_order(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        for action in ("ingest", "analyze", "generate"):
            audit_log.append(path, action)
        assert [e.action for e in audit_log.read_entries(path)] == ["ingest", "analyze", "generate"]

    def test_malformed_lines_skipped(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        audit_log.append(path, "ingest")
        with open(path, "a") as f:
            f.write("{broken\n")
            f.write(json.dumps({"no": "action"}) + "\n")
        audit_log.append(path, "sync_reset")
        assert [e.action for e in audit_log.read_entries(path)] == ["ingest", "sync_reset"]

    def test_since_filter(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        lines = [
            {"timestamp": "2026-01-01T00:00:00+00:00", "action": "old", "details": {}},
            {"timestamp": "2026-01-03T00:00:00+00:00", "action": "new", "details": {}},
        ]
        path.write_text("".join(json.dumps(line) + "\n" for line in lines))
        entries = audit_log.read_entries(path, since="2026-01-02T00:00:00+00:00")
        assert [e.action for e in entries] == ["new"]

    def test_missing_file(self, tmp_path):
        assert audit_log.read_entries(tmp_path / "none.jsonl") == []
        assert audit_log.count_actions(tmp_path / "none.jsonl", "ingest") == 0
