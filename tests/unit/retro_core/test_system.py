"""Tests for the interactive RetroSystem operations."""

import pytest

from retro_core import audit_log
from retro_core.exceptions import BackendError, LockError
from retro_core.models import PatternStatus, SuggestedTarget
from retro_core.system import RetroSystem

from tests.helpers import FakeGitWorkspace, FakeProbe, MockBackend, MockForge, failing_backend


@pytest.fixture
def make_system(retro_home, config, tmp_path):
    def _make(backend=None, probe=None):
        repo = tmp_path / "repo"
        repo.mkdir(exist_ok=True)
        return RetroSystem(
            config=config,
            retro_home=retro_home,
            project_root=repo,
            backend=backend or MockBackend(),
            forge=MockForge(),
            git=FakeGitWorkspace(root=repo),
            probe=probe or FakeProbe(),
        )

    return _make


def _entries(audit_path, action):
    return [e for e in audit_log.read_entries(audit_path) if e.action == action]


class TestInteractiveAudit:
    def test_analyze_success_is_audited(self, audit_path, make_system, make_session):
        make_session("s1")
        make_system(backend=MockBackend(tokens_per_call=(900, 100))).analyze(None)

        [entry] = _entries(audit_path, "analyze")
        assert entry.details["mode"] == "interactive"
        assert entry.details["sessions_analyzed"] == 1
        assert entry.details["input_tokens"] == 900

    def test_analyze_backend_failure_is_audited(self, audit_path, make_system, make_session):
        make_session("s1")
        system = make_system(backend=failing_backend("claude CLI timed out after 600s"))

        with pytest.raises(BackendError):
            system.analyze(None)

        assert _entries(audit_path, "analyze") == []
        [entry] = _entries(audit_path, "analyze_error")
        assert entry.details == {"error": "claude CLI timed out after 600s", "mode": "interactive"}

    def test_analyze_lock_contention_is_audited(self, audit_path, lock_path, make_system):
        lock_path.write_text("4242")
        system = make_system(probe=FakeProbe(alive={4242}))

        with pytest.raises(LockError):
            system.analyze(None)

        [entry] = _entries(audit_path, "analyze_error")
        assert "4242" in entry.details["error"]
        assert lock_path.read_text() == "4242"

    def test_generate_failure_is_audited(self, audit_path, make_system, make_pattern):
        make_pattern(
            description="Run database migrations before tests",
            confidence=0.9,
            status=PatternStatus.DISCOVERED,
            suggested_target=SuggestedTarget.SKILL,
        )
        backend = MockBackend(artifacts=[BackendError("rate limited")])

        with pytest.raises(BackendError):
            make_system(backend=backend).generate(None)

        assert _entries(audit_path, "generate") == []
        [entry] = _entries(audit_path, "generate_error")
        assert entry.details == {"error": "rate limited", "mode": "interactive"}
