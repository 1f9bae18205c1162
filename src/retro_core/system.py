"""
Retro System - main interface tying the store, collaborators and pipeline
stages together for the CLI.
"""

import logging
from pathlib import Path
from typing import Any

from . import audit_log
from .analysis.analyze import AnalyzeResult, analyze
from .analysis.backend import AnalysisBackend
from .analysis.claude_cli import ClaudeCliBackend
from .audit_log import AuditEntry, get_default_audit_path
from .config import get_retro_home, load_config
from .database import (
    RetroDatabase,
    change_requests_applied_since,
    get_metadata,
    get_patterns,
    pending_review_count,
    touch_stage,
)
from .exceptions import RetroError
from .executor import Executor
from .forge import Forge, GitHubForge
from .generation import GenerateResult, generate
from .git import GitRepository, GitWorkspace, git_root
from .ingest import ClaudeHistoryIngestor, IngestResult, SessionIngestor
from .lock import LockFile, ProcessProbe, get_default_lock_path
from .models import OrchestrationMetadata, Pattern, PatternStatus
from .orchestrator import AutoResult, Orchestrator
from .review import ReviewQueue
from .sync import SyncResult, sync
from .util import to_iso, utc_now

logger = logging.getLogger(__name__)


class RetroSystem:
    """
    Main interface for retro.

    Collaborators (backend, forge, git workspace, ingestor, liveness probe)
    default to the real implementations and can be injected for tests.
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        retro_home: Path | None = None,
        project_root: Path | None = None,
        backend: AnalysisBackend | None = None,
        forge: Forge | None = None,
        git: GitWorkspace | None = None,
        ingestor: SessionIngestor | None = None,
        probe: ProcessProbe | None = None,
    ):
        self.config = config if config is not None else load_config()
        self.retro_home = Path(retro_home) if retro_home else get_retro_home()
        self.db = RetroDatabase(retro_home=self.retro_home)
        self.audit_path = get_default_audit_path(self.retro_home)
        self.lock_path = get_default_lock_path(self.retro_home)
        self.backup_dir = self.retro_home / "backups"
        self.probe = probe

        root = project_root or git_root()
        self.project_root = Path(root) if root else None
        self._backend = backend
        self.forge = forge if forge is not None else GitHubForge(self.project_root)
        if git is not None:
            self.git = git
        else:
            self.git = GitRepository(self.project_root) if self.project_root else None
        self.ingestor = ingestor or ClaudeHistoryIngestor(self.config)

    @property
    def backend(self) -> AnalysisBackend:
        if self._backend is None:
            self._backend = ClaudeCliBackend(self.config)
        return self._backend

    def scope(self, global_scope: bool) -> str | None:
        """Project scope for an operation: None for global."""
        if global_scope or self.project_root is None:
            return None
        return str(self.project_root)

    # -------------------------------------------------------------------------
    # Pipeline operations (interactive: errors propagate)
    # -------------------------------------------------------------------------

    def ingest(self, project: str | None) -> IngestResult:
        return self.ingestor.ingest(self.db, project)

    def analyze(self, project: str | None, window_days: int | None = None) -> AnalyzeResult:
        """Ingest then analyze under the lock (LockError if held)."""
        try:
            with LockFile.acquire(self.lock_path, self.probe):
                self.ingest(project)
                result = analyze(self.db, self.backend, self.config, project, window_days)
        except RetroError as e:
            self._audit_error("analyze", e)
            raise
        audit_log.append(self.audit_path, "analyze", {**result.to_dict(), "mode": "interactive"})
        return result

    def _audit_error(self, operation: str, error: RetroError) -> None:
        audit_log.append(
            self.audit_path, f"{operation}_error", {"error": str(error), "mode": "interactive"}
        )

    def sync(self) -> SyncResult:
        return sync(self.db, self.forge, self.audit_path)

    def generate(self, project: str | None) -> GenerateResult:
        """Sync, then queue pending_review items. Nothing is published."""
        try:
            with LockFile.acquire(self.lock_path, self.probe):
                self.sync()
                result = generate(self.db, self.backend, self.config, project)
        except RetroError as e:
            self._audit_error("generate", e)
            raise
        audit_log.append(self.audit_path, "generate", {**result.to_dict(), "mode": "interactive"})
        return result

    def review_queue(self) -> ReviewQueue:
        executor = Executor(self.db, self.backup_dir, git=self.git, forge=self.forge)
        return ReviewQueue(self.db, executor, self.audit_path)

    def lock(self) -> LockFile:
        return LockFile.acquire(self.lock_path, self.probe)

    # -------------------------------------------------------------------------
    # Auto mode (errors audited, never raised)
    # -------------------------------------------------------------------------

    def auto(self, project: str | None) -> AutoResult:
        orchestrator = Orchestrator(
            db=self.db,
            config=self.config,
            audit_path=self.audit_path,
            lock_path=self.lock_path,
            ingestor=self.ingestor,
            backend_factory=lambda: self.backend,
            forge=self.forge,
            probe=self.probe,
        )
        return orchestrator.run(project)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def patterns(self, status: PatternStatus | None = None, project: str | None = None) -> list[Pattern]:
        with self.db.connection() as conn:
            return get_patterns(conn, [status] if status else None, project)

    def audit_entries(self, since: str | None = None) -> list[AuditEntry]:
        return audit_log.read_entries(self.audit_path, since)

    def metadata(self) -> OrchestrationMetadata:
        with self.db.connection() as conn:
            return get_metadata(conn)

    def pending_nudge(self) -> dict[str, Any]:
        """Change requests opened and items queued since the last nudge."""
        with self.db.connection() as conn:
            meta = get_metadata(conn)
            urls = change_requests_applied_since(conn, meta.last_nudge_at)
            pending = pending_review_count(conn)
        return {"change_requests": urls, "pending_review": pending}

    def clear_nudge(self) -> None:
        with self.db.connection(immediate=True) as conn:
            touch_stage(conn, "nudge", to_iso(utc_now()))

    def get_stats(self) -> dict:
        return self.db.get_stats()
