"""
Auto-mode orchestrator: ingest -> analyze -> generate, opportunistically.

One invocation:
1. Try the lockfile. Held by a live process: return at once, no work, no audit.
2. Ingest when its cooldown elapsed.
3. Analyze when sessions are unanalyzed, the backlog is within the cap and
   its cooldown elapsed.
4. Generate (after sync) when an unprojected qualifying pattern exists and
   its cooldown elapsed. Generate only queues pending_review items.
5. Each stage writes exactly one audit entry: ``<stage>``,
   ``<stage>_skipped`` (with a reason) or ``<stage>_error``.
6. The lock is always released.

A stage error is recorded and skips the stages after it; results already
committed stay. Only the four last-run timestamps are persisted between
invocations.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from . import audit_log
from .analysis.analyze import analysis_cutoff, analyze
from .analysis.backend import AnalysisBackend
from .config import get_analysis_window_days, get_confidence_threshold, get_hooks_config
from .database import (
    RetroDatabase,
    get_metadata,
    has_unprojected_patterns,
    touch_stage,
    unanalyzed_session_count,
)
from .exceptions import RetroError
from .forge import Forge
from .generation import generate
from .ingest import SessionIngestor
from .lock import LockFile, ProcessProbe
from .sync import sync
from .util import to_iso, utc_now, within_cooldown

logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    RAN = "ran"
    SKIPPED = "skipped"
    ERROR = "error"


class SkipReason(str, Enum):
    COOLDOWN = "cooldown"
    NO_DATA = "no_data"
    BACKLOG_CAP = "backlog_cap"
    UPSTREAM_ERROR = "upstream_error"
    AUTO_APPLY_DISABLED = "auto_apply_disabled"


@dataclass
class StageOutcome:
    stage: str
    status: StageStatus
    reason: SkipReason | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def audit_action(self) -> str:
        if self.status == StageStatus.RAN:
            return self.stage
        return f"{self.stage}_{self.status.value}"

    def audit_details(self) -> dict[str, Any]:
        details = dict(self.details)
        if self.reason is not None:
            details["reason"] = self.reason.value
        return details


@dataclass
class AutoResult:
    acquired: bool
    outcomes: list[StageOutcome] = field(default_factory=list)

    def outcome(self, stage: str) -> StageOutcome | None:
        return next((o for o in self.outcomes if o.stage == stage), None)


class Orchestrator:
    """Runs the auto-mode pipeline under the lock."""

    def __init__(
        self,
        db: RetroDatabase,
        config: dict[str, Any],
        audit_path: Path,
        lock_path: Path,
        ingestor: SessionIngestor,
        backend_factory: Callable[[], AnalysisBackend],
        forge: Forge | None = None,
        probe: ProcessProbe | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.config = config
        self.audit_path = audit_path
        self.lock_path = lock_path
        self.ingestor = ingestor
        self.backend_factory = backend_factory
        self.forge = forge
        self.probe = probe
        self.clock = clock
        self.hooks = get_hooks_config(config)
        self._backend: AnalysisBackend | None = None

    @property
    def backend(self) -> AnalysisBackend:
        # Created lazily: most invocations never reach an AI stage
        if self._backend is None:
            self._backend = self.backend_factory()
        return self._backend

    def run(self, project: str | None = None) -> AutoResult:
        lock = LockFile.try_acquire(self.lock_path, self.probe)
        if lock is None:
            logger.debug("auto: another retro process holds the lock")
            return AutoResult(acquired=False)

        result = AutoResult(acquired=True)
        try:
            now = self.clock()
            with self.db.connection() as conn:
                meta = get_metadata(conn)

            ingest = self._ingest_stage(project, now, meta.last_ingest_at)
            self._record(ingest, result)

            analyze_outcome = self._analyze_stage(project, now, meta.last_analyze_at, ingest)
            self._record(analyze_outcome, result)

            generate_outcome = self._generate_stage(
                project, now, meta.last_apply_at, analyze_outcome
            )
            self._record(generate_outcome, result)
        finally:
            lock.release()

        return result

    # -------------------------------------------------------------------------

    def _record(self, outcome: StageOutcome, result: AutoResult) -> None:
        result.outcomes.append(outcome)
        audit_log.append(self.audit_path, outcome.audit_action, outcome.audit_details())

    def _stamp(self, stage: str, now: datetime) -> None:
        with self.db.connection(immediate=True) as conn:
            touch_stage(conn, stage, to_iso(now))

    def _attempt(self, stage: str, meta_field: str, now: datetime, work: Callable[[], dict]) -> StageOutcome:
        """Run a stage body; recoverable errors become an error outcome."""
        try:
            details = work()
        except (RetroError, OSError) as e:
            logger.warning(f"auto: {stage} failed: {e}")
            outcome = StageOutcome(stage, StageStatus.ERROR, details={"error": str(e)})
        else:
            outcome = StageOutcome(stage, StageStatus.RAN, details=details)
        self._stamp(meta_field, now)
        return outcome

    def _ingest_stage(self, project: str | None, now: datetime, last: str | None) -> StageOutcome:
        cooldown = int(self.hooks["ingest_cooldown_minutes"])
        if within_cooldown(last, cooldown, now):
            return StageOutcome("ingest", StageStatus.SKIPPED, SkipReason.COOLDOWN)

        return self._attempt(
            "ingest", "ingest", now, lambda: self.ingestor.ingest(self.db, project).to_dict()
        )

    def _backlog(self, project: str | None, now: datetime) -> int:
        """Unanalyzed sessions inside the analysis window."""
        since = analysis_cutoff(get_analysis_window_days(self.config), now)
        with self.db.connection() as conn:
            return unanalyzed_session_count(conn, project, since)

    def _gate(
        self, stage: str, project: str | None, now: datetime, upstream: StageOutcome
    ) -> StageOutcome | None:
        """Skip conditions shared by analyze and generate."""
        if upstream.status == StageStatus.ERROR:
            return StageOutcome(
                stage, StageStatus.SKIPPED, SkipReason.UPSTREAM_ERROR,
                details={"upstream": upstream.stage},
            )
        if not self.hooks["auto_apply"]:
            return StageOutcome(stage, StageStatus.SKIPPED, SkipReason.AUTO_APPLY_DISABLED)

        cap = int(self.hooks["auto_analyze_max_sessions"])
        backlog = self._backlog(project, now)
        if backlog > cap:
            return StageOutcome(
                stage, StageStatus.SKIPPED, SkipReason.BACKLOG_CAP,
                details={"unanalyzed_count": backlog, "cap": cap},
            )
        return None

    def _analyze_stage(
        self, project: str | None, now: datetime, last: str | None, upstream: StageOutcome
    ) -> StageOutcome:
        skipped = self._gate("analyze", project, now, upstream)
        if skipped is not None:
            return skipped

        if self._backlog(project, now) == 0:
            return StageOutcome("analyze", StageStatus.SKIPPED, SkipReason.NO_DATA)
        if within_cooldown(last, int(self.hooks["analyze_cooldown_minutes"]), now):
            return StageOutcome("analyze", StageStatus.SKIPPED, SkipReason.COOLDOWN)

        return self._attempt(
            "analyze", "analyze", now,
            lambda: analyze(self.db, self.backend, self.config, project, now=now).to_dict(),
        )

    def _generate_stage(
        self, project: str | None, now: datetime, last: str | None, upstream: StageOutcome
    ) -> StageOutcome:
        skipped = self._gate("generate", project, now, upstream)
        if skipped is not None:
            return skipped

        threshold = get_confidence_threshold(self.config)
        with self.db.connection() as conn:
            has_work = has_unprojected_patterns(conn, threshold, project)
        if not has_work:
            return StageOutcome("generate", StageStatus.SKIPPED, SkipReason.NO_DATA)
        if within_cooldown(last, int(self.hooks["apply_cooldown_minutes"]), now):
            return StageOutcome("generate", StageStatus.SKIPPED, SkipReason.COOLDOWN)

        def work() -> dict:
            synced = sync(self.db, self.forge, self.audit_path)
            generated = generate(self.db, self.backend, self.config, project)
            return {**generated.to_dict(), "sync": synced.to_dict()}

        return self._attempt("generate", "apply", now, work)
