"""
Generation: turn qualifying patterns into pending_review projections.

Nothing is written to target files or published here; that happens only
after a human approves the item in review.

CLAUDE.md rules use the pattern's suggested_content directly. Skills and
global agents go through generate + validate with bounded retries; when the
retries are exhausted the pattern is flagged generation_failed so it stops
qualifying instead of being silently retried forever.
"""

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .analysis.backend import AnalysisBackend, ArtifactDraft
from .artifacts import agent_path, claude_md_path, skill_path
from .config import get_ai_config, get_claude_dir, get_confidence_threshold
from .database import (
    RetroDatabase,
    get_qualifying_patterns,
    insert_projection,
    set_generation_failed,
)
from .exceptions import GenerationError
from .models import Pattern, Projection, SuggestedTarget
from .util import to_iso, utc_now

logger = logging.getLogger(__name__)

MAX_RETRIES = 2


@dataclass
class GenerateResult:
    qualifying: int = 0
    projections_created: int = 0
    generation_failed: int = 0
    already_queued: int = 0

    def to_dict(self) -> dict:
        return {
            "qualifying": self.qualifying,
            "projections_created": self.projections_created,
            "generation_failed": self.generation_failed,
            "already_queued": self.already_queued,
        }


def generate_with_retry(
    backend: AnalysisBackend, pattern: Pattern, max_retries: int = MAX_RETRIES
) -> ArtifactDraft | None:
    """Generate and validate, feeding rejection feedback into each retry.

    Returns:
        The accepted draft, or None after 1 + max_retries failed attempts.
        BackendError is not caught: a failing backend aborts the stage.
    """
    feedback: str | None = None
    for attempt in range(max(0, max_retries) + 1):
        try:
            draft = backend.generate_artifact(pattern, feedback)
        except GenerationError as e:
            logger.debug(f"Attempt {attempt + 1} for {pattern.id} unusable: {e}")
            feedback = str(e)
            continue

        validation = backend.validate_artifact(draft.content, pattern)
        if validation.valid:
            return draft
        feedback = validation.feedback or "The artifact did not pass review."
        logger.debug(f"Attempt {attempt + 1} for {pattern.id} rejected: {feedback}")

    return None


def _project_root(pattern: Pattern, project: str | None) -> str:
    return pattern.project or project or "."


def build_projection(
    pattern: Pattern,
    backend: AnalysisBackend,
    claude_dir: Path,
    project: str | None,
    max_retries: int,
) -> Projection | None:
    """Build the pending projection for one pattern; None when generation failed."""
    target = pattern.suggested_target
    if target == SuggestedTarget.CLAUDE_MD:
        content = pattern.suggested_content.strip()
        if not content:
            return None
        target_path = claude_md_path(_project_root(pattern, project))
    else:
        draft = generate_with_retry(backend, pattern, max_retries)
        if draft is None:
            return None
        content = draft.content
        if target == SuggestedTarget.GLOBAL_AGENT:
            target_path = agent_path(claude_dir, draft.name)
        else:
            target_path = skill_path(_project_root(pattern, project), draft.name)

    return Projection(
        id=str(uuid.uuid4()),
        pattern_id=pattern.id,
        target_type=target,
        target_path=target_path,
        content=content,
        created_at=to_iso(utc_now()),
    )


def generate(
    db: RetroDatabase,
    backend: AnalysisBackend,
    config: dict[str, Any],
    project: str | None = None,
) -> GenerateResult:
    """Create pending_review projections for every qualifying pattern."""
    threshold = get_confidence_threshold(config)
    max_retries = min(int(get_ai_config(config)["max_generation_retries"]), MAX_RETRIES)
    claude_dir = get_claude_dir(config)
    result = GenerateResult()

    with db.connection() as conn:
        patterns = get_qualifying_patterns(conn, threshold, project)
    result.qualifying = len(patterns)

    for pattern in patterns:
        projection = build_projection(pattern, backend, claude_dir, project, max_retries)

        with db.connection(immediate=True) as conn:
            if projection is None:
                logger.warning(f"Generation failed for pattern {pattern.id}; flagging it")
                set_generation_failed(conn, pattern.id)
                result.generation_failed += 1
            elif insert_projection(conn, projection):
                result.projections_created += 1
            else:
                result.already_queued += 1

    logger.info(
        f"Generated {result.projections_created} projections "
        f"({result.generation_failed} failed) from {result.qualifying} qualifying patterns"
    )
    return result
