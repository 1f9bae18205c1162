"""
Merge & confidence engine.

Resolves AI-proposed pattern updates against the existing discovered/active
patterns in scope:

- Update: confidence = max(old, proposed); times_seen grows by the number of
  new sessions (at least 1); source sessions are unioned; last_seen moves
  forward. An unknown existing_id is recovered as a new draft when the
  update carries one, otherwise dropped.
- New: the description is compared against every in-scope pattern (and the
  drafts accepted earlier in the same batch). A normalized Levenshtein
  similarity above 0.8 redirects it to an update of the best match.

The similarity check is a blunt safety net behind the AI's own semantic
merging; reworded duplicates with little character overlap still get through.
"""

import logging
import sqlite3
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..database import insert_pattern, update_pattern_merge
from ..models import NewPattern, Pattern, PatternStatus, PatternUpdate, UpdateExisting
from ..util import to_iso, utc_now

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.8


def levenshtein_distance(a: str, b: str) -> int:
    if not a:
        return len(b)
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    for i, a_ch in enumerate(a, start=1):
        curr = [i] + [0] * len(b)
        for j, b_ch in enumerate(b, start=1):
            cost = 0 if a_ch == b_ch else 1
            curr[j] = min(prev[j] + 1, curr[j - 1] + 1, prev[j - 1] + cost)
        prev = curr
    return prev[-1]


def normalized_similarity(a: str, b: str) -> float:
    """Case-insensitive similarity in [0.0, 1.0]; 1.0 means identical."""
    a = a.lower()
    b = b.lower()
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_len


def find_similar(description: str, candidates: Iterable[Pattern]) -> Pattern | None:
    """Best candidate with similarity strictly above the threshold."""
    best: Pattern | None = None
    best_score = SIMILARITY_THRESHOLD
    for candidate in candidates:
        score = normalized_similarity(description, candidate.description)
        if score > best_score:
            best, best_score = candidate, score
    return best


def _clamp(confidence: float) -> float:
    return min(1.0, max(0.0, confidence))


@dataclass
class MergeUpdate:
    """Evidence to fold into an existing stored pattern."""

    pattern_id: str
    new_sessions: list[str]
    new_confidence: float
    additional_times_seen: int
    related_files: list[str] = field(default_factory=list)


@dataclass
class MergePlan:
    """All mutations for one analysis batch, applied in one transaction."""

    new_patterns: list[Pattern] = field(default_factory=list)
    merge_updates: list[MergeUpdate] = field(default_factory=list)
    redirected: int = 0
    recovered: int = 0
    dropped: int = 0
    suppressed: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.new_patterns and not self.merge_updates


def _fold_into_draft(target: Pattern, draft: NewPattern, seen_at: str) -> None:
    target.confidence = max(target.confidence, _clamp(draft.confidence))
    target.times_seen += max(1, len(draft.source_sessions))
    target.source_sessions = sorted(set(target.source_sessions) | set(draft.source_sessions))
    target.related_files = sorted(set(target.related_files) | set(draft.related_files))
    target.last_seen = max(target.last_seen, seen_at)


def process_updates(
    updates: list[PatternUpdate],
    existing: list[Pattern],
    project: str | None,
    dismissed: Iterable[Pattern] = (),
    seen_at: str | None = None,
) -> MergePlan:
    """Turn AI proposals into a MergePlan. Never raises on bad items.

    Args:
        updates: Proposals from the backend
        existing: Discovered/active patterns in scope (merge candidates)
        project: Scope stamped on new patterns (None = global)
        dismissed: Dismissed patterns in scope; near-duplicates of these are
                   suppressed rather than inserted again
        seen_at: Timestamp for first_seen/last_seen (default: now)
    """
    seen_at = seen_at or to_iso(utc_now())
    plan = MergePlan()
    by_id = {p.id: p for p in existing if p.status in (PatternStatus.DISCOVERED, PatternStatus.ACTIVE)}
    dismissed = list(dismissed)

    def add_new(draft: NewPattern) -> None:
        match = find_similar(draft.description, by_id.values())
        if match is not None:
            logger.debug(f"Redirecting new draft to similar pattern {match.id}")
            plan.redirected += 1
            plan.merge_updates.append(
                MergeUpdate(
                    pattern_id=match.id,
                    new_sessions=list(draft.source_sessions),
                    new_confidence=_clamp(draft.confidence),
                    additional_times_seen=max(1, len(draft.source_sessions)),
                    related_files=list(draft.related_files),
                )
            )
            return

        pending = find_similar(draft.description, plan.new_patterns)
        if pending is not None:
            plan.redirected += 1
            _fold_into_draft(pending, draft, seen_at)
            return

        if find_similar(draft.description, dismissed) is not None:
            logger.info(f"Suppressing draft matching a dismissed pattern: {draft.description[:60]}")
            plan.suppressed += 1
            return

        plan.new_patterns.append(
            Pattern(
                id=str(uuid.uuid4()),
                pattern_type=draft.pattern_type,
                description=draft.description,
                confidence=_clamp(draft.confidence),
                first_seen=seen_at,
                last_seen=seen_at,
                times_seen=1,
                status=PatternStatus.DISCOVERED,
                source_sessions=sorted(set(draft.source_sessions)),
                related_files=sorted(set(draft.related_files)),
                suggested_content=draft.suggested_content,
                suggested_target=draft.suggested_target,
                project=project,
            )
        )

    for update in updates:
        if isinstance(update, NewPattern):
            if not update.description.strip():
                logger.warning("Dropping new pattern with empty description")
                plan.dropped += 1
                continue
            add_new(update)
        elif isinstance(update, UpdateExisting):
            if update.existing_id in by_id:
                plan.merge_updates.append(
                    MergeUpdate(
                        pattern_id=update.existing_id,
                        new_sessions=list(update.new_sessions),
                        new_confidence=_clamp(update.new_confidence),
                        additional_times_seen=max(1, len(update.new_sessions)),
                    )
                )
            elif update.draft is not None and update.draft.description.strip():
                logger.warning(
                    f"AI referenced unknown pattern {update.existing_id}; treating as new"
                )
                plan.recovered += 1
                draft = update.draft
                if not draft.source_sessions:
                    draft.source_sessions = list(update.new_sessions)
                add_new(draft)
            else:
                logger.warning(f"AI referenced unknown pattern {update.existing_id}; dropped")
                plan.dropped += 1
        else:
            logger.warning(f"Dropping unrecognized proposal: {update!r}")
            plan.dropped += 1

    return plan


def apply_merge_plan(conn: sqlite3.Connection, plan: MergePlan, seen_at: str) -> tuple[int, int]:
    """Write a plan inside the caller's transaction.

    Returns:
        (patterns inserted, patterns updated)
    """
    for pattern in plan.new_patterns:
        insert_pattern(conn, pattern)

    updated = 0
    for update in plan.merge_updates:
        if update_pattern_merge(
            conn,
            update.pattern_id,
            new_sessions=update.new_sessions,
            new_confidence=update.new_confidence,
            seen_at=seen_at,
            additional_times_seen=update.additional_times_seen,
            related_files=update.related_files,
        ):
            updated += 1
    return len(plan.new_patterns), updated
