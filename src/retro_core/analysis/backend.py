"""
AI backend capability interface and response parsing.

A backend proposes pattern updates from sessions, generates artifact content
for a pattern, and validates generated content. ``ClaudeCliBackend`` is the
concrete implementation; tests substitute a deterministic mock.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from ..exceptions import BackendError
from ..models import (
    NewPattern,
    Pattern,
    PatternType,
    PatternUpdate,
    SessionMarker,
    SuggestedTarget,
    UpdateExisting,
)
from ..util import strip_code_fences, truncate_for_error

logger = logging.getLogger(__name__)


@dataclass
class ArtifactDraft:
    """Generated artifact content and the name used for its target path."""

    name: str
    content: str


@dataclass
class ValidationResult:
    valid: bool
    feedback: str = ""


@dataclass
class TokenUsage:
    """Running token totals reported by a backend across its calls."""

    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, input_tokens: int, output_tokens: int) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens

    def since(self, earlier: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            self.input_tokens - earlier.input_tokens,
            self.output_tokens - earlier.output_tokens,
        )


class AnalysisBackend(Protocol):
    """Swappable AI backend."""

    usage: TokenUsage

    def propose_patterns(
        self, sessions: list[SessionMarker], existing: list[Pattern]
    ) -> list[PatternUpdate]:
        """Raises BackendError on call failure or an unparseable response."""
        ...

    def generate_artifact(self, pattern: Pattern, feedback: str | None = None) -> ArtifactDraft:
        """Raises GenerationError for unusable content, BackendError on call failure."""
        ...

    def validate_artifact(self, content: str, pattern: Pattern) -> ValidationResult: ...


def _as_str_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{field_name} must be a list of strings")
    return list(value)


def _as_optional_str(value: Any, field_name: str) -> str | None:
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    return value


def _as_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"confidence must be a number, got {type(value).__name__}")
    confidence = float(value)
    if confidence != confidence:  # NaN
        raise ValueError("confidence is NaN")
    return confidence


def _parse_new(item: dict) -> NewPattern:
    description = item.get("description") or ""
    if not isinstance(description, str) or not description.strip():
        raise ValueError("missing description")
    return NewPattern(
        description=description.strip(),
        confidence=_as_confidence(item["confidence"]),
        pattern_type=PatternType.parse(_as_optional_str(item.get("pattern_type"), "pattern_type")),
        source_sessions=_as_str_list(item.get("source_sessions"), "source_sessions"),
        related_files=_as_str_list(item.get("related_files"), "related_files"),
        suggested_content=_as_optional_str(item.get("suggested_content"), "suggested_content") or "",
        suggested_target=SuggestedTarget.parse(
            _as_optional_str(item.get("suggested_target"), "suggested_target")
        ),
    )


def _parse_update(item: dict) -> UpdateExisting:
    existing_id = item.get("existing_id") or ""
    if not isinstance(existing_id, str) or not existing_id:
        raise ValueError("missing existing_id")

    draft = None
    if item.get("description"):
        draft = _parse_new({**item, "confidence": item.get("new_confidence", 0.0)})

    return UpdateExisting(
        existing_id=existing_id,
        new_confidence=_as_confidence(item["new_confidence"]),
        new_sessions=_as_str_list(item.get("new_sessions"), "new_sessions"),
        draft=draft,
    )


def parse_pattern_updates(text: str) -> list[PatternUpdate]:
    """Parse ``{"patterns": [{"action": "new"|"update", ...}]}``.

    A response that is not this shape raises BackendError. Individual items
    that are malformed are skipped with a warning.
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise BackendError(
            f"failed to parse AI response as JSON: {e}\nresponse text: {truncate_for_error(text)}"
        )

    if not isinstance(data, dict) or not isinstance(data.get("patterns"), list):
        raise BackendError(
            f"AI response has no 'patterns' list: {truncate_for_error(text)}"
        )

    updates: list[PatternUpdate] = []
    for index, item in enumerate(data["patterns"]):
        if not isinstance(item, dict):
            logger.warning(f"Skipping pattern item {index}: not an object")
            continue
        action = item.get("action")
        try:
            if action == "new":
                updates.append(_parse_new(item))
            elif action == "update":
                updates.append(_parse_update(item))
            else:
                logger.warning(f"Skipping pattern item {index}: unknown action {action!r}")
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed pattern item {index}: {e}")
    return updates


def parse_validation(text: str) -> ValidationResult | None:
    """Parse ``{"valid": bool, "feedback": str}``; None when unparseable."""
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("valid"), bool):
        return None
    return ValidationResult(valid=data["valid"], feedback=str(data.get("feedback") or ""))
