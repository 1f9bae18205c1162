"""Prompt builders for the Claude CLI backend."""

import json
import logging
from pathlib import Path

from ..models import Pattern, SessionMarker, SuggestedTarget
from ..scrub import scrub_secrets

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 150_000
MAX_SESSION_CHARS = 12_000


def _message_text(entry: dict) -> str:
    message = entry.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        return "\n".join(p for p in parts if p)
    return ""


def load_session_excerpt(marker: SessionMarker, scrub: bool = True) -> str:
    """User/assistant text from a transcript, truncated to MAX_SESSION_CHARS."""
    path = Path(marker.session_path)
    lines: list[str] = []
    size = 0
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for raw in f:
                try:
                    entry = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                if not isinstance(entry, dict) or entry.get("type") not in ("user", "assistant"):
                    continue
                text = _message_text(entry).strip()
                if not text:
                    continue
                line = f"[{entry['type']}] {text}"
                lines.append(line)
                size += len(line)
                if size >= MAX_SESSION_CHARS:
                    break
    except OSError as e:
        logger.warning(f"Cannot read session {marker.session_id}: {e}")
        return ""

    excerpt = "\n".join(lines)[:MAX_SESSION_CHARS]
    return scrub_secrets(excerpt) if scrub else excerpt


def _compact_pattern(pattern: Pattern) -> dict:
    return {
        "id": pattern.id,
        "pattern_type": pattern.pattern_type.value,
        "description": pattern.description,
        "confidence": pattern.confidence,
        "times_seen": pattern.times_seen,
        "suggested_target": pattern.suggested_target.value,
    }


def build_analysis_prompt(
    sessions: list[SessionMarker], existing: list[Pattern], scrub: bool = True
) -> str:
    patterns_json = json.dumps([_compact_pattern(p) for p in existing], indent=2)
    budget = MAX_PROMPT_CHARS - 2_000 - len(patterns_json)

    compact_sessions = []
    used = 0
    for marker in sessions:
        excerpt = load_session_excerpt(marker, scrub=scrub)
        if compact_sessions and used + len(excerpt) > budget:
            break
        compact_sessions.append(
            {"session_id": marker.session_id, "project": marker.project, "transcript": excerpt}
        )
        used += len(excerpt)
    sessions_json = json.dumps(compact_sessions, indent=2)

    return f"""Analyze these AI coding agent sessions for recurring patterns: repeated
user instructions, recurring agent mistakes, and repeated workflows. Explicit
"always"/"never" directives count even from one session.

Existing patterns (use "update" with the existing id for the same topic):
{patterns_json}

Sessions:
{sessions_json}

Return ONLY a JSON object:
{{"patterns": [
  {{"action": "new", "pattern_type": "repetitive_instruction", "description": "...",
    "confidence": 0.8, "source_sessions": ["..."], "related_files": [],
    "suggested_content": "...", "suggested_target": "claude_md|skill|global_agent|db_only"}},
  {{"action": "update", "existing_id": "...", "new_sessions": ["..."], "new_confidence": 0.9}}
]}}"""


def build_generation_prompt(pattern: Pattern, feedback: str | None = None) -> str:
    kind = "global agent" if pattern.suggested_target == SuggestedTarget.GLOBAL_AGENT else "skill"
    related = ", ".join(pattern.related_files) or "None"
    feedback_section = ""
    if feedback:
        feedback_section = f"\nYour previous attempt was rejected: {feedback}\n"

    return f"""Write a Claude Code {kind} for this pattern.

Pattern type: {pattern.pattern_type.value}
Description: {pattern.description}
Suggested content: {pattern.suggested_content}
Related files: {related}
Times seen: {pattern.times_seen}
{feedback_section}
Start with YAML frontmatter containing `name` (lowercase letters, digits,
hyphens) and `description`, then the body. Return only the file content."""


def build_validation_prompt(content: str, pattern: Pattern) -> str:
    return f"""Review this generated artifact against its pattern.

Artifact:
{content}

Pattern: {pattern.description}

Check: valid frontmatter name, a description of when to use it, specific
actionable body, relevance to the pattern. Return ONLY JSON:
{{"valid": true, "feedback": ""}} or {{"valid": false, "feedback": "..."}}"""
