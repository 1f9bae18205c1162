"""Small shared helpers: timestamps, cooldowns, AI response cleanup."""

from datetime import datetime, timedelta, timezone
from pathlib import Path


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Serialize a datetime as ISO 8601 (naive values are treated as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp, returning None when missing or malformed."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def within_cooldown(last: str | None, cooldown_minutes: int, now: datetime | None = None) -> bool:
    """True if ``last`` is less than ``cooldown_minutes`` before ``now``.

    A missing or unparseable timestamp never blocks a stage.
    """
    last_dt = parse_iso(last)
    if last_dt is None:
        return False
    now = now or utc_now()
    return now - last_dt < timedelta(minutes=cooldown_minutes)


def strip_code_fences(content: str) -> str:
    """Strip markdown code fences from an AI response.

    Handles ```json, ```yaml, ```markdown and bare ``` fences. Returns the
    inner content if fences are found, otherwise the input trimmed.
    """
    trimmed = content.strip()
    if not trimmed.startswith("```"):
        return trimmed

    result: list[str] = []
    in_block = False
    for line in trimmed.splitlines():
        if line.startswith("```"):
            if in_block:
                break
            in_block = True
            continue
        if in_block:
            result.append(line)

    if not result:
        return trimmed
    return "\n".join(result)


def truncate_for_error(text: str, limit: int = 500) -> str:
    """Trim long AI output before embedding it in an error message."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def shorten_path(path: str) -> str:
    """Replace the home directory prefix with ~ for display."""
    home = str(Path.home())
    if path.startswith(home):
        return "~" + path[len(home):]
    return path
