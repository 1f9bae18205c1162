"""
Append-only audit log (JSON Lines).

Every lifecycle decision writes exactly one entry:
    {"timestamp": "...", "action": "analyze_skipped", "details": {...}}

Location: ~/.retro/audit.jsonl (or $RETRO_HOME/audit.jsonl)
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import get_retro_home
from .util import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

AUDIT_FILENAME = "audit.jsonl"


def get_default_audit_path(retro_home: Path | None = None) -> Path:
    return (retro_home or get_retro_home()) / AUDIT_FILENAME


@dataclass
class AuditEntry:
    """One line of the audit log."""

    timestamp: str
    action: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "action": self.action, "details": self.details}


def append(path: Path, action: str, details: dict[str, Any] | None = None) -> AuditEntry:
    """Append one entry; the file and its directory are created on demand."""
    entry = AuditEntry(timestamp=to_iso(utc_now()), action=action, details=details or {})
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry.to_dict(), sort_keys=True, default=str) + "\n")
    logger.debug(f"Audit: {action} {entry.details}")
    return entry


def read_entries(path: Path, since: str | None = None) -> list[AuditEntry]:
    """Read entries in file order, optionally only those after ``since``.

    Malformed lines are skipped.
    """
    if not path.exists():
        return []

    cutoff = parse_iso(since)
    entries: list[AuditEntry] = []
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                entry = AuditEntry(
                    timestamp=data["timestamp"],
                    action=data["action"],
                    details=data.get("details") or {},
                )
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed audit line {line_no}: {e}")
                continue

            if cutoff is not None:
                ts = parse_iso(entry.timestamp)
                if ts is None or ts <= cutoff:
                    continue
            entries.append(entry)
    return entries


def count_actions(path: Path, action: str) -> int:
    return sum(1 for entry in read_entries(path) if entry.action == action)
