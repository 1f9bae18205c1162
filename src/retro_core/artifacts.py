"""
Artifact targets on disk: path resolution, frontmatter names, the CLAUDE.md
managed section and backed-up writes.

Target paths:
    skill         <project>/.claude/skills/<name>/SKILL.md   (shared)
    claude_md     <project>/CLAUDE.md                        (shared)
    global_agent  <claude_dir>/agents/<name>.md              (personal)
"""

import logging
import re
import shutil
from pathlib import Path

import yaml

from .util import to_iso, utc_now

logger = logging.getLogger(__name__)

MANAGED_START = "<!-- retro:managed:start -->"
MANAGED_END = "<!-- retro:managed:end -->"
MANAGED_HEADER = "## Retro-Discovered Patterns"

_NAME_RE = re.compile(r"^[a-z0-9-]+$")


def skill_path(project_root: str, name: str) -> str:
    return str(Path(project_root) / ".claude" / "skills" / name / "SKILL.md")


def claude_md_path(project_root: str | None) -> str:
    return str(Path(project_root or ".") / "CLAUDE.md")


def agent_path(claude_dir: Path, name: str) -> str:
    return str(claude_dir / "agents" / f"{name}.md")


def split_frontmatter(content: str) -> tuple[dict, str] | None:
    """Split ``---`` YAML frontmatter from the body; None if absent or invalid."""
    lines = content.splitlines()
    if not lines or lines[0].strip() != "---":
        return None
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            try:
                meta = yaml.safe_load("\n".join(lines[1:index])) or {}
            except yaml.YAMLError:
                return None
            if not isinstance(meta, dict):
                return None
            return meta, "\n".join(lines[index + 1:])
    return None


def parse_frontmatter_name(content: str) -> str | None:
    """The ``name`` field if it is lowercase letters, digits and hyphens."""
    parsed = split_frontmatter(content)
    if parsed is None:
        return None
    name = parsed[0].get("name")
    if isinstance(name, str) and _NAME_RE.match(name.strip()):
        return name.strip()
    return None


# =============================================================================
# CLAUDE.md managed section
# =============================================================================


def _split_managed(content: str) -> tuple[str, str, str] | None:
    start = content.find(MANAGED_START)
    if start < 0:
        return None
    inner_start = start + len(MANAGED_START)
    end = content.find(MANAGED_END, inner_start)
    if end < 0:
        return None
    return content[:start], content[inner_start:end], content[end + len(MANAGED_END):]


def read_managed_rules(content: str) -> list[str]:
    split = _split_managed(content)
    if split is None:
        return []
    return [
        line.strip()[2:]
        for line in split[1].splitlines()
        if line.strip().startswith("- ")
    ]


def build_managed_section(rules: list[str]) -> str:
    lines = [MANAGED_START, MANAGED_HEADER, ""]
    lines.extend(f"- {rule}" for rule in rules)
    lines.extend(["", MANAGED_END])
    return "\n".join(lines)


def merge_claude_md(existing: str, new_rules: list[str]) -> str:
    """Add rules to the managed section, keeping rules already there.

    Content outside the delimiters is never touched. Without a managed
    section one is appended.
    """
    rules = read_managed_rules(existing)
    for rule in new_rules:
        rule = " ".join(rule.split())
        if rule and rule not in rules:
            rules.append(rule)
    section = build_managed_section(rules)

    split = _split_managed(existing)
    if split is not None:
        before, _, after = split
        return f"{before}{section}{after}"

    result = existing
    if result and not result.endswith("\n"):
        result += "\n"
    if result:
        result += "\n"
    return result + section + "\n"


# =============================================================================
# Writes
# =============================================================================


def backup_file(path: Path, backup_dir: Path) -> Path:
    """Copy ``path`` into ``backup_dir`` with a timestamp suffix."""
    backup_dir.mkdir(parents=True, exist_ok=True)
    stamp = to_iso(utc_now()).replace(":", "").replace("+", "_")
    target = backup_dir / f"{path.name}.{stamp}.bak"
    shutil.copy2(path, target)
    logger.debug(f"Backed up {path} to {target}")
    return target


def write_file_with_backup(path: Path, content: str, backup_dir: Path) -> None:
    if path.exists():
        backup_file(path, backup_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
