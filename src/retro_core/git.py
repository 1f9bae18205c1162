"""
Git working-tree operations used by the shared apply track.

Every failing command raises ForgeError with git's stderr.
"""

import logging
import subprocess
from pathlib import Path
from typing import Protocol

from .exceptions import ForgeError

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 120


class GitWorkspace(Protocol):
    """Branch/commit/push operations on one working tree."""

    root: Path

    def current_branch(self) -> str: ...

    def fetch(self, branch: str) -> None: ...

    def stash_push(self) -> bool: ...

    def stash_pop(self) -> None: ...

    def create_branch(self, name: str, start_point: str | None = None) -> None: ...

    def checkout(self, name: str) -> None: ...

    def commit_files(self, files: list[str], message: str) -> None: ...

    def push_current_branch(self) -> None: ...


def _run_git(args: list[str], cwd: Path | None) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired:
        raise ForgeError(f"git {args[0]} timed out")
    except FileNotFoundError:
        raise ForgeError("git not found on PATH")


def git_root(path: Path | None = None) -> Path | None:
    """Top-level directory of the repository containing ``path``, if any."""
    try:
        result = _run_git(["rev-parse", "--show-toplevel"], path)
    except ForgeError:
        return None
    if result.returncode != 0:
        return None
    return Path(result.stdout.strip())


class GitRepository:
    """GitWorkspace backed by the git CLI."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _git(self, *args: str) -> str:
        result = _run_git(list(args), self.root)
        if result.returncode != 0:
            raise ForgeError(f"git {args[0]} failed: {result.stderr.strip()}")
        return result.stdout

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD").strip()

    def fetch(self, branch: str) -> None:
        self._git("fetch", "origin", branch)

    def stash_push(self) -> bool:
        """Stash uncommitted changes. Returns True if something was stashed."""
        out = self._git("stash", "push", "-m", "retro: temporary stash for branch switch")
        return "No local changes" not in out

    def stash_pop(self) -> None:
        self._git("stash", "pop")

    def create_branch(self, name: str, start_point: str | None = None) -> None:
        args = ["checkout", "-b", name]
        if start_point:
            args.append(start_point)
        self._git(*args)

    def checkout(self, name: str) -> None:
        self._git("checkout", name)

    def commit_files(self, files: list[str], message: str) -> None:
        self._git("add", "--", *files)
        self._git("commit", "-m", message)

    def push_current_branch(self) -> None:
        self._git("push", "-u", "origin", "HEAD")
