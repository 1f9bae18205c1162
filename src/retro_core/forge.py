"""
Forge collaborator: the code host that reviews shared changes.

``GitHubForge`` drives the ``gh`` CLI. Change requests are GitHub pull
requests; their URL is the reference stored on applied projections.
"""

import logging
import subprocess
from enum import Enum
from pathlib import Path
from typing import Protocol

from .exceptions import ForgeError

logger = logging.getLogger(__name__)

GH_TIMEOUT_SECONDS = 60


class ChangeRequestState(str, Enum):
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"  # Closed without merge


class Forge(Protocol):
    def is_available(self) -> bool: ...

    def default_branch(self) -> str: ...

    def create_change_request(self, branch: str, base: str, title: str, body: str) -> str:
        """Open a change request and return its URL."""
        ...

    def change_request_state(self, url: str) -> ChangeRequestState: ...


class GitHubForge:
    """Forge over the GitHub CLI."""

    def __init__(self, repo_root: Path | None = None):
        self.repo_root = repo_root

    def _gh(self, *args: str) -> str:
        try:
            result = subprocess.run(
                ["gh", *args],
                cwd=self.repo_root,
                capture_output=True,
                text=True,
                timeout=GH_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            raise ForgeError(f"gh {' '.join(args[:2])} timed out")
        except FileNotFoundError:
            raise ForgeError("gh CLI not found on PATH")

        if result.returncode != 0:
            raise ForgeError(f"gh {' '.join(args[:2])} failed: {result.stderr.strip()}")
        return result.stdout.strip()

    def is_available(self) -> bool:
        try:
            self._gh("--version")
        except ForgeError:
            return False
        return True

    def default_branch(self) -> str:
        name = self._gh("repo", "view", "--json", "defaultBranchRef", "-q", ".defaultBranchRef.name")
        if not name:
            raise ForgeError("default branch name is empty")
        return name

    def create_change_request(self, branch: str, base: str, title: str, body: str) -> str:
        url = self._gh(
            "pr", "create", "--head", branch, "--base", base, "--title", title, "--body", body
        )
        if not url:
            raise ForgeError("gh pr create returned no URL")
        # gh prints progress lines before the URL
        return url.splitlines()[-1].strip()

    def change_request_state(self, url: str) -> ChangeRequestState:
        state = self._gh("pr", "view", url, "--json", "state", "-q", ".state").upper()
        if state == "MERGED":
            return ChangeRequestState.MERGED
        if state == "CLOSED":
            return ChangeRequestState.CLOSED
        if state == "OPEN":
            return ChangeRequestState.OPEN
        raise ForgeError(f"Unknown pull request state for {url}: {state!r}")
