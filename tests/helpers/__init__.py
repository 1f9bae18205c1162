"""Test helpers for retro.

This package provides collaborator doubles for the retro core:
- MockBackend: Scripted AI backend
- MockForge: In-memory forge with sequential change-request URLs
- FakeGitWorkspace: Records git operations
- FakeProbe: Process liveness from a fixed PID set
"""

from .mock_backend import MockBackend, failing_backend, unusable_draft
from .mock_forge import FakeGitWorkspace, FakeProbe, MockForge

__all__ = [
    # Backend
    "MockBackend",
    "failing_backend",
    "unusable_draft",
    # Forge and workspace
    "MockForge",
    "FakeGitWorkspace",
    "FakeProbe",
]
