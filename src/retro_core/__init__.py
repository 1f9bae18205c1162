"""Retro - mine agent session history for recurring patterns and curate them
into reviewed knowledge artifacts (skills, CLAUDE.md rules, global agents).

Usage:
    from retro_core import RetroSystem

    system = RetroSystem()
    system.analyze(project="/path/to/repo")
    system.generate(project="/path/to/repo")

    queue = system.review_queue()
    items = queue.pending()
"""

from .exceptions import RetroError
from .system import RetroSystem

__all__ = [
    "RetroError",
    "RetroSystem",
]

__version__ = "0.1.0"
