"""Shared CLI plumbing: logging setup, system construction, error exit."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import typer

from retro_core.config import load_config
from retro_core.exceptions import RetroError
from retro_core.system import RetroSystem

from .console import print_error

# Replaced in tests to inject mock collaborators
system_factory = RetroSystem


def setup_logging(level_name: str) -> None:
    """Configure the root logger once; logs go to stderr."""
    level = getattr(logging, level_name.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(level)


@contextmanager
def exit_on_error() -> Iterator[None]:
    """Turn RetroError into a red message and exit code 1."""
    try:
        yield
    except RetroError as e:
        print_error(str(e))
        raise typer.Exit(1)


def get_system() -> RetroSystem:
    with exit_on_error():
        config = load_config()
        setup_logging(config["server"]["log_level"])
        return system_factory(config=config)
