"""
Exclusive PID lockfile with a liveness probe.

The lockfile holds the holder's process id. A file whose PID is not alive
(crashed or killed holder) is stale and gets reclaimed.

Location: ~/.retro/retro.lock (or $RETRO_HOME/retro.lock)
"""

import logging
import os
import time
import uuid
from pathlib import Path
from typing import Protocol

from .config import get_retro_home
from .exceptions import LockError

logger = logging.getLogger(__name__)

LOCK_FILENAME = "retro.lock"

# A lockfile with no readable PID younger than this is still being written
UNREADABLE_GRACE_SECONDS = 10.0


def get_default_lock_path(retro_home: Path | None = None) -> Path:
    return (retro_home or get_retro_home()) / LOCK_FILENAME


class ProcessProbe(Protocol):
    """Answers whether a process id refers to a live process."""

    def is_alive(self, pid: int) -> bool: ...


class OsProcessProbe:
    """Liveness via signal 0 (POSIX) or OpenProcess (Windows, through os.kill)."""

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists but owned by another user
            return True
        except OSError:
            return False
        return True


def _read_pid(path: Path) -> int | None:
    try:
        raw = path.read_text().strip()
    except FileNotFoundError:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _age_seconds(path: Path) -> float | None:
    try:
        return time.time() - path.stat().st_mtime
    except FileNotFoundError:
        return None


def _publish(path: Path, pid: int) -> bool:
    """Create ``path`` already holding ``pid``; False if it exists.

    The PID goes into a private temp file that is hard-linked into place, so
    the lockfile is never visible without its content.
    """
    tmp = path.with_name(f".{path.name}.{pid}.{uuid.uuid4().hex[:8]}")
    tmp.write_text(str(pid))
    try:
        os.link(tmp, path)
    except FileExistsError:
        return False
    finally:
        tmp.unlink(missing_ok=True)
    return True


class LockFile:
    """A held lock. Release removes the file only if it still holds our PID."""

    def __init__(self, path: Path, pid: int):
        self.path = path
        self.pid = pid
        self._released = False

    @classmethod
    def try_acquire(
        cls,
        path: Path | None = None,
        probe: ProcessProbe | None = None,
        pid: int | None = None,
    ) -> "LockFile | None":
        """Take the lock without waiting.

        A lockfile without a readable PID is left alone for
        UNREADABLE_GRACE_SECONDS, then treated as stale.

        Returns:
            The held lock, or None if another process holds it
        """
        path = path or get_default_lock_path()
        probe = probe or OsProcessProbe()
        pid = pid if pid is not None else os.getpid()
        path.parent.mkdir(parents=True, exist_ok=True)

        # Two attempts: the second follows removal of a stale file
        for _ in range(2):
            if _publish(path, pid):
                return cls(path, pid)

            holder = _read_pid(path)
            if holder is None:
                age = _age_seconds(path)
                if age is None:
                    continue
                if age < UNREADABLE_GRACE_SECONDS:
                    logger.debug(f"Lockfile {path} has no PID yet; treating as held")
                    return None
            elif probe.is_alive(holder):
                logger.debug(f"Lock held by live process {holder}")
                return None

            if _read_pid(path) != holder:
                logger.debug("Lockfile changed while checking it; another process won")
                return None
            logger.info(f"Reclaiming stale lock (pid {holder})")
            path.unlink(missing_ok=True)

        return None

    @classmethod
    def acquire(
        cls,
        path: Path | None = None,
        probe: ProcessProbe | None = None,
        pid: int | None = None,
    ) -> "LockFile":
        """Take the lock or raise LockError (interactive commands)."""
        lock = cls.try_acquire(path, probe, pid)
        if lock is None:
            holder = _read_pid(path or get_default_lock_path())
            raise LockError(f"Another retro process is running (pid {holder})")
        return lock

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        if _read_pid(self.path) != self.pid:
            logger.warning(f"Lockfile {self.path} no longer ours; leaving it")
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self) -> "LockFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
