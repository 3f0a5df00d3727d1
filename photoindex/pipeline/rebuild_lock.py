"""
Rebuild lock - marks the database file as owned by one writer.

The lock is a ``<database>.lock`` file created with O_EXCL and holding the
writer's PID. A lock whose PID is no longer running is stale and is removed
on the next acquire/inspection.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import psutil

from photoindex.errors import ErrorKind, ImageIndexError

logger = logging.getLogger(__name__)


def lock_path_for(db_path) -> Path:
    db_path = Path(db_path)
    return db_path.with_name(db_path.name + ".lock")


def _read_pid(path: Path) -> Optional[int]:
    try:
        text = path.read_text(encoding="ascii").strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"[LOCK] cannot read {path}: {e}")
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _is_pid_alive(pid: int) -> bool:
    try:
        return psutil.pid_exists(pid)
    except (ValueError, OverflowError):
        return False


class RebuildLock:
    """Exclusive rebuild lock for one database file."""

    def __init__(self, db_path):
        self.path = lock_path_for(db_path)
        self._held = False

    def holder_pid(self) -> Optional[int]:
        """PID of the live lock holder, or None (stale locks are cleared)."""
        if not self.path.exists():
            return None
        pid = _read_pid(self.path)
        if pid is not None and _is_pid_alive(pid):
            return pid
        logger.warning(f"[LOCK] removing stale lock {self.path} (pid={pid})")
        self._unlink()
        return None

    def is_locked(self) -> bool:
        return self.holder_pid() is not None

    def acquire(self) -> "RebuildLock":
        """
        Take the lock.

        Raises:
            ImageIndexError(REBUILD_IN_PROGRESS): another live process holds it
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                pid = self.holder_pid()
                if pid is not None:
                    raise ImageIndexError(
                        ErrorKind.REBUILD_IN_PROGRESS,
                        f"{self.path} held by pid {pid}",
                    )
                continue
            with os.fdopen(fd, "w", encoding="ascii") as f:
                f.write(str(os.getpid()))
            self._held = True
            logger.debug(f"[LOCK] acquired {self.path}")
            return self
        raise ImageIndexError(ErrorKind.REBUILD_IN_PROGRESS, f"could not acquire {self.path}")

    def release(self) -> None:
        if self._held:
            self._unlink()
            self._held = False
            logger.debug(f"[LOCK] released {self.path}")

    def _unlink(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
