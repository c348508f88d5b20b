"""Advisory per-agent locks for record updates.

Each agent record has a companion lock file at ``<root>/locks/<agent-id>.lock``.
Read-modify-write cycles on ``metadata.json`` hold an exclusive lock on it so
that concurrent heartbeats and task updates never lose each other's writes.
Readers never lock; they rely on records being replaced atomically.

Unix uses ``fcntl.flock``, Windows uses ``msvcrt.locking`` on the first byte.

Example:
    with FileLock(root / "locks" / f"{agent_id}.lock", timeout=5.0):
        record = load_json(path)
        ...
"""

from __future__ import annotations

import os
import stat
import sys
import time
from pathlib import Path
from typing import Optional, Union

from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "FileLock",
    "FileLockError",
    "FileLockTimeout",
    "LOCK_RETRY_INTERVAL",
]

# Polling interval while another process holds the lock
LOCK_RETRY_INTERVAL = 0.05

if sys.platform == "win32":
    import msvcrt

    _LOCK_MODULE = "msvcrt"
else:
    import fcntl

    _LOCK_MODULE = "fcntl"


class FileLockError(Exception):
    """Base exception for file locking errors."""

    pass


class FileLockTimeout(FileLockError):
    """Raised when file lock acquisition times out."""

    pass


class FileLock:
    """Exclusive advisory lock held for the duration of a ``with`` block.

    Args:
        file_path: Lock file path (created with 0600 permissions if missing)
        timeout: Maximum seconds to wait (None = block forever)

    Raises:
        FileLockTimeout: If the lock cannot be acquired within timeout
        FileLockError: If the lock is re-entered or the lock file is replaced
            while acquiring
    """

    def __init__(self, file_path: Union[Path, str], timeout: Optional[float] = 5.0):
        self.file_path = Path(file_path)
        self.timeout = timeout
        self._lock_file = None
        self._file_id: Optional[tuple[int, int]] = None
        self._is_locked = False

    @property
    def is_locked(self) -> bool:
        return self._is_locked

    def __enter__(self) -> "FileLock":
        if self._is_locked:
            raise FileLockError(
                f"Lock on {self.file_path} is already acquired. Reentrancy is not supported."
            )
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def acquire(self) -> None:
        """Acquire the lock, polling until it is free or the timeout expires."""
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            if not self.file_path.exists():
                self.file_path.touch()
                os.chmod(self.file_path, stat.S_IRUSR | stat.S_IWUSR)
        except PermissionError as e:
            raise FileLockError(f"Permission denied creating lock file {self.file_path}") from e

        start_time = time.monotonic()
        while True:
            try:
                self._try_lock()
                self._verify_lock_integrity()
                self._is_locked = True
                logger.debug(f"Acquired lock on {self.file_path}")
                return
            except OSError as e:
                if self.timeout is not None and time.monotonic() - start_time >= self.timeout:
                    raise FileLockTimeout(
                        f"Could not acquire lock on {self.file_path} within {self.timeout}s"
                    ) from e
                time.sleep(LOCK_RETRY_INTERVAL)

    def _try_lock(self) -> None:
        lock_file = open(self.file_path, "r+b")
        try:
            fd = lock_file.fileno()
            st = os.fstat(fd)
            self._file_id = (st.st_dev, st.st_ino)
            if _LOCK_MODULE == "fcntl":
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            else:
                msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except BaseException:
            lock_file.close()
            raise
        self._lock_file = lock_file

    def _verify_lock_integrity(self) -> None:
        """Fail if the lock file was deleted or replaced while we waited on it."""
        if _LOCK_MODULE != "fcntl" or self._file_id is None:
            return
        try:
            path_stat = os.stat(self.file_path)
            current = (path_stat.st_dev, path_stat.st_ino)
        except FileNotFoundError:
            current = None
        if current != self._file_id:
            self._close()
            raise FileLockError(f"Lock file {self.file_path} was replaced during lock acquisition")

    def release(self) -> None:
        """Release the lock. Safe to call when not held."""
        if self._lock_file is None:
            return
        try:
            fd = self._lock_file.fileno()
            if _LOCK_MODULE == "fcntl":
                fcntl.flock(fd, fcntl.LOCK_UN)
            else:
                self._lock_file.seek(0)
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            logger.debug(f"Released lock on {self.file_path}")
        except OSError as e:
            logger.warning(f"Error releasing lock on {self.file_path}: {e}")
        finally:
            self._close()

    def _close(self) -> None:
        if self._lock_file is not None:
            try:
                self._lock_file.close()
            except OSError:
                pass
        self._lock_file = None
        self._file_id = None
        self._is_locked = False
