"""
Single-writer process lock for the SQLite stores.

Each database gets a sibling ``.lock`` file that is held with an exclusive
non-blocking ``flock`` for the lifetime of the run.
"""

import fcntl
import os
from pathlib import Path
import logging

from utils.exceptions import DatabaseLockedError

logger = logging.getLogger(__name__)


class ProcessLock:
    """Exclusive advisory lock guarding one database file."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.lock_path = db_path.with_name(db_path.name + ".lock")
        self._fd = None

    def acquire(self):
        """
        Take the lock without waiting.

        Raises:
            DatabaseLockedError: If another process holds it
        """
        if self._fd is not None:
            return

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise DatabaseLockedError(str(self.db_path))

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug(f"Acquired lock: {self.lock_path}")

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug(f"Released lock: {self.lock_path}")

    @property
    def held(self) -> bool:
        return self._fd is not None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
