"""Exclusive lock on a repository directory.

Uses ``fcntl.flock`` on a ``LOCK`` file inside the directory. The lock is
held by an open file descriptor, so it is released when the descriptor
closes: on ``release()``, or when the owning object is collected.
"""

import fcntl
import logging
import os
import weakref

from .errors import BackendError

logger = logging.getLogger(__name__)

LOCK_FILE = "LOCK"


class RepositoryLock:
    """Non-blocking exclusive lock held for the lifetime of the object."""

    def __init__(self, directory: str) -> None:
        self.path = os.path.join(str(directory), LOCK_FILE)
        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise BackendError(f"Cannot open lock file {self.path}: {e}") from e
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            raise BackendError(
                f"Repository at {directory} is locked by another instance"
            ) from e
        self._finalizer = weakref.finalize(self, os.close, fd)
        logger.debug("Acquired lock %s", self.path)

    @property
    def held(self) -> bool:
        return self._finalizer.alive

    def release(self) -> None:
        if self._finalizer.alive:
            self._finalizer()
            logger.debug("Released lock %s", self.path)

    def __enter__(self) -> "RepositoryLock":
        return self

    def __exit__(self, *exc) -> None:
        self.release()
