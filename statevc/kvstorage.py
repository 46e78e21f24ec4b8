"""Checkpointed key-value storage keyed by content hash.

A store holds two snapshots: ``current``, which every write goes to, and
``checkpoint``, the last known-good state. ``commit_checkpoint`` copies
``current`` over ``checkpoint``; ``revert_to_latest_checkpoint`` copies it
back. Only one generation is kept.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Iterable

from .errors import NotFound
from .kv.base import KVStore, check_bytes
from .kv.disk import Disk
from .kv.memory import Memory
from .types import Hash256

logger = logging.getLogger(__name__)


class KVStorage(ABC):
    """Checkpoint/revert contract over a ``Hash256 -> bytes`` mapping."""

    @abstractmethod
    def commit_checkpoint(self) -> None:
        """Replace the checkpoint with a copy of the current state."""

    @abstractmethod
    def revert_to_latest_checkpoint(self) -> None:
        """Discard uncommitted writes by restoring the checkpoint."""

    @abstractmethod
    def insert_or_update(self, key: Hash256, value: bytes) -> None:
        """Upsert ``key`` in the current state."""

    @abstractmethod
    def remove(self, key: Hash256) -> None:
        """Delete ``key`` from the current state.

        Raises:
            NotFound: If ``key`` is absent.
        """

    @abstractmethod
    def get(self, key: Hash256) -> bytes:
        """Value of ``key`` in the current state.

        Raises:
            NotFound: If ``key`` is absent.
        """

    def contain(self, key: Hash256) -> bool:
        """Whether ``key`` is present in the current state."""
        try:
            self.get(key)
        except NotFound:
            return False
        return True


class SnapshotDB(KVStorage):
    """``KVStorage`` over a pair of byte stores, one per snapshot."""

    def __init__(self, current: KVStore, checkpoint: KVStore) -> None:
        self._current = current
        self._checkpoint = checkpoint

    def commit_checkpoint(self) -> None:
        self._checkpoint.replace_all(dict(self._current.items()))
        logger.debug("Checkpoint committed (%d keys)", len(self))

    def revert_to_latest_checkpoint(self) -> None:
        self._current.replace_all(dict(self._checkpoint.items()))
        logger.debug("Reverted to checkpoint (%d keys)", len(self))

    def insert_or_update(self, key: Hash256, value: bytes) -> None:
        check_bytes(value)
        self._current.set(key.hex(), value)

    def remove(self, key: Hash256) -> None:
        if key.hex() not in self._current:
            raise NotFound(f"Key {key.hex()} not found")
        self._current.remove(key.hex())

    def get(self, key: Hash256) -> bytes:
        value = self._current.get(key.hex())
        if value is None:
            raise NotFound(f"Key {key.hex()} not found")
        return value

    def keys(self) -> Iterable[Hash256]:
        """Keys of the current state."""
        return [Hash256.from_hex(k) for k in self._current.keys()]

    def __len__(self) -> int:
        return sum(1 for _ in self._current.keys())


class MemoryDB(SnapshotDB):
    """In-process checkpoint store."""

    def __init__(self) -> None:
        super().__init__(Memory(), Memory())

    @classmethod
    def new(cls) -> "MemoryDB":
        """An empty store."""
        return cls()

    def open(self) -> "MemoryDB":
        """An independent copy of this store, both snapshots included."""
        clone = MemoryDB()
        clone._current = self._current.copy()
        clone._checkpoint = self._checkpoint.copy()
        return clone


class DiskDB(SnapshotDB):
    """Persistent checkpoint store kept in ``directory``.

    Both snapshots survive a reopen of the same directory.
    """

    def __init__(self, directory: str) -> None:
        self.directory = str(directory)
        super().__init__(
            Disk(os.path.join(self.directory, "current")),
            Disk(os.path.join(self.directory, "checkpoint")),
        )

    def close(self) -> None:
        self._current.close()
        self._checkpoint.close()
