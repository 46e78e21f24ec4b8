"""Abstract byte store shared by checkpoint stores and repositories."""

from abc import ABC, abstractmethod
from typing import Iterable, Mapping


def check_bytes(value: object, key: str | None = None) -> None:
    """Raise ``TypeError`` unless ``value`` is ``bytes``."""
    if not isinstance(value, bytes):
        where = f" for {key}" if key is not None else ""
        raise TypeError(f"Expected bytes{where}, got {type(value).__name__}")


class KVStore(ABC):
    """String-keyed store of raw bytes.

    Checkpoint stores keep one of these per snapshot; repositories keep
    every object and ref in a single one. Encoding is the caller's job.
    """

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Value stored under ``key``; None when absent."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def get_many(self, *args: str) -> Mapping[str, bytes]:
        """Values for ``args``; absent keys are left out of the result."""

    @abstractmethod
    def set_many(self, **kwargs: bytes) -> None:
        """Write every pair, as one transaction where the backend has them.

        Repositories write a whole commit this way before any ref points
        at it.
        """

    @abstractmethod
    def items(self) -> Iterable[tuple[str, bytes]]:
        """Snapshot of every pair."""

    @abstractmethod
    def keys(self) -> Iterable[str]:
        """Snapshot of every key, safe to hold while the store changes."""

    @abstractmethod
    def __contains__(self, key: str) -> bool:
        """Whether ``key`` is present."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``; a missing key is not an error."""

    @abstractmethod
    def remove_many(self, *keys: str) -> None:
        """Remove multiple keys, ignoring missing ones."""

    @abstractmethod
    def cas(self, key: str, value: bytes, expected: bytes | None) -> bool:
        """Set ``key`` to ``value`` only if it currently holds ``expected``.

        ``expected=None`` requires the key to be absent. Returns whether
        the swap happened. Branch and ref updates go through here.
        """

    @abstractmethod
    def clear(self) -> None:
        """Delete every key."""

    def replace_all(self, items: Mapping[str, bytes]) -> None:
        """Make the store hold exactly ``items``."""
        self.clear()
        if items:
            self.set_many(**items)
