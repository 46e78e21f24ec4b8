"""In-memory KV store."""

import threading
from typing import Iterable, Mapping

from .base import KVStore, check_bytes


class Memory(KVStore):
    """A dict-backed KV store. Lives and dies with the process."""

    def __init__(self, initial: Mapping[str, bytes] | None = None) -> None:
        self.memory: dict[str, bytes] = dict(initial or {})
        self._lock = threading.Lock()

    def copy(self) -> "Memory":
        """An independent store holding the same items."""
        return Memory(self.memory)

    def get(self, key: str) -> bytes | None:
        return self.memory.get(key)

    def set(self, key: str, value: bytes) -> None:
        check_bytes(value, key)
        self.memory[key] = value

    def get_many(self, *args: str) -> Mapping[str, bytes]:
        return {key: val for key in args if (val := self.memory.get(key)) is not None}

    def set_many(self, **kwargs: bytes) -> None:
        for key, value in kwargs.items():
            check_bytes(value, key)
        self.memory.update(kwargs)

    def items(self) -> Iterable[tuple[str, bytes]]:
        return list(self.memory.items())

    def keys(self) -> Iterable[str]:
        return list(self.memory.keys())

    def __contains__(self, key: str) -> bool:
        return key in self.memory

    def __len__(self) -> int:
        return len(self.memory)

    def remove(self, key: str) -> None:
        self.memory.pop(key, None)

    def remove_many(self, *keys: str) -> None:
        for key in keys:
            self.memory.pop(key, None)

    def cas(self, key: str, value: bytes, expected: bytes | None) -> bool:
        check_bytes(value, key)
        with self._lock:
            current = self.memory.get(key)
            if current == expected:
                self.memory[key] = value
                return True
            return False

    def clear(self) -> None:
        self.memory.clear()
