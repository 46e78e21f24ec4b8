"""Disk-backed KV store using diskcache."""

import sqlite3
from typing import Iterable, Mapping, cast

from ..errors import BackendError
from .base import KVStore, check_bytes

ONE_GB = 1024 * 1024 * 1024


class Disk(KVStore):
    """KV store backed by diskcache (SQLite + mmap).

    Eviction is disabled: objects must never vanish behind the
    repository's back.
    """

    def __init__(self, directory: str, size_limit: int = ONE_GB) -> None:
        from diskcache import Cache as DiskCache

        self.directory = str(directory)
        try:
            self.store = DiskCache(
                self.directory,
                size_limit=size_limit,
                eviction_policy="none",
            )
        except (OSError, sqlite3.Error) as e:
            raise BackendError(f"Cannot open disk store at {self.directory}: {e}") from e

    def get(self, key: str) -> bytes | None:
        return cast(bytes | None, self.store.get(key))

    def set(self, key: str, value: bytes) -> None:
        check_bytes(value, key)
        self.store[key] = value

    def get_many(self, *args: str) -> Mapping[str, bytes]:
        return {k: v for k in args if (v := self.get(k)) is not None}

    def set_many(self, **kwargs: bytes) -> None:
        for key, value in kwargs.items():
            check_bytes(value, key)
        with self.store.transact():
            for key, value in kwargs.items():
                self.store[key] = value

    def items(self) -> Iterable[tuple[str, bytes]]:
        result = []
        for key in list(self.store.iterkeys()):
            value = self.store.get(key)
            if value is not None:
                result.append((str(key), cast(bytes, value)))
        return result

    def keys(self) -> Iterable[str]:
        return [str(key) for key in self.store.iterkeys()]

    def __contains__(self, key: str) -> bool:
        return key in self.store

    def __len__(self) -> int:
        return len(self.store)

    def remove(self, key: str) -> None:
        self.store.delete(key)

    def remove_many(self, *keys: str) -> None:
        with self.store.transact():
            for key in keys:
                self.store.delete(key, retry=False)

    def cas(self, key: str, value: bytes, expected: bytes | None) -> bool:
        check_bytes(value, key)
        with self.store.transact():
            current = cast(bytes | None, self.store.get(key))
            if current == expected:
                self.store[key] = value
                return True
            return False

    def clear(self) -> None:
        self.store.clear()

    def replace_all(self, items: Mapping[str, bytes]) -> None:
        """Swap the whole content in one transaction.

        A failure part way leaves the previous content in place.
        """
        for key, value in items.items():
            check_bytes(value, key)
        with self.store.transact():
            for key in list(self.store.iterkeys()):
                if key not in items:
                    self.store.delete(key, retry=False)
            for key, value in items.items():
                self.store[key] = value

    def close(self) -> None:
        self.store.close()
