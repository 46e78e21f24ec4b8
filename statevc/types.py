"""Identifier types: content digests and ref names."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

HASH_SIZE = 32

_BAD_NAME = re.compile(r"[\s\x00-\x1f\x7f~^:?*\[\\]")


@dataclass(frozen=True, order=True)
class Hash256:
    """A 32-byte content digest. Compares and orders by byte value."""

    value: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.value, bytes):
            raise TypeError(f"Expected bytes, got {type(self.value).__name__}")
        if len(self.value) != HASH_SIZE:
            raise ValueError(
                f"Hash256 needs {HASH_SIZE} bytes, got {len(self.value)}"
            )

    @classmethod
    def hash(cls, data: bytes | str) -> Hash256:
        """SHA-256 digest of ``data`` (strings are UTF-8 encoded)."""
        if isinstance(data, str):
            data = data.encode()
        return cls(hashlib.sha256(data).digest())

    @classmethod
    def zero(cls) -> Hash256:
        return cls(bytes(HASH_SIZE))

    @classmethod
    def from_hex(cls, text: str) -> Hash256:
        try:
            raw = bytes.fromhex(text)
        except ValueError as e:
            raise ValueError(f"Invalid hex digest: {text!r}") from e
        return cls(raw)

    def hex(self) -> str:
        return self.value.hex()

    def short(self) -> str:
        return self.value.hex()[:8]

    def __str__(self) -> str:
        return self.hex()

    def __repr__(self) -> str:
        return f"Hash256({self.short()}...)"


CommitHash = Hash256
Branch = str
Tag = str


def validate_name(name: str, kind: str = "name") -> str:
    """Check a branch, tag, remote or reserved entry name.

    Raises ValueError for empty names, whitespace or control characters,
    a leading ``-``, ``..`` sequences, or a trailing ``/``.
    """
    if not isinstance(name, str) or not name:
        raise ValueError(f"Empty {kind}")
    if _BAD_NAME.search(name):
        raise ValueError(f"Invalid character in {kind} {name!r}")
    if name.startswith("-") or ".." in name or name.endswith("/"):
        raise ValueError(f"Invalid {kind} {name!r}")
    return name
