"""Factory functions for checkpoint stores and repositories."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Mapping

if TYPE_CHECKING:
    from .kvrepo import KVRepository
    from .kvstorage import KVStorage


def storage(
    storage: Literal["memory", "disk"] = "memory",
    *,
    path: str | None = None,
) -> KVStorage:
    """Create a checkpoint store.

    Args:
        storage: ``"memory"`` (default) for a ``MemoryDB`` or ``"disk"``
            for a ``DiskDB``.
        path: Required when ``storage="disk"``. Directory holding both
            snapshots; reopening it restores them.
    """
    if storage == "memory":
        if path is not None:
            raise ValueError("path is only valid for storage='disk'")
        from .kvstorage import MemoryDB

        return MemoryDB.new()
    if storage == "disk":
        if path is None:
            raise ValueError("path is required when storage='disk'")
        from .kvstorage import DiskDB

        return DiskDB(path)
    raise ValueError(f"Unknown storage: {storage!r}")


def repository(
    storage: Literal["memory", "disk"] = "memory",
    *,
    path: str | None = None,
    create: bool = False,
    tree: Mapping[str, bytes] | None = None,
) -> KVRepository:
    """Create or open a repository.

    Args:
        storage: ``"memory"`` (default) or ``"disk"``.
        path: Required when ``storage="disk"``. Repository directory.
        create: Disk only. Initialize a new repository at ``path``
            instead of opening an existing one.
        tree: Files for the genesis commit (new repositories only).
    """
    from .kvrepo import KVRepository

    if storage == "memory":
        if path is not None or create:
            raise ValueError("path and create are only valid for storage='disk'")
        return KVRepository.in_memory(tree)
    if storage == "disk":
        if path is None:
            raise ValueError("path is required when storage='disk'")
        if create:
            return KVRepository.init(path, tree)
        if tree is not None:
            raise ValueError("tree is only valid when creating a repository")
        return KVRepository.open(path)
    raise ValueError(f"Unknown storage: {storage!r}")
