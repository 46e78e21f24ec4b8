"""Mark-and-sweep garbage collection for repository objects."""

import logging
from collections import deque
from dataclasses import dataclass

from .objects import BLOB, MESSAGE, PARENTS, TREE, ObjectStore, prefix
from .types import Hash256

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GCResult:
    """Result of a garbage collection run."""

    commits_removed: int
    blobs_removed: int


def reachable_commits(objects: ObjectStore) -> set[Hash256]:
    """Every commit reachable from a branch, tag, remote-tracking ref or HEAD."""
    reachable: set[Hash256] = set()
    queue: deque[Hash256] = deque(objects.ref_targets())
    while queue:
        current = queue.popleft()
        if current in reachable:
            continue
        reachable.add(current)
        for p in objects.parents(current):
            if p not in reachable:
                queue.append(p)
    return reachable


def collect_garbage(objects: ObjectStore) -> GCResult:
    """Delete unreachable commits and blobs no reachable tree uses.

    Reachable history is left untouched.
    """
    # Mark phase
    reachable = reachable_commits(objects)
    live_blobs: set[str] = set()
    for commit in reachable:
        live_blobs.update(objects.tree_index(commit).values())

    # Sweep phase
    orphans = [c for c in objects.commits() if c not in reachable]
    to_delete: list[str] = []
    for orphan in orphans:
        key = orphan.hex()
        to_delete.extend((PARENTS % key, TREE % key, MESSAGE % key))

    blob_prefix = prefix(BLOB)
    dead_blobs = [
        key
        for key in objects.store.keys()
        if key.startswith(blob_prefix) and key[len(blob_prefix):] not in live_blobs
    ]
    to_delete.extend(dead_blobs)

    if to_delete:
        objects.store.remove_many(*to_delete)

    result = GCResult(commits_removed=len(orphans), blobs_removed=len(dead_blobs))
    logger.info(
        "Garbage collection removed %d commits and %d blobs",
        result.commits_removed,
        result.blobs_removed,
    )
    return result
