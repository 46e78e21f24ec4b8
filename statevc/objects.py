"""Commit objects and refs laid out over a KV store.

Every object lives under a ``__name__<suffix>`` key:

- ``__parents__<hex>``: pickled tuple of parent hex digests
- ``__tree__<hex>``: pickled ``{path: blob hex}``
- ``__message__<hex>``: UTF-8 commit message
- ``__blob__<hex>``: file content, keyed by its SHA-256
- ``__branch_head__<name>``, ``__tag__<name>``: pickled commit hex
- ``__remote__<name>``: remote URL
- ``__remote_branch__<remote>:<branch>``: pickled commit hex
- ``__head__``: pickled ``("branch", name)`` or ``("detached", hex)``
- ``__worktree__``: pickled ``{path: bytes}``

Commits are written in one batch before any ref points at them, so a
reader never sees a ref to a half-written commit.
"""

import hashlib
import pickle
from collections import deque
from typing import Iterable, Iterator, Mapping

from .errors import BackendError, NotFound
from .kv.base import KVStore
from .types import Hash256

PARENTS = "__parents__%s"
TREE = "__tree__%s"
MESSAGE = "__message__%s"
BLOB = "__blob__%s"
BRANCH_HEAD = "__branch_head__%s"
TAG = "__tag__%s"
REMOTE_URL = "__remote__%s"
REMOTE_BRANCH = "__remote_branch__%s:%s"
HEAD = "__head__"
WORKTREE = "__worktree__"
REPOSITORY = "__repository__"

FORMAT_VERSION = b"1"

ATTACHED = "branch"
DETACHED = "detached"


def prefix(template: str) -> str:
    return template.split("%s", 1)[0]


def commit_hash(
    parents: tuple[Hash256, ...], tree: Mapping[str, str], message: str
) -> Hash256:
    """Content-addressable commit id over parents, tree and message."""
    h = hashlib.sha256()
    h.update(pickle.dumps(tuple(p.hex() for p in parents)))
    h.update(pickle.dumps(sorted(tree.items())))
    h.update(message.encode("utf-8"))
    return Hash256(h.digest())


def blob_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def loads(raw: bytes, what: str):
    try:
        return pickle.loads(raw)
    except (
        pickle.UnpicklingError,
        EOFError,
        AttributeError,
        TypeError,
        ValueError,
    ) as e:
        raise BackendError(f"Corrupt {what}") from e


class ObjectStore:
    """Typed access to the commits and refs kept in a ``KVStore``."""

    def __init__(self, store: KVStore) -> None:
        self.store = store

    # -- Commits --

    def has_commit(self, commit: Hash256) -> bool:
        return PARENTS % commit.hex() in self.store

    def require_commit(self, commit: Hash256) -> None:
        if not self.has_commit(commit):
            raise NotFound(f"Commit {commit.hex()} not found")

    def parents(self, commit: Hash256) -> tuple[Hash256, ...]:
        raw = self.store.get(PARENTS % commit.hex())
        if raw is None:
            raise NotFound(f"Commit {commit.hex()} not found")
        return tuple(Hash256.from_hex(p) for p in loads(raw, "commit parents"))

    def tree_index(self, commit: Hash256) -> dict[str, str]:
        """``{path: blob hex}`` for a commit."""
        raw = self.store.get(TREE % commit.hex())
        if raw is None:
            raise BackendError(f"Commit {commit.hex()} has no tree")
        return loads(raw, "commit tree")

    def tree(self, commit: Hash256) -> dict[str, bytes]:
        index = self.tree_index(commit)
        blobs = self.store.get_many(*(BLOB % b for b in set(index.values())))
        tree: dict[str, bytes] = {}
        for path, blob in index.items():
            content = blobs.get(BLOB % blob)
            if content is None:
                raise BackendError(f"Missing blob {blob} for {path!r}")
            tree[path] = content
        return tree

    def message(self, commit: Hash256) -> str:
        raw = self.store.get(MESSAGE % commit.hex())
        if raw is None:
            raise BackendError(f"Commit {commit.hex()} has no message")
        return raw.decode("utf-8")

    def write_commit(
        self,
        parents: tuple[Hash256, ...],
        tree: Mapping[str, bytes],
        message: str,
    ) -> Hash256:
        index = {path: blob_hash(content) for path, content in tree.items()}
        new_hash = commit_hash(parents, index, message)
        batch: dict[str, bytes] = {
            BLOB % index[path]: content for path, content in tree.items()
        }
        batch[TREE % new_hash.hex()] = pickle.dumps(index)
        batch[MESSAGE % new_hash.hex()] = message.encode("utf-8")
        batch[PARENTS % new_hash.hex()] = pickle.dumps(
            tuple(p.hex() for p in parents)
        )
        self.store.set_many(**batch)
        return new_hash

    def copy_commit(self, source: "ObjectStore", commit: Hash256) -> None:
        """Copy one commit and its blobs from ``source``."""
        key = commit.hex()
        raw = source.store.get_many(PARENTS % key, TREE % key, MESSAGE % key)
        if len(raw) != 3:
            raise BackendError(f"Commit {key} is incomplete in source")
        index = loads(raw[TREE % key], "commit tree")
        blob_keys = [BLOB % b for b in set(index.values())]
        blobs = source.store.get_many(*blob_keys)
        if len(blobs) != len(blob_keys):
            raise BackendError(f"Commit {key} has missing blobs in source")
        self.store.set_many(**blobs, **raw)

    def commits(self) -> Iterator[Hash256]:
        """Every commit stored, reachable or not."""
        start = prefix(PARENTS)
        for key in self.store.keys():
            if key.startswith(start):
                yield Hash256.from_hex(key[len(start):])

    def history(
        self, commit: Hash256, *, all_parents: bool = False
    ) -> Iterator[Hash256]:
        """Yield commits from ``commit`` back to the root.

        Follows the first parent only, or every parent breadth-first
        when ``all_parents`` is set.
        """
        if not all_parents:
            current: Hash256 | None = commit
            while current is not None:
                yield current
                parents = self.parents(current)
                current = parents[0] if parents else None
            return
        visited: set[Hash256] = set()
        queue: deque[Hash256] = deque([commit])
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            yield current
            for p in self.parents(current):
                if p not in visited:
                    queue.append(p)

    # -- Refs --

    def get_ref(self, key: str) -> Hash256 | None:
        raw = self.store.get(key)
        if raw is None:
            return None
        return Hash256.from_hex(loads(raw, "ref"))

    def set_ref(self, key: str, commit: Hash256) -> None:
        self.store.set(key, pickle.dumps(commit.hex()))

    def swap_ref(
        self, key: str, commit: Hash256, expected: Hash256 | None
    ) -> bool:
        old = None if expected is None else pickle.dumps(expected.hex())
        return self.store.cas(key, pickle.dumps(commit.hex()), expected=old)

    def refs(self, template: str) -> dict[str, Hash256]:
        """``{name: commit}`` for every ref under ``template``."""
        start = prefix(template)
        result: dict[str, Hash256] = {}
        for key in self.store.keys():
            if key.startswith(start):
                target = self.get_ref(key)
                if target is not None:
                    result[key[len(start):]] = target
        return dict(sorted(result.items()))

    def head(self) -> tuple[str, str]:
        raw = self.store.get(HEAD)
        if raw is None:
            raise BackendError("Repository has no HEAD")
        return tuple(loads(raw, "HEAD"))

    def set_head(self, mode: str, value: str) -> None:
        self.store.set(HEAD, pickle.dumps((mode, value)))

    def ref_targets(self) -> Iterable[Hash256]:
        """Commits named by any branch, tag, remote-tracking ref or HEAD."""
        targets: set[Hash256] = set()
        for template in (BRANCH_HEAD, TAG, prefix(REMOTE_BRANCH) + "%s"):
            targets.update(self.refs(template).values())
        mode, value = self.head()
        if mode == DETACHED:
            targets.add(Hash256.from_hex(value))
        return targets
