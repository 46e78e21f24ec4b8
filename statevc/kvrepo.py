"""Embedded repository: the ``RawRepository`` contract over a KV store.

Commits, refs and the working tree all live in one ``KVStore`` (see
``statevc.objects`` for the layout). On disk the store is a diskcache
directory under ``<directory>/objects`` and the directory is locked for
the lifetime of the instance.

HEAD is either attached to a branch or detached at a commit. Committing
while attached advances the branch; committing while detached moves HEAD
to the new commit and leaves every branch alone.
"""

from __future__ import annotations

import logging
import os
import pickle
from collections import deque
from typing import Mapping

from .diff import apply_diff, diff_trees, parse_diff, render_diff
from .errors import (
    AlreadyExists,
    BackendError,
    InvalidRepository,
    NotFound,
    StateError,
)
from .gc import GCResult, collect_garbage, reachable_commits
from .kv.base import KVStore, check_bytes
from .kv.disk import Disk
from .kv.memory import Memory
from .lock import RepositoryLock
from .objects import (
    ATTACHED,
    BRANCH_HEAD,
    DETACHED,
    FORMAT_VERSION,
    REMOTE_BRANCH,
    REMOTE_URL,
    REPOSITORY,
    TAG,
    WORKTREE,
    ObjectStore,
    loads,
    prefix,
)
from .raw import RawRepository
from .semantic import (
    SemanticCommit,
    decode_reserved_state,
    format_commit_message,
    is_reserved_path,
    parse_commit_message,
    reserved_files,
    with_reserved_state,
)
from .types import Branch, CommitHash, Tag, validate_name

logger = logging.getLogger(__name__)

OBJECTS_DIR = "objects"
DEFAULT_BRANCH = "main"
GENESIS_MESSAGE = "genesis"


class KVRepository(RawRepository):
    """A repository kept in a single ``KVStore``.

    Use ``init``/``open`` for a locked on-disk repository or
    ``in_memory`` for a throwaway one. Instances are context managers;
    leaving the block releases the lock.
    """

    def __init__(
        self,
        store: KVStore,
        *,
        lock: RepositoryLock | None = None,
        directory: str | None = None,
    ) -> None:
        if store.get(REPOSITORY) is None:
            raise NotFound("No repository in store")
        self.store = store
        self.objects = ObjectStore(store)
        self.directory = directory
        self._lock = lock
        raw = store.get(WORKTREE)
        self._worktree: dict[str, bytes] = (
            loads(raw, "working tree") if raw is not None else {}
        )

    # -- Lifecycle --

    @classmethod
    def init(
        cls, directory: str, tree: Mapping[str, bytes] | None = None
    ) -> KVRepository:
        """Create a repository in ``directory``.

        If ``tree`` is given it becomes the working tree and is recorded
        as the genesis commit on ``main``.

        Raises:
            AlreadyExists: If ``directory`` already holds a repository.
        """
        directory = str(directory)
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise BackendError(f"Cannot create {directory}: {e}") from e
        lock = RepositoryLock(directory)
        try:
            store = Disk(os.path.join(directory, OBJECTS_DIR))
            if store.get(REPOSITORY) is not None:
                store.close()
                raise AlreadyExists(f"Repository already exists at {directory}")
        except StateError:
            lock.release()
            raise
        repo = cls._create(store, tree, lock=lock, directory=directory)
        logger.info("Initialized repository at %s", directory)
        return repo

    @classmethod
    def open(cls, directory: str) -> KVRepository:
        """Open the repository in ``directory``.

        Raises:
            NotFound: If there is no repository there.
            BackendError: If another instance holds the lock.
        """
        directory = str(directory)
        if not os.path.isdir(os.path.join(directory, OBJECTS_DIR)):
            raise NotFound(f"No repository at {directory}")
        lock = RepositoryLock(directory)
        try:
            store = Disk(os.path.join(directory, OBJECTS_DIR))
            if store.get(REPOSITORY) is None:
                store.close()
                raise NotFound(f"No repository at {directory}")
        except StateError:
            lock.release()
            raise
        logger.debug("Opened repository at %s", directory)
        return cls(store, lock=lock, directory=directory)

    @classmethod
    def in_memory(cls, tree: Mapping[str, bytes] | None = None) -> KVRepository:
        """A memory-backed repository, optionally with a genesis commit."""
        return cls._create(Memory(), tree)

    @classmethod
    def _create(
        cls,
        store: KVStore,
        tree: Mapping[str, bytes] | None,
        *,
        lock: RepositoryLock | None = None,
        directory: str | None = None,
    ) -> KVRepository:
        store.set_many(
            **{
                REPOSITORY: FORMAT_VERSION,
                WORKTREE: pickle.dumps({}),
            }
        )
        ObjectStore(store).set_head(ATTACHED, DEFAULT_BRANCH)
        repo = cls(store, lock=lock, directory=directory)
        if tree is not None:
            repo._set_worktree(dict(tree))
            repo.create_commit(GENESIS_MESSAGE)
        return repo

    def close(self) -> None:
        """Release the lock and the backing store."""
        if isinstance(self.store, Disk):
            self.store.close()
        if self._lock is not None:
            self._lock.release()

    def __enter__(self) -> KVRepository:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- Branches --

    def list_branches(self) -> list[Branch]:
        return list(self.objects.refs(BRANCH_HEAD))

    def create_branch(self, branch: Branch, commit_hash: CommitHash) -> None:
        validate_name(branch, "branch name")
        self.objects.require_commit(commit_hash)
        if not self.objects.swap_ref(BRANCH_HEAD % branch, commit_hash, None):
            raise AlreadyExists(f"Branch '{branch}' already exists")
        logger.debug("Created branch %s at %s", branch, commit_hash.short())

    def locate_branch(self, branch: Branch) -> CommitHash:
        target = self.objects.get_ref(BRANCH_HEAD % branch)
        if target is None:
            raise NotFound(f"Branch '{branch}' not found")
        return target

    def get_branches(self, commit_hash: CommitHash) -> list[Branch]:
        self.objects.require_commit(commit_hash)
        return [
            name
            for name, target in self.objects.refs(BRANCH_HEAD).items()
            if target == commit_hash
        ]

    def move_branch(self, branch: Branch, commit_hash: CommitHash) -> None:
        self.locate_branch(branch)
        self.objects.require_commit(commit_hash)
        self.objects.set_ref(BRANCH_HEAD % branch, commit_hash)
        logger.debug("Moved branch %s to %s", branch, commit_hash.short())

    def delete_branch(self, branch: Branch) -> None:
        self.locate_branch(branch)
        if self.head_branch == branch:
            raise InvalidRepository(
                f"Cannot delete branch '{branch}': HEAD is attached to it"
            )
        self.store.remove(BRANCH_HEAD % branch)
        logger.debug("Deleted branch %s", branch)

    # -- Tags --

    def list_tags(self) -> list[Tag]:
        return list(self.objects.refs(TAG))

    def create_tag(self, tag: Tag, commit_hash: CommitHash) -> None:
        validate_name(tag, "tag name")
        self.objects.require_commit(commit_hash)
        if not self.objects.swap_ref(TAG % tag, commit_hash, None):
            raise AlreadyExists(f"Tag '{tag}' already exists")
        logger.debug("Created tag %s at %s", tag, commit_hash.short())

    def locate_tag(self, tag: Tag) -> CommitHash:
        target = self.objects.get_ref(TAG % tag)
        if target is None:
            raise NotFound(f"Tag '{tag}' not found")
        return target

    def get_tag(self, commit_hash: CommitHash) -> list[Tag]:
        self.objects.require_commit(commit_hash)
        return [
            name
            for name, target in self.objects.refs(TAG).items()
            if target == commit_hash
        ]

    def remove_tag(self, tag: Tag) -> None:
        self.locate_tag(tag)
        self.store.remove(TAG % tag)
        logger.debug("Removed tag %s", tag)

    # -- Commits --

    def create_commit(self, commit_message: str, diff: str | None = None) -> CommitHash:
        tree = dict(self._worktree)
        if diff is not None:
            tree = apply_diff(tree, parse_diff(diff))
        parent = self._resolve_head()
        parents = (parent,) if parent is not None else ()
        return self._commit(parents, tree, commit_message)

    def create_merge_commit(
        self, commit_message: str, commit_hash: CommitHash
    ) -> CommitHash:
        """Commit the working tree with HEAD and ``commit_hash`` as parents.

        The working tree is taken as the merge result; nothing is merged
        automatically.
        """
        self.objects.require_commit(commit_hash)
        parent = self.get_head()
        if parent == commit_hash:
            raise InvalidRepository("Cannot merge a commit with itself")
        return self._commit((parent, commit_hash), dict(self._worktree), commit_message)

    def create_semantic_commit(self, commit: SemanticCommit) -> CommitHash:
        """Commit a reserved-state change.

        The new tree is HEAD's tree with the reserved region replaced by
        ``commit.reserved_state`` (left as is when it is None). Uncommitted
        reserved edits in the working tree are discarded.

        Raises:
            InvalidRepository: If the working tree has uncommitted changes
                outside the reserved region.
        """
        message = format_commit_message(commit.title, commit.body)
        parent = self._resolve_head()
        head_tree = self.objects.tree(parent) if parent is not None else {}
        outside = sorted(
            p
            for p in diff_trees(head_tree, self._worktree).paths
            if not is_reserved_path(p)
        )
        if outside:
            raise InvalidRepository(
                "Uncommitted changes outside the reserved region: "
                + ", ".join(outside)
            )
        tree = head_tree
        if commit.reserved_state is not None:
            tree = with_reserved_state(head_tree, commit.reserved_state)
        parents = (parent,) if parent is not None else ()
        return self._commit(parents, tree, message)

    def read_semantic_commit(self, commit_hash: CommitHash) -> SemanticCommit:
        parents = self.objects.parents(commit_hash)
        if len(parents) > 1:
            raise InvalidRepository(
                f"Commit {commit_hash.hex()} is a merge commit, not a semantic commit"
            )
        tree = self.objects.tree(commit_hash)
        parent_tree = self.objects.tree(parents[0]) if parents else {}
        changes = diff_trees(parent_tree, tree)
        outside = sorted(p for p in changes.paths if not is_reserved_path(p))
        if outside:
            raise InvalidRepository(
                f"Commit {commit_hash.hex()} changes paths outside the "
                f"reserved region: {', '.join(outside)}"
            )
        title, body = parse_commit_message(self.objects.message(commit_hash))
        reserved_state = None
        if changes:
            try:
                reserved_state = decode_reserved_state(reserved_files(tree))
            except ValueError as e:
                raise InvalidRepository(
                    f"Commit {commit_hash.hex()} has a malformed reserved state"
                ) from e
        return SemanticCommit(title=title, body=body, reserved_state=reserved_state)

    def run_garbage_collection(self) -> GCResult:
        return collect_garbage(self.objects)

    # -- Working tree --

    def checkout_clean(self) -> None:
        head = self._resolve_head()
        self._set_worktree(self.objects.tree(head) if head is not None else {})
        logger.debug("Cleaned working tree")

    def checkout(self, branch: Branch) -> None:
        target = self.locate_branch(branch)
        self._require_clean()
        self.objects.set_head(ATTACHED, branch)
        self._set_worktree(self.objects.tree(target))
        logger.debug("Checked out branch %s", branch)

    def checkout_detach(self, commit_hash: CommitHash) -> None:
        self.objects.require_commit(commit_hash)
        self._require_clean()
        self.objects.set_head(DETACHED, commit_hash.hex())
        self._set_worktree(self.objects.tree(commit_hash))
        logger.debug("Detached HEAD at %s", commit_hash.short())

    @property
    def head_branch(self) -> Branch | None:
        """The branch HEAD is attached to, or None when detached."""
        mode, value = self.objects.head()
        return value if mode == ATTACHED else None

    def read_file(self, path: str) -> bytes:
        try:
            return self._worktree[path]
        except KeyError:
            raise NotFound(f"No file {path!r} in working tree") from None

    def write_file(self, path: str, content: bytes) -> None:
        check_bytes(content, path)
        if not path or path.startswith("/") or path.endswith("/"):
            raise ValueError(f"Invalid path {path!r}")
        worktree = dict(self._worktree)
        worktree[path] = content
        self._set_worktree(worktree)

    def remove_file(self, path: str) -> None:
        if path not in self._worktree:
            raise NotFound(f"No file {path!r} in working tree")
        worktree = dict(self._worktree)
        del worktree[path]
        self._set_worktree(worktree)

    def list_files(self) -> list[str]:
        return sorted(self._worktree)

    def is_clean(self) -> bool:
        """Whether the working tree matches HEAD."""
        head = self._resolve_head()
        head_tree = self.objects.tree(head) if head is not None else {}
        return not diff_trees(head_tree, self._worktree)

    # -- Queries --

    def get_head(self) -> CommitHash:
        head = self._resolve_head()
        if head is None:
            raise NotFound(f"Branch '{self.head_branch}' has no commits yet")
        return head

    def get_initial_commit(self) -> CommitHash:
        *_, root = self.objects.history(self.get_head())
        return root

    def show_commit(self, commit_hash: CommitHash) -> str:
        parents = self.objects.parents(commit_hash)
        parent_tree = self.objects.tree(parents[0]) if parents else {}
        return render_diff(parent_tree, self.objects.tree(commit_hash))

    def commit_message(self, commit_hash: CommitHash) -> str:
        self.objects.require_commit(commit_hash)
        return self.objects.message(commit_hash)

    def list_ancestors(
        self, commit_hash: CommitHash, max: int | None = None
    ) -> list[CommitHash]:
        _check_max(max)
        self.objects.require_commit(commit_hash)
        result: list[CommitHash] = []
        current = commit_hash
        while max is None or len(result) < max:
            parents = self.objects.parents(current)
            if len(parents) > 1:
                raise InvalidRepository(
                    f"Merge commit {current.hex()} in the history of "
                    f"{commit_hash.hex()}"
                )
            if not parents:
                break
            current = parents[0]
            result.append(current)
        return result

    def list_descendants(
        self, commit_hash: CommitHash, max: int | None = None
    ) -> list[CommitHash]:
        _check_max(max)
        self.objects.require_commit(commit_hash)
        children = self._children_index()
        result: list[CommitHash] = []
        current = commit_hash
        while max is None or len(result) < max:
            next_commits = children.get(current, [])
            if len(next_commits) > 1:
                raise InvalidRepository(
                    f"Commit {current.hex()} has {len(next_commits)} children"
                )
            if not next_commits:
                break
            current = next_commits[0]
            result.append(current)
        return result

    def list_children(self, commit_hash: CommitHash) -> list[CommitHash]:
        self.objects.require_commit(commit_hash)
        return self._children_index().get(commit_hash, [])

    def find_merge_base(
        self, commit_hash1: CommitHash, commit_hash2: CommitHash
    ) -> CommitHash:
        """Nearest common ancestor of two commits.

        Raises:
            NotFound: If the commits share no history.
            InvalidRepository: If several common ancestors are equally
                near (criss-cross merges).
        """
        self.objects.require_commit(commit_hash1)
        self.objects.require_commit(commit_hash2)
        if commit_hash1 == commit_hash2:
            return commit_hash1

        common = set(self.objects.history(commit_hash1, all_parents=True))
        common &= set(self.objects.history(commit_hash2, all_parents=True))
        if not common:
            raise NotFound(
                f"No common ancestor of {commit_hash1.hex()} and {commit_hash2.hex()}"
            )

        # Drop every common ancestor that is itself an ancestor of another
        eliminated: set[CommitHash] = set()
        for candidate in self.objects.history(commit_hash1, all_parents=True):
            if candidate not in common or candidate in eliminated:
                continue
            queue: deque[CommitHash] = deque(self.objects.parents(candidate))
            while queue:
                current = queue.popleft()
                if current in eliminated:
                    continue
                eliminated.add(current)
                queue.extend(self.objects.parents(current))

        bases = sorted(common - eliminated)
        if len(bases) > 1:
            raise InvalidRepository(
                f"Ambiguous merge base for {commit_hash1.hex()} and "
                f"{commit_hash2.hex()}: {', '.join(b.hex() for b in bases)}"
            )
        return bases[0]

    # -- Remotes --

    def add_remote(self, remote_name: str, remote_url: str) -> None:
        validate_name(remote_name, "remote name")
        if not remote_url:
            raise ValueError("Empty remote URL")
        if not self.store.cas(REMOTE_URL % remote_name, remote_url.encode(), None):
            raise AlreadyExists(f"Remote '{remote_name}' already exists")
        logger.debug("Added remote %s -> %s", remote_name, remote_url)

    def remove_remote(self, remote_name: str) -> None:
        self._remote_url(remote_name)
        tracking = [
            REMOTE_BRANCH % (remote_name, branch)
            for branch in self._tracking_refs(remote_name)
        ]
        # Tracking refs go first so no ref is left without its remote
        if tracking:
            self.store.remove_many(*tracking)
        self.store.remove(REMOTE_URL % remote_name)
        logger.debug("Removed remote %s", remote_name)

    def fetch_all(self) -> None:
        for remote_name, remote_url in self.list_remotes():
            self._fetch(remote_name, remote_url)

    def list_remotes(self) -> list[tuple[str, str]]:
        start = prefix(REMOTE_URL)
        remotes = []
        for key in self.store.keys():
            if key.startswith(start):
                url = self.store.get(key)
                if url is not None:
                    remotes.append((key[len(start):], url.decode()))
        return sorted(remotes)

    def list_remote_tracking_branches(self) -> list[tuple[str, str, CommitHash]]:
        result = []
        for remote_name, remote_url in self.list_remotes():
            for target in self._tracking_refs(remote_name).values():
                result.append((remote_name, remote_url, target))
        return result

    def list_remote_branches(self, remote_name: str) -> dict[Branch, CommitHash]:
        """``{branch: commit}`` tracked for one remote."""
        self._remote_url(remote_name)
        return self._tracking_refs(remote_name)

    # -- Internal --

    def _resolve_head(self) -> CommitHash | None:
        mode, value = self.objects.head()
        if mode == DETACHED:
            return CommitHash.from_hex(value)
        return self.objects.get_ref(BRANCH_HEAD % value)

    def _commit(
        self,
        parents: tuple[CommitHash, ...],
        tree: dict[str, bytes],
        message: str,
    ) -> CommitHash:
        """Write a commit, then advance HEAD to it."""
        new_hash = self.objects.write_commit(parents, tree, message)
        mode, value = self.objects.head()
        if mode == ATTACHED:
            expected = parents[0] if parents else None
            if not self.objects.swap_ref(BRANCH_HEAD % value, new_hash, expected):
                raise BackendError(f"Branch '{value}' moved during commit")
        else:
            self.objects.set_head(DETACHED, new_hash.hex())
        self._set_worktree(tree)
        logger.debug(
            "Committed %s on %s",
            new_hash.short(),
            value if mode == ATTACHED else "detached HEAD",
        )
        return new_hash

    def _set_worktree(self, tree: dict[str, bytes]) -> None:
        self.store.set(WORKTREE, pickle.dumps(tree))
        self._worktree = tree

    def _require_clean(self) -> None:
        if not self.is_clean():
            raise InvalidRepository("Working tree has uncommitted changes")

    def _children_index(self) -> dict[CommitHash, list[CommitHash]]:
        """Children of every commit reachable from a ref, sorted by hash."""
        children: dict[CommitHash, list[CommitHash]] = {}
        for commit in reachable_commits(self.objects):
            for parent in self.objects.parents(commit):
                children.setdefault(parent, []).append(commit)
        for siblings in children.values():
            siblings.sort()
        return children

    def _remote_url(self, remote_name: str) -> str:
        raw = self.store.get(REMOTE_URL % remote_name)
        if raw is None:
            raise NotFound(f"Remote '{remote_name}' not found")
        return raw.decode()

    def _tracking_refs(self, remote_name: str) -> dict[Branch, CommitHash]:
        return self.objects.refs(REMOTE_BRANCH % (remote_name, "%s"))

    def _fetch(self, remote_name: str, remote_url: str) -> None:
        objects_dir = os.path.join(remote_url, OBJECTS_DIR)
        if not os.path.isdir(objects_dir):
            raise BackendError(
                f"Remote '{remote_name}' at {remote_url} is not a repository"
            )
        # Read without taking the remote's lock; its owner may be running
        remote_store = Disk(objects_dir)
        try:
            if remote_store.get(REPOSITORY) is None:
                raise BackendError(
                    f"Remote '{remote_name}' at {remote_url} is not a repository"
                )
            remote = ObjectStore(remote_store)
            branches = remote.refs(BRANCH_HEAD)
            missing: list[CommitHash] = []
            seen: set[CommitHash] = set()
            queue: deque[CommitHash] = deque(set(branches.values()))
            while queue:
                current = queue.popleft()
                if current in seen or self.objects.has_commit(current):
                    continue
                seen.add(current)
                missing.append(current)
                queue.extend(remote.parents(current))
            # Parents before children: a stored commit always has its history
            for commit in _parents_first(remote, missing):
                self.objects.copy_commit(remote, commit)
            copied = len(missing)
        finally:
            remote_store.close()

        stale = set(self._tracking_refs(remote_name)) - set(branches)
        if stale:
            self.store.remove_many(
                *(REMOTE_BRANCH % (remote_name, branch) for branch in stale)
            )
        for branch, target in branches.items():
            self.objects.set_ref(REMOTE_BRANCH % (remote_name, branch), target)
        logger.info(
            "Fetched %d branches (%d new commits) from %s",
            len(branches),
            copied,
            remote_name,
        )


def _parents_first(
    objects: ObjectStore, commits: list[CommitHash]
) -> list[CommitHash]:
    """Order ``commits`` so every commit follows its parents among them."""
    pending = set(commits)
    ordered: list[CommitHash] = []
    done: set[CommitHash] = set()
    for start in commits:
        stack: list[tuple[CommitHash, bool]] = [(start, False)]
        while stack:
            current, expanded = stack.pop()
            if current in done:
                continue
            if expanded:
                done.add(current)
                ordered.append(current)
                continue
            stack.append((current, True))
            for p in objects.parents(current):
                if p in pending and p not in done:
                    stack.append((p, False))
    return ordered


def _check_max(max: int | None) -> None:
    if max is not None and max < 0:
        raise ValueError(f"max must be >= 0, got {max}")
