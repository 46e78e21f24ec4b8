"""Repository contract: branches, tags, commits and history queries.

``RawRepository`` is what the rest of the system programs against. It
says nothing about how commits are stored; ``statevc.kvrepo`` provides an
embedded implementation.

An instance owns its storage location exclusively for as long as it
lives. Mutating methods must not be called concurrently on one instance;
read-only queries may be.

Failures are reported with the exceptions in ``statevc.errors``:
``NotFound`` for missing names or commits, ``AlreadyExists`` for taken
names, ``InvalidRepository`` when the history shape breaks a query's
assumption, and ``BackendError`` for storage failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .semantic import SemanticCommit
from .types import Branch, CommitHash, Tag


class RawRepository(ABC):
    """A raw handle for one local repository."""

    @classmethod
    @abstractmethod
    def init(cls, directory: str) -> RawRepository:
        """Create a repository at ``directory``.

        Raises AlreadyExists if there is already one.
        """

    @classmethod
    @abstractmethod
    def open(cls, directory: str) -> RawRepository:
        """Load the repository at ``directory``.

        Raises NotFound if there is none.
        """

    # -- Branches --

    @abstractmethod
    def list_branches(self) -> list[Branch]:
        """Names of all branches, sorted."""

    @abstractmethod
    def create_branch(self, branch: Branch, commit_hash: CommitHash) -> None:
        """Create ``branch`` on ``commit_hash``."""

    @abstractmethod
    def locate_branch(self, branch: Branch) -> CommitHash:
        """The commit ``branch`` points to."""

    @abstractmethod
    def get_branches(self, commit_hash: CommitHash) -> list[Branch]:
        """Names of the branches pointing at ``commit_hash``."""

    @abstractmethod
    def move_branch(self, branch: Branch, commit_hash: CommitHash) -> None:
        """Point an existing branch at another commit."""

    @abstractmethod
    def delete_branch(self, branch: Branch) -> None:
        """Delete ``branch``."""

    # -- Tags --

    @abstractmethod
    def list_tags(self) -> list[Tag]:
        """Names of all tags, sorted."""

    @abstractmethod
    def create_tag(self, tag: Tag, commit_hash: CommitHash) -> None:
        """Create ``tag`` on ``commit_hash``. Tags are never moved."""

    @abstractmethod
    def locate_tag(self, tag: Tag) -> CommitHash:
        """The commit ``tag`` points to."""

    @abstractmethod
    def get_tag(self, commit_hash: CommitHash) -> list[Tag]:
        """Names of the tags on ``commit_hash``."""

    @abstractmethod
    def remove_tag(self, tag: Tag) -> None:
        """Remove ``tag``."""

    # -- Commits --

    @abstractmethod
    def create_commit(self, commit_message: str, diff: str | None = None) -> CommitHash:
        """Commit the working tree, after applying ``diff`` if given."""

    @abstractmethod
    def create_semantic_commit(self, commit: SemanticCommit) -> CommitHash:
        """Commit a change confined to the reserved region."""

    @abstractmethod
    def read_semantic_commit(self, commit_hash: CommitHash) -> SemanticCommit:
        """Decode a semantic commit.

        ``reserved_state`` is set only if the commit changed it.
        """

    @abstractmethod
    def run_garbage_collection(self) -> None:
        """Drop commits unreachable from any ref."""

    # -- Working tree --

    @abstractmethod
    def checkout_clean(self) -> None:
        """Discard working tree changes and untracked files."""

    @abstractmethod
    def checkout(self, branch: Branch) -> None:
        """Attach HEAD to ``branch``."""

    @abstractmethod
    def checkout_detach(self, commit_hash: CommitHash) -> None:
        """Point HEAD directly at ``commit_hash``."""

    # -- Queries --

    @abstractmethod
    def get_head(self) -> CommitHash:
        """The commit HEAD resolves to."""

    @abstractmethod
    def get_initial_commit(self) -> CommitHash:
        """The root commit of HEAD's history.

        Raises NotFound if the repository has no commits.
        """

    @abstractmethod
    def show_commit(self, commit_hash: CommitHash) -> str:
        """Text diff of ``commit_hash`` against its first parent."""

    @abstractmethod
    def list_ancestors(
        self, commit_hash: CommitHash, max: int | None = None
    ) -> list[CommitHash]:
        """Ancestors of ``commit_hash``, direct parent first.

        Raises InvalidRepository if a merge commit is met. At most ``max``
        entries are returned.
        """

    @abstractmethod
    def list_descendants(
        self, commit_hash: CommitHash, max: int | None = None
    ) -> list[CommitHash]:
        """Descendants of ``commit_hash``, direct child first.

        Raises InvalidRepository if a commit with several children is met.
        At most ``max`` entries are returned.
        """

    @abstractmethod
    def list_children(self, commit_hash: CommitHash) -> list[CommitHash]:
        """All direct children of ``commit_hash``."""

    @abstractmethod
    def find_merge_base(
        self, commit_hash1: CommitHash, commit_hash2: CommitHash
    ) -> CommitHash:
        """The nearest common ancestor of two commits."""

    # -- Remotes --

    @abstractmethod
    def add_remote(self, remote_name: str, remote_url: str) -> None:
        """Register a remote repository."""

    @abstractmethod
    def remove_remote(self, remote_name: str) -> None:
        """Unregister a remote and drop its tracking refs."""

    @abstractmethod
    def fetch_all(self) -> None:
        """Fetch branches of every remote into remote-tracking refs."""

    @abstractmethod
    def list_remotes(self) -> list[tuple[str, str]]:
        """``(remote_name, remote_url)`` pairs."""

    @abstractmethod
    def list_remote_tracking_branches(self) -> list[tuple[str, str, CommitHash]]:
        """``(remote_name, remote_url, commit_hash)`` per tracked branch."""
