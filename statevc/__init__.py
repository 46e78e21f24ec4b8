"""statevc: checkpointed state storage and a semantic commit graph."""

from .diff import DiffResult, FileChange
from .errors import (
    AlreadyExists,
    BackendError,
    InvalidRepository,
    NotFound,
    StateError,
    UnknownError,
)
from .gc import GCResult
from .kv.base import KVStore
from .kvrepo import KVRepository
from .lock import RepositoryLock
from .raw import RawRepository
from .semantic import ReservedState, SemanticCommit
from .kvstorage import DiskDB, KVStorage, MemoryDB, SnapshotDB
from .store import repository, storage
from .types import Branch, CommitHash, Hash256, Tag

__all__ = [
    "AlreadyExists",
    "BackendError",
    "Branch",
    "CommitHash",
    "DiffResult",
    "DiskDB",
    "FileChange",
    "GCResult",
    "Hash256",
    "InvalidRepository",
    "KVRepository",
    "KVStorage",
    "KVStore",
    "MemoryDB",
    "NotFound",
    "RawRepository",
    "RepositoryLock",
    "ReservedState",
    "SemanticCommit",
    "SnapshotDB",
    "StateError",
    "Tag",
    "UnknownError",
    "repository",
    "storage",
]
