"""Tree diffs and their text form.

A tree maps file paths to contents. The text form produced by
``render_diff`` is what ``show_commit`` returns and what
``create_commit(diff=...)`` accepts::

    [
      {"path": "a.txt", "status": "added", "content": "aGVsbG8="},
      {"path": "b.txt", "status": "removed", "content": null}
    ]

Contents are base64 so arbitrary bytes survive the round trip.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Mapping

from .errors import InvalidRepository

ADDED = "added"
MODIFIED = "modified"
REMOVED = "removed"
_STATUSES = (ADDED, MODIFIED, REMOVED)


@dataclass(frozen=True)
class DiffResult:
    """Path-level differences between two trees."""

    added: frozenset[str]
    removed: frozenset[str]
    modified: frozenset[str]

    @property
    def paths(self) -> frozenset[str]:
        return self.added | self.removed | self.modified

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.modified)


@dataclass(frozen=True)
class FileChange:
    path: str
    status: str
    content: bytes | None


def diff_trees(old: Mapping[str, bytes], new: Mapping[str, bytes]) -> DiffResult:
    """Compute which paths were added, removed, or modified."""
    keys_old = set(old)
    keys_new = set(new)
    return DiffResult(
        added=frozenset(keys_new - keys_old),
        removed=frozenset(keys_old - keys_new),
        modified=frozenset(k for k in keys_old & keys_new if old[k] != new[k]),
    )


def file_changes(
    old: Mapping[str, bytes], new: Mapping[str, bytes]
) -> list[FileChange]:
    """File changes turning ``old`` into ``new``, sorted by path."""
    result = diff_trees(old, new)
    changes = []
    for path in sorted(result.paths):
        if path in result.removed:
            changes.append(FileChange(path, REMOVED, None))
        else:
            status = ADDED if path in result.added else MODIFIED
            changes.append(FileChange(path, status, new[path]))
    return changes


def render_diff(old: Mapping[str, bytes], new: Mapping[str, bytes]) -> str:
    entries = [
        {
            "path": change.path,
            "status": change.status,
            "content": (
                None
                if change.content is None
                else base64.b64encode(change.content).decode("ascii")
            ),
        }
        for change in file_changes(old, new)
    ]
    return json.dumps(entries, indent=2, sort_keys=True)


def parse_diff(text: str) -> list[FileChange]:
    """Parse ``render_diff`` output. Raises ValueError on malformed text."""
    try:
        entries = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed diff: {e}") from e
    if not isinstance(entries, list):
        raise ValueError("Malformed diff: expected a list of changes")

    changes = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError(f"Malformed diff entry: {entry!r}")
        path = entry.get("path")
        status = entry.get("status")
        if not isinstance(path, str) or not path or status not in _STATUSES:
            raise ValueError(f"Malformed diff entry: {entry!r}")
        raw = entry.get("content")
        if status == REMOVED:
            changes.append(FileChange(path, status, None))
            continue
        if not isinstance(raw, str):
            raise ValueError(f"Missing content for {path!r}")
        try:
            content = base64.b64decode(raw.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise ValueError(f"Bad content encoding for {path!r}") from e
        changes.append(FileChange(path, status, content))
    return changes


def apply_diff(
    tree: Mapping[str, bytes], changes: list[FileChange]
) -> dict[str, bytes]:
    """Return a new tree with ``changes`` applied to ``tree``.

    Raises:
        InvalidRepository: If a change does not fit the tree (adding an
            existing path, modifying or removing a missing one).
        ValueError: If an added or modified path carries no content.
    """
    result = dict(tree)
    for change in changes:
        exists = change.path in result
        if change.status == ADDED and exists:
            raise InvalidRepository(f"Diff adds existing path {change.path!r}")
        if change.status != ADDED and not exists:
            raise InvalidRepository(
                f"Diff marks missing path {change.path!r} as {change.status}"
            )
        if change.status == REMOVED:
            del result[change.path]
        elif change.content is None:
            raise ValueError(f"No content for {change.status} path {change.path!r}")
        else:
            result[change.path] = change.content
    return result
