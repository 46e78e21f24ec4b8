"""Semantic commits and the reserved-state codec.

A semantic commit changes nothing outside the reserved region of the tree
(paths under ``reserved/``). Its message carries a title and a body; its
reserved state, when it has one, is stored as one canonical JSON file per
entry so that encoding is deterministic and lossless.
"""

import json
from dataclasses import dataclass
from typing import Any, Mapping

from .types import validate_name

RESERVED_DIR = "reserved"
RESERVED_PREFIX = RESERVED_DIR + "/"
_SUFFIX = ".json"

ReservedState = dict[str, Any]
"""Entry name -> JSON value."""


@dataclass
class SemanticCommit:
    """A commit without any diff outside the reserved region.

    ``reserved_state`` is None when the commit leaves the reserved region
    as its parent had it. Reading back a commit created with a state equal
    to the parent's (including ``{}`` on a parent without reserved
    files) therefore yields None.
    """

    title: str
    body: str
    reserved_state: ReservedState | None = None
    """The new reserved state, if this commit changed it."""


def is_reserved_path(path: str) -> bool:
    return path.startswith(RESERVED_PREFIX)


def format_commit_message(title: str, body: str) -> str:
    """Join title and body into a commit message.

    Raises ValueError if the title spans several lines.
    """
    if "\n" in title or "\r" in title:
        raise ValueError(f"Commit title must be a single line: {title!r}")
    return f"{title}\n\n{body}"


def parse_commit_message(message: str) -> tuple[str, str]:
    """Split a commit message into ``(title, body)``."""
    title, _, body = message.partition("\n\n")
    return title, body


def encode_reserved_state(state: Mapping[str, Any]) -> dict[str, bytes]:
    """Encode a reserved state as ``reserved/<name>.json`` files.

    Raises ValueError for names outside the ref-name rules and for values
    that would not decode to an equal value (NaN, tuples, non-string keys).
    """
    files: dict[str, bytes] = {}
    for name, value in state.items():
        validate_name(name, "reserved entry")
        if "/" in name:
            raise ValueError(f"Reserved entry names cannot contain '/': {name!r}")
        try:
            text = json.dumps(
                value,
                sort_keys=True,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Reserved entry {name!r} is not JSON: {e}") from e
        # Tuples and non-string keys serialize but read back changed
        if json.loads(text) != value:
            raise ValueError(
                f"Reserved entry {name!r} does not survive a JSON round trip"
            )
        files[f"{RESERVED_PREFIX}{name}{_SUFFIX}"] = text.encode("utf-8")
    return files


def decode_reserved_state(files: Mapping[str, bytes]) -> ReservedState:
    """Rebuild a reserved state from the reserved files of a tree.

    Paths outside the reserved region are ignored.
    """
    state: ReservedState = {}
    for path, content in files.items():
        if not is_reserved_path(path):
            continue
        name = path[len(RESERVED_PREFIX):]
        if name.endswith(_SUFFIX):
            name = name[: -len(_SUFFIX)]
        state[name] = json.loads(content.decode("utf-8"))
    return state


def reserved_files(tree: Mapping[str, bytes]) -> dict[str, bytes]:
    return {p: c for p, c in tree.items() if is_reserved_path(p)}


def with_reserved_state(
    tree: Mapping[str, bytes], state: Mapping[str, Any]
) -> dict[str, bytes]:
    """Copy of ``tree`` whose reserved region holds exactly ``state``."""
    result = {p: c for p, c in tree.items() if not is_reserved_path(p)}
    result.update(encode_reserved_state(state))
    return result
