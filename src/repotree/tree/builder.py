"""Normalize flat recursive tree listings into a hierarchical snapshot."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from repotree.errors import ConflictError, MalformedEntryError
from repotree.tree.models import EntryKind, TreeEntry, TreeNode

logger = logging.getLogger(__name__)

# Host object type -> node kind. Submodules ("commit") show up as directories
# whose contents live in another repository.
_KIND_BY_TYPE = {
    "blob": EntryKind.FILE,
    "tree": EntryKind.DIRECTORY,
    "commit": EntryKind.DIRECTORY,
}


@dataclass(frozen=True)
class TreeListing:
    """A validated recursive listing, still flat."""

    root_id: str
    entries: tuple[TreeEntry, ...]
    truncated: bool = False


@dataclass
class _Draft:
    name: str
    kind: EntryKind
    entry: TreeEntry | None = None
    children: dict[str, _Draft] = field(default_factory=dict)

    def freeze(self) -> TreeNode:
        return TreeNode(
            name=self.name,
            kind=self.kind,
            children={name: self.children[name].freeze() for name in sorted(self.children)},
            entry=self.entry,
        )


def _sort_key(entry: TreeEntry) -> tuple:
    return (entry.path, entry.kind.value, entry.content_id, entry.size or -1)


def build_tree(entries: Iterable[TreeEntry]) -> TreeNode:
    """Build the root node for *entries*.

    The result does not depend on input order: entries are inserted sorted by
    path and children are emitted lexicographically. Parent directories that
    the listing omits are synthesized. Raises MalformedEntryError for an
    empty path and ConflictError when two entries disagree about a path.
    """
    root = _Draft(name="", kind=EntryKind.DIRECTORY)
    for entry in sorted(entries, key=_sort_key):
        if not entry.path or any(not part for part in entry.path):
            raise MalformedEntryError(
                f"entry has an empty path segment: {entry.path!r}", path=entry.path_str
            )

        node = root
        for depth, part in enumerate(entry.path[:-1], start=1):
            child = node.children.get(part)
            if child is None:
                child = _Draft(name=part, kind=EntryKind.DIRECTORY)
                node.children[part] = child
            elif child.kind is not EntryKind.DIRECTORY:
                raise ConflictError(
                    "/".join(entry.path[:depth]),
                    f"file is also the parent of {entry.path_str!r}",
                )
            node = child

        leaf_name = entry.path[-1]
        existing = node.children.get(leaf_name)
        if existing is None:
            node.children[leaf_name] = _Draft(name=leaf_name, kind=entry.kind, entry=entry)
        elif existing.kind is not entry.kind:
            raise ConflictError(
                entry.path_str,
                f"listed as {entry.kind.value} but already a {existing.kind.value}",
            )
        elif existing.entry is None:
            # Explicit listing for a directory we synthesized earlier.
            existing.entry = entry
        elif existing.entry != entry:
            raise ConflictError(entry.path_str, "listed twice with different content")

    return root.freeze()


def parse_tree_listing(body: bytes | str) -> TreeListing:
    """Validate the host's recursive tree response.

    Expects ``{"sha": str, "tree": [{"path", "type", "sha", "size"?}, ...],
    "truncated": bool}``. Anything else raises MalformedEntryError so a broken
    response never reaches the cache.
    """
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise MalformedEntryError(f"tree listing is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedEntryError("tree listing is not a JSON object")

    root_id = payload.get("sha")
    items = payload.get("tree")
    if not isinstance(root_id, str) or not root_id:
        raise MalformedEntryError("tree listing has no root sha")
    if not isinstance(items, list):
        raise MalformedEntryError("tree listing has no 'tree' array")

    entries = tuple(_parse_item(item) for item in items)
    truncated = bool(payload.get("truncated", False))
    if truncated:
        logger.warning(
            "Tree %s was truncated by the host; snapshot has %d entries",
            root_id,
            len(entries),
        )
    return TreeListing(root_id=root_id, entries=entries, truncated=truncated)


def _parse_item(item: object) -> TreeEntry:
    if not isinstance(item, dict):
        raise MalformedEntryError(f"tree item is not an object: {item!r}")
    path = item.get("path")
    if not isinstance(path, str) or not path:
        raise MalformedEntryError(f"tree item has no path: {item!r}")
    kind = _KIND_BY_TYPE.get(item.get("type"))
    if kind is None:
        raise MalformedEntryError(f"unknown object type {item.get('type')!r}", path=path)
    sha = item.get("sha")
    if not isinstance(sha, str):
        raise MalformedEntryError("tree item has no sha", path=path)
    size = item.get("size")
    if size is not None and (not isinstance(size, int) or isinstance(size, bool)):
        raise MalformedEntryError(f"invalid size {size!r}", path=path)
    return TreeEntry(
        path=tuple(path.split("/")),
        kind=kind,
        content_id=sha,
        size=size if kind is EntryKind.FILE else None,
    )
