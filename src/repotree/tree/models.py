"""Data models for normalized repository trees."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum


class EntryKind(str, Enum):
    FILE = "file"
    DIRECTORY = "dir"


@dataclass(frozen=True)
class TreeEntry:
    """One file or directory as reported by a recursive tree listing."""

    path: tuple[str, ...]
    kind: EntryKind
    content_id: str = ""
    size: int | None = None

    @property
    def path_str(self) -> str:
        return "/".join(self.path)


@dataclass(frozen=True)
class TreeNode:
    """A node in a normalized tree snapshot.

    ``entry`` is None for the root and for directories that were implied by a
    deeper path but never listed themselves. ``children`` is always ordered
    lexicographically by name.
    """

    name: str
    kind: EntryKind
    children: Mapping[str, TreeNode] = field(default_factory=dict)
    entry: TreeEntry | None = None

    @property
    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    @property
    def synthesized(self) -> bool:
        return self.entry is None

    def find(self, path: str | Sequence[str]) -> TreeNode | None:
        """Look up a descendant by ``a/b/c`` or by segment sequence."""
        parts = [p for p in path.split("/") if p] if isinstance(path, str) else list(path)
        node: TreeNode | None = self
        for part in parts:
            if node is None:
                return None
            node = node.children.get(part)
        return node

    def walk(self) -> Iterator[tuple[tuple[str, ...], TreeNode]]:
        """Depth-first, lexicographic traversal of descendants (root excluded)."""
        stack: list[tuple[tuple[str, ...], TreeNode]] = [
            ((name,), child) for name, child in reversed(self.children.items())
        ]
        while stack:
            path, node = stack.pop()
            yield path, node
            stack.extend(
                (path + (name,), child) for name, child in reversed(node.children.items())
            )

    def file_paths(self) -> list[str]:
        return ["/".join(path) for path, node in self.walk() if not node.is_dir]

    def count(self) -> int:
        """Number of descendant nodes, the root itself excluded."""
        return sum(1 for _ in self.walk())

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        data: dict = {"name": self.name, "kind": self.kind.value}
        if self.entry is not None:
            data["entry"] = {"content_id": self.entry.content_id, "size": self.entry.size}
        if self.is_dir:
            data["children"] = [child.to_dict() for child in self.children.values()]
        return data

    @classmethod
    def from_dict(cls, data: Mapping, parent: tuple[str, ...] | None = None) -> TreeNode:
        """Rebuild a snapshot from :meth:`to_dict` output.

        Raises ValueError/KeyError/TypeError on anything that does not look
        like a snapshot; callers treat those as a corrupt record.
        """
        name = data["name"]
        if not isinstance(name, str):
            raise TypeError(f"node name must be a string, got {name!r}")
        kind = EntryKind(data["kind"])
        is_root = parent is None
        if is_root and kind is not EntryKind.DIRECTORY:
            raise ValueError("snapshot root must be a directory")
        if not is_root and (not name or "/" in name):
            raise ValueError(f"invalid node name {name!r}")
        path = () if is_root else parent + (name,)

        entry = None
        raw_entry = data.get("entry")
        if raw_entry is not None:
            size = raw_entry.get("size")
            if size is not None and not isinstance(size, int):
                raise TypeError(f"size must be an int, got {size!r}")
            entry = TreeEntry(
                path=path,
                kind=kind,
                content_id=str(raw_entry["content_id"]),
                size=size,
            )

        children: dict[str, TreeNode] = {}
        for raw_child in data.get("children", ()) if kind is EntryKind.DIRECTORY else ():
            child = cls.from_dict(raw_child, parent=path)
            if child.name in children:
                raise ValueError(f"duplicate child {child.name!r} under {'/'.join(path)!r}")
            children[child.name] = child
        ordered = dict(sorted(children.items()))
        return cls(name=name, kind=kind, children=ordered, entry=entry)
