"""Tree normalization: flat host listings in, ordered hierarchies out."""

from repotree.tree.builder import TreeListing, build_tree, parse_tree_listing
from repotree.tree.models import EntryKind, TreeEntry, TreeNode


def empty_tree() -> TreeNode:
    """Snapshot of a repository with no commits."""
    return build_tree(())


__all__ = [
    "EntryKind",
    "TreeEntry",
    "TreeListing",
    "TreeNode",
    "build_tree",
    "empty_tree",
    "parse_tree_listing",
]
