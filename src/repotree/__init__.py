"""repotree: local cache of GitHub repository file trees."""

__version__ = "0.1.0"

from repotree.errors import RepoTreeError, SyncError
from repotree.sync import SyncEngine, SyncResult, SyncStatus, create_engine
from repotree.tree import TreeNode
from repotree.vcs import RepositoryRef

__all__ = [
    "RepoTreeError",
    "RepositoryRef",
    "SyncEngine",
    "SyncError",
    "SyncResult",
    "SyncStatus",
    "TreeNode",
    "__version__",
    "create_engine",
]
