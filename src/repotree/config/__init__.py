from .loader import load_config, resolve_token
from .models import CacheConfig, GitHubConfig, RepoTreeConfig, SyncConfig

__all__ = [
    "CacheConfig",
    "GitHubConfig",
    "RepoTreeConfig",
    "SyncConfig",
    "load_config",
    "resolve_token",
]
