"""Sync engine: cache lookups, conditional refreshes, stale-serving."""

from repotree.cache.base import CacheStore
from repotree.cache.store import FileCacheStore
from repotree.config.models import RepoTreeConfig
from repotree.sync.engine import DEFAULT_MAX_CACHE_AGE, DEFAULT_TTL, SyncEngine
from repotree.sync.models import AccountSyncReport, ServedStale, SyncResult, SyncStatus
from repotree.vcs import VCSProvider, create_provider


def create_engine(
    config: RepoTreeConfig,
    provider: VCSProvider | None = None,
    store: CacheStore | None = None,
) -> SyncEngine:
    """Wire a SyncEngine from config. Provider and store can be overridden."""
    return SyncEngine(
        provider=provider or create_provider(config.github),
        store=store or FileCacheStore(config.cache.directory),
        ttl=config.cache.ttl,
        max_cache_age=config.cache.max_age,
        max_concurrency=config.sync.max_concurrency,
        include_forks=config.sync.include_forks,
        include_archived=config.sync.include_archived,
    )


__all__ = [
    "AccountSyncReport",
    "DEFAULT_MAX_CACHE_AGE",
    "DEFAULT_TTL",
    "ServedStale",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
    "create_engine",
]
