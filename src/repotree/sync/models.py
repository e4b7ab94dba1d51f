"""Result and warning models returned by the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from repotree.errors import SyncError
from repotree.tree.models import TreeNode
from repotree.vcs.models import RepositoryRef


class SyncStatus(str, Enum):
    CACHED = "cached"            # fresh record, no network call
    REVALIDATED = "revalidated"  # host answered 304, TTL restarted
    FETCHED = "fetched"          # full listing downloaded and normalized
    STALE = "stale"              # refresh failed, last good snapshot served


@dataclass(frozen=True)
class ServedStale:
    """Non-fatal warning: cached data was served because a refresh failed.

    *subject* is a cache key, or an account name when the listing failed.
    """

    subject: str
    reason: str
    retry_at: datetime | None = None

    def __str__(self) -> str:
        when = f", retry after {self.retry_at.isoformat()}" if self.retry_at else ""
        return f"{self.subject}: served cached data ({self.reason}{when})"


@dataclass(frozen=True)
class SyncResult:
    ref: RepositoryRef
    tree: TreeNode
    status: SyncStatus
    fetched_at: datetime
    warnings: tuple[ServedStale, ...] = ()

    @property
    def stale(self) -> bool:
        return self.status is SyncStatus.STALE


@dataclass
class AccountSyncReport:
    """Outcome of syncing every repository of one account."""

    owner: str
    results: dict[str, SyncResult] = field(default_factory=dict)
    errors: dict[str, SyncError] = field(default_factory=dict)
    warnings: list[ServedStale] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
