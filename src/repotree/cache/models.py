"""Cache record model."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from repotree.tree.models import TreeNode
from repotree.vcs.models import RepositoryRef


@dataclass(frozen=True)
class CacheRecord:
    """A tree snapshot plus the metadata needed to decide its freshness.

    Records are immutable: a refresh produces a new record (possibly sharing
    the old snapshot object) and the store swaps it in whole.
    """

    ref: RepositoryRef
    snapshot: TreeNode
    root_id: str
    fetched_at: datetime
    ttl: timedelta
    validator: str | None = None
    truncated: bool = False

    @property
    def key(self) -> str:
        return self.ref.key

    def age(self, now: datetime) -> timedelta:
        return now - self.fetched_at

    def is_fresh(self, now: datetime) -> bool:
        return self.age(now) < self.ttl
