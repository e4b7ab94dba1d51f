"""Cache store interface."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from repotree.cache.models import CacheRecord


@runtime_checkable
class CacheStore(Protocol):
    """Durable key -> CacheRecord mapping used by the sync engine.

    ``put`` replaces a record atomically; readers observe either the old or
    the new record, never a mix.
    """

    def get(self, key: str) -> CacheRecord | None: ...

    def put(self, record: CacheRecord) -> None: ...

    def delete(self, key: str) -> bool: ...

    def delete_repository(self, owner: str, name: str) -> int: ...

    def list_records(self, owner: str) -> list[CacheRecord]: ...

    def sweep(self, max_age: timedelta, now: datetime | None = None) -> int: ...
