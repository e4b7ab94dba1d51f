"""Sync engine: decides when a cached tree is good enough and refreshes it when not."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from repotree.cache.base import CacheStore
from repotree.cache.models import CacheRecord
from repotree.errors import (
    EmptyRepositoryError,
    HTTPStatusError,
    MalformedResponseError,
    NetworkError,
    NormalizationError,
    NotFoundError,
    RateLimitedError,
    SyncCorruptError,
    SyncError,
    SyncNotFoundError,
    SyncRateLimitedError,
    SyncRejectedError,
    SyncTransientError,
    TransportError,
)
from repotree.sync.models import AccountSyncReport, ServedStale, SyncResult, SyncStatus
from repotree.tree import build_tree, empty_tree, parse_tree_listing
from repotree.tree.models import TreeNode
from repotree.vcs.base import VCSProvider
from repotree.vcs.models import RepositoryRef

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=10)
DEFAULT_MAX_CACHE_AGE = timedelta(days=30)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _servable(error: TransportError) -> bool:
    """Failures that a stale snapshot may paper over."""
    if isinstance(error, (RateLimitedError, NetworkError)):
        return True
    return isinstance(error, HTTPStatusError) and error.transient


def _stale_reason(error: TransportError) -> str:
    if isinstance(error, RateLimitedError):
        return "rate limited"
    if isinstance(error, HTTPStatusError):
        return f"host returned HTTP {error.status}"
    return f"network error: {error}"


def _to_sync_error(subject: RepositoryRef | str, error: TransportError) -> SyncError:
    if isinstance(error, RateLimitedError):
        return SyncRateLimitedError(subject, error.retry_at, error)
    if isinstance(error, NotFoundError):
        return SyncNotFoundError(subject, "not found on host", error)
    if isinstance(error, HTTPStatusError):
        if error.transient:
            return SyncTransientError(subject, str(error), error)
        return SyncRejectedError(subject, error.status, error)
    if isinstance(error, MalformedResponseError):
        return SyncCorruptError(subject, f"malformed response: {error}", error)
    return SyncTransientError(subject, f"network error: {error}", error)


@dataclass(frozen=True)
class _Pending:
    task: asyncio.Task[SyncResult]
    forced: bool


class SyncEngine:
    """Resolves repository trees through the cache, refreshing when needed.

    Per cache key the engine behaves like a small state machine: a fresh
    record is returned straight from the store; an expired one is revalidated
    with its validator (304 keeps the snapshot, 200 rebuilds it); failures
    fall back to the last good snapshot when the failure is transient.

    At most one refresh runs per key. Concurrent callers await the same task
    through ``asyncio.shield`` so a caller that gives up does not cancel the
    refresh the others are waiting on. Distinct keys never wait on each other.
    """

    def __init__(
        self,
        provider: VCSProvider,
        store: CacheStore,
        ttl: timedelta = DEFAULT_TTL,
        max_cache_age: timedelta = DEFAULT_MAX_CACHE_AGE,
        max_concurrency: int = 4,
        include_forks: bool = True,
        include_archived: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.provider = provider
        self.store = store
        self.ttl = ttl
        self.max_cache_age = max_cache_age
        self.max_concurrency = max_concurrency
        self.include_forks = include_forks
        self.include_archived = include_archived
        self._clock = clock
        self._inflight: dict[str, _Pending] = {}

    async def __aenter__(self) -> SyncEngine:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.provider.aclose()

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    async def resolve(
        self, ref: RepositoryRef, force_refresh: bool = False
    ) -> SyncResult:
        """Return the tree for *ref*, from cache when fresh.

        Raises a :class:`~repotree.errors.SyncError` subclass when the tree
        cannot be fetched and nothing cached may be served instead.
        """
        if not force_refresh:
            pending = self._inflight.get(ref.key)
            if pending is None:
                record = await asyncio.to_thread(self.store.get, ref.key)
                if record is not None and record.is_fresh(self._clock()):
                    logger.debug("Cache hit for %s", ref.key)
                    return self._result(ref, record, SyncStatus.CACHED)
        task = self._join_or_start(ref, force_refresh)
        return await asyncio.shield(task)

    def _join_or_start(self, ref: RepositoryRef, forced: bool) -> asyncio.Task[SyncResult]:
        key = ref.key
        pending = self._inflight.get(key)
        # A forced caller must not settle for a conditional refresh.
        if pending is not None and (pending.forced or not forced):
            logger.debug("Joining in-flight refresh for %s", key)
            return pending.task

        task = asyncio.create_task(self._refresh(ref, forced), name=f"repotree-refresh:{key}")
        self._inflight[key] = _Pending(task=task, forced=forced)
        task.add_done_callback(functools.partial(self._release, key))
        return task

    def _release(self, key: str, task: asyncio.Task[SyncResult]) -> None:
        pending = self._inflight.get(key)
        if pending is not None and pending.task is task:
            del self._inflight[key]
        if not task.cancelled():
            # Every waiter may have gone away; retrieve so asyncio does not complain.
            task.exception()

    async def _refresh(self, ref: RepositoryRef, forced: bool) -> SyncResult:
        key = ref.key
        record = await asyncio.to_thread(self.store.get, key)
        if record is not None and not forced and record.is_fresh(self._clock()):
            # Another refresh finished between the caller's lookup and ours.
            return self._result(ref, record, SyncStatus.CACHED)

        validator = None if forced or record is None else record.validator
        try:
            fetch = await self.provider.fetch_tree(ref, validator=validator)
        except EmptyRepositoryError:
            logger.info("%s is an empty repository", key)
            return await self._replace(ref, record, empty_tree(), root_id="", validator=None)
        except NotFoundError as e:
            if record is not None:
                await asyncio.to_thread(self.store.delete, key)
                logger.info("Dropped cached tree for %s: gone from host", key)
            raise _to_sync_error(ref, e) from e
        except TransportError as e:
            if _servable(e) and record is not None:
                return self._serve_stale(ref, record, e)
            raise _to_sync_error(ref, e) from e

        if fetch.not_modified:
            if record is None:
                raise SyncCorruptError(ref, "host answered 304 but nothing is cached")
            refreshed = replace(record, fetched_at=self._clock())
            await self._put(refreshed)
            logger.info("Revalidated %s (not modified)", key)
            return self._result(ref, refreshed, SyncStatus.REVALIDATED)

        try:
            listing = parse_tree_listing(fetch.body)
            snapshot = build_tree(listing.entries)
        except NormalizationError as e:
            raise SyncCorruptError(ref, f"invalid tree listing: {e}", e) from e

        return await self._replace(
            ref,
            record,
            snapshot,
            root_id=listing.root_id,
            validator=fetch.validator,
            truncated=listing.truncated,
        )

    async def _replace(
        self,
        ref: RepositoryRef,
        previous: CacheRecord | None,
        snapshot: TreeNode,
        root_id: str,
        validator: str | None,
        truncated: bool = False,
    ) -> SyncResult:
        unchanged = (
            previous is not None
            and previous.root_id == root_id
            and previous.truncated == truncated
        )
        if unchanged:
            # Same root tree id: keep the existing snapshot object.
            snapshot = previous.snapshot
        record = CacheRecord(
            ref=ref,
            snapshot=snapshot,
            root_id=root_id,
            fetched_at=self._clock(),
            ttl=self.ttl,
            validator=validator,
            truncated=truncated,
        )
        await self._put(record)
        logger.info(
            "Fetched %s (%s, %d nodes)",
            ref.key,
            "unchanged" if unchanged else "changed",
            snapshot.count(),
        )
        return self._result(ref, record, SyncStatus.FETCHED)

    async def _put(self, record: CacheRecord) -> None:
        try:
            await asyncio.to_thread(self.store.put, record)
        except OSError:
            # The snapshot is still valid for this caller; only persistence failed.
            logger.error("Could not write cache record %s", record.key, exc_info=True)

    def _serve_stale(
        self, ref: RepositoryRef, record: CacheRecord, error: TransportError
    ) -> SyncResult:
        warning = ServedStale(
            subject=ref.key,
            reason=_stale_reason(error),
            retry_at=getattr(error, "retry_at", None),
        )
        logger.warning("%s", warning)
        return self._result(ref, record, SyncStatus.STALE, warnings=(warning,))

    @staticmethod
    def _result(
        ref: RepositoryRef,
        record: CacheRecord,
        status: SyncStatus,
        warnings: tuple[ServedStale, ...] = (),
    ) -> SyncResult:
        return SyncResult(
            ref=ref,
            tree=record.snapshot,
            status=status,
            fetched_at=record.fetched_at,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def sync_account(
        self, owner: str, force_refresh: bool = False
    ) -> AccountSyncReport:
        """Resolve the default-branch tree of every repository *owner* has.

        Per-repository failures are collected in the report. If the listing
        itself fails transiently, the refs already cached for *owner* are
        resolved instead.
        """
        report = AccountSyncReport(owner=owner)
        try:
            repos = await self.provider.list_repos(owner)
        except TransportError as e:
            refs = await self.list_cached_repositories(owner) if _servable(e) else []
            if not refs:
                raise _to_sync_error(owner, e) from e
            warning = ServedStale(
                subject=owner,
                reason=f"repository listing failed, {_stale_reason(e)}",
                retry_at=getattr(e, "retry_at", None),
            )
            logger.warning("%s", warning)
            report.warnings.append(warning)
        else:
            refs = [
                repo.to_ref()
                for repo in repos
                if (self.include_forks or not repo.fork)
                and (self.include_archived or not repo.archived)
            ]
            logger.info("Syncing %d of %d repositories for %s", len(refs), len(repos), owner)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _one(ref: RepositoryRef) -> None:
            async with semaphore:
                try:
                    result = await self.resolve(ref, force_refresh=force_refresh)
                except SyncError as e:
                    logger.warning("Failed to sync %s: %s", ref.key, e)
                    report.errors[ref.key] = e
                    return
            report.results[ref.key] = result
            report.warnings.extend(result.warnings)

        await asyncio.gather(*(_one(ref) for ref in refs))
        return report

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    async def list_cached_repositories(self, owner: str) -> list[RepositoryRef]:
        records = await asyncio.to_thread(self.store.list_records, owner)
        return [record.ref for record in records]

    async def invalidate(self, ref: RepositoryRef) -> bool:
        """Drop the cached tree for *ref*; the next resolve fetches it again."""
        removed = await asyncio.to_thread(self.store.delete, ref.key)
        if removed:
            logger.info("Invalidated %s", ref.key)
        return removed

    async def invalidate_repository(self, owner: str, name: str) -> int:
        return await asyncio.to_thread(self.store.delete_repository, owner, name)

    async def sweep(self, max_age: timedelta | None = None) -> int:
        """Out-of-band eviction of records nobody has used for *max_age*."""
        return await asyncio.to_thread(
            self.store.sweep, max_age or self.max_cache_age, self._clock()
        )
