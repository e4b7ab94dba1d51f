"""CacheStore backed by one JSON file per (owner, repo, ref)."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import quote

from repotree.cache.codec import CorruptRecordError, decode_record, encode_record
from repotree.cache.models import CacheRecord

logger = logging.getLogger(__name__)

_SUFFIX = ".json"
_TMP_SUFFIX = ".tmp"
# Quoted components longer than this are hashed, keeping temp-file names
# under the usual 255-byte NAME_MAX.
_MAX_COMPONENT_BYTES = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_ns(when: datetime) -> int:
    return int(when.timestamp() * 1_000_000_000)


def _component(value: str) -> str:
    """Filesystem-safe path component; never '.' or '..', never too long."""
    encoded = quote(value, safe="")
    if len(encoded) > _MAX_COMPONENT_BYTES:
        # '%s' is never produced by quote(), so digests cannot collide with it
        return "%sha256-" + hashlib.sha256(value.encode()).hexdigest()
    if encoded.startswith("."):
        encoded = "%2E" + encoded[1:]
    return encoded


def _split_key(key: str) -> tuple[str, str, str]:
    repo_part, sep, ref = key.partition("@")
    owner, slash, name = repo_part.partition("/")
    if not (sep and slash and owner and name and ref):
        raise ValueError(f"Invalid cache key {key!r}: expected 'owner/name@ref'")
    return owner, name, ref


class FileCacheStore:
    """Durable cache of tree snapshots.

    Layout: ``{directory}/{owner}/{repo}/{ref}.json`` with every component
    URL-quoted (or replaced by its sha256 digest when the quoted form is too
    long for a file name). Keys come from the stored records, never from
    file names. Writes go to a temporary file in the same directory and
    are swapped in with ``os.replace``, so a reader sees either the previous
    or the new record. A read stamps the file's access time (mtime is left
    alone); :meth:`sweep` uses that as "last read".

    Decoded records are memoized per process by path, stamped with the
    file's mtime and size, so an unchanged record always yields the same
    snapshot object.
    """

    def __init__(
        self,
        directory: str | Path,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.directory = Path(directory).expanduser()
        self._clock = clock
        self._memo: dict[Path, tuple[tuple[int, int], CacheRecord]] = {}
        self._lock = threading.Lock()

    # -- helpers ---------------------------------------------------------------

    def _path_for(self, key: str) -> Path:
        owner, name, ref = _split_key(key)
        path = self.directory / _component(owner) / _component(name) / f"{_component(ref)}{_SUFFIX}"
        # Guard against a key escaping the cache directory
        if not path.resolve().is_relative_to(self.directory.resolve()):
            raise ValueError(f"Cache path escapes cache directory: {path}")
        return path

    def _forget(self, path: Path) -> None:
        with self._lock:
            self._memo.pop(path, None)

    def _discard(self, path: Path, reason: object) -> None:
        logger.warning("Discarding corrupt cache record %s: %s", path, reason)
        self._forget(path)
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove corrupt cache record %s", path, exc_info=True)

    def _prune_empty_dirs(self, start: Path) -> None:
        root = self.directory.resolve()
        current = start
        while current.resolve() != root and current.resolve().is_relative_to(root):
            try:
                current.rmdir()
            except OSError:
                return
            current = current.parent

    def _read(self, path: Path, touch: bool, key: str | None = None) -> CacheRecord | None:
        """Decode the record at *path*; any unreadable file is a miss.

        Without *key* the record's own key must map back to *path*.
        """
        try:
            st = path.stat()
        except FileNotFoundError:
            self._forget(path)
            return None
        except OSError as e:
            logger.warning("Cannot stat cache record %s: %s", path, e)
            return None

        stamp = (st.st_mtime_ns, st.st_size)
        with self._lock:
            memo = self._memo.get(path)
        if memo is not None and memo[0] == stamp:
            record = memo[1]
        else:
            try:
                payload = json.loads(path.read_bytes())
                record = decode_record(payload, expected_key=key)
                if key is None and self._path_for(record.key) != path:
                    raise CorruptRecordError(f"record {record.key!r} stored under another name")
            except FileNotFoundError:
                return None
            except (OSError, ValueError) as e:
                # ValueError covers JSONDecodeError, UnicodeDecodeError and CorruptRecordError
                self._discard(path, e)
                return None
            try:
                after = path.stat()
            except OSError:
                return record
            if (after.st_mtime_ns, after.st_size) != stamp:
                # Replaced while reading; the writer's memo entry stays.
                return record
            with self._lock:
                self._memo[path] = (stamp, record)

        if touch:
            try:
                os.utime(path, ns=(_to_ns(self._clock()), st.st_mtime_ns))
            except FileNotFoundError:
                pass
        return record

    # -- CacheStore protocol ---------------------------------------------------

    def get(self, key: str) -> CacheRecord | None:
        """Return the record for *key*, or None if absent or unreadable."""
        return self._read(self._path_for(key), touch=True, key=key)

    def put(self, record: CacheRecord) -> None:
        """Atomically replace the record stored under ``record.key``."""
        path = self._path_for(record.key)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps(encode_record(record), separators=(",", ":")).encode()

        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.stem}.", suffix=_TMP_SUFFIX
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            st = tmp_path.stat()
            os.utime(tmp_path, ns=(_to_ns(self._clock()), st.st_mtime_ns))
            # os.replace keeps the inode, so this stamp matches the final file
            stamp = (st.st_mtime_ns, st.st_size)
            os.replace(tmp_path, path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        with self._lock:
            self._memo[path] = (stamp, record)

    def delete(self, key: str) -> bool:
        path = self._path_for(key)
        self._forget(path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        self._prune_empty_dirs(path.parent)
        return True

    def delete_repository(self, owner: str, name: str) -> int:
        """Delete every cached ref of one repository."""
        repo_dir = self.directory / _component(owner.lower()) / _component(name.lower())
        removed = 0
        for path in sorted(repo_dir.glob(f"*{_SUFFIX}")):
            record = self._read(path, touch=False)
            if record is not None and self.delete(record.key):
                removed += 1
        return removed

    def list_records(self, owner: str) -> list[CacheRecord]:
        """All readable records for *owner*, sorted by key. Does not count as a read."""
        owner_dir = self.directory / _component(owner.lower())
        records: list[CacheRecord] = []
        for path in sorted(owner_dir.glob(f"*/*{_SUFFIX}")):
            record = self._read(path, touch=False)
            if record is not None:
                records.append(record)
        return sorted(records, key=lambda r: r.key)

    def sweep(self, max_age: timedelta, now: datetime | None = None) -> int:
        """Remove records fetched more than *max_age* ago and not read since.

        Also clears temporary files left behind by interrupted writes.
        """
        cutoff = (now or self._clock()) - max_age
        cutoff_ns = _to_ns(cutoff)
        removed = 0
        if not self.directory.is_dir():
            return 0

        for path in sorted(self.directory.rglob(f"*{_TMP_SUFFIX}")):
            try:
                if path.stat().st_mtime_ns < cutoff_ns:
                    path.unlink()
            except FileNotFoundError:
                continue

        for path in sorted(self.directory.rglob(f"*{_SUFFIX}")):
            try:
                st = path.stat()
            except FileNotFoundError:
                continue
            if st.st_atime_ns >= cutoff_ns:
                continue
            try:
                record = decode_record(json.loads(path.read_bytes()))
            except FileNotFoundError:
                continue
            except (OSError, ValueError) as e:
                self._discard(path, e)
                removed += 1
                continue
            if record.fetched_at >= cutoff:
                continue
            self._forget(path)
            path.unlink(missing_ok=True)
            self._prune_empty_dirs(path.parent)
            removed += 1
            logger.debug("Swept cache record %s", record.key)

        if removed:
            logger.info("Swept %d cache record(s) older than %s", removed, max_age)
        return removed
