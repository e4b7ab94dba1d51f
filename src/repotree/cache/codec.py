"""JSON encoding for cache records.

Every record carries a format marker and version so that files written by an
incompatible release, or damaged on disk, are recognized and discarded.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import ValidationError

from repotree.cache.models import CacheRecord
from repotree.tree.models import TreeNode
from repotree.vcs.models import RepositoryRef

RECORD_FORMAT = "repotree-cache"
RECORD_VERSION = 1


class CorruptRecordError(ValueError):
    """A stored record cannot be decoded."""


def encode_record(record: CacheRecord) -> dict:
    return {
        "format": RECORD_FORMAT,
        "version": RECORD_VERSION,
        "key": record.key,
        "ref": {"owner": record.ref.owner, "name": record.ref.name, "ref": record.ref.ref},
        "root_id": record.root_id,
        "validator": record.validator,
        "fetched_at": record.fetched_at.isoformat(),
        "ttl_seconds": record.ttl.total_seconds(),
        "truncated": record.truncated,
        "snapshot": record.snapshot.to_dict(),
    }


def decode_record(payload: object, expected_key: str | None = None) -> CacheRecord:
    """Decode :func:`encode_record` output, raising CorruptRecordError on any mismatch."""
    if not isinstance(payload, dict):
        raise CorruptRecordError("record is not a JSON object")
    if payload.get("format") != RECORD_FORMAT:
        raise CorruptRecordError(f"unknown record format {payload.get('format')!r}")
    if payload.get("version") != RECORD_VERSION:
        raise CorruptRecordError(f"unsupported record version {payload.get('version')!r}")

    try:
        ref = RepositoryRef(**payload["ref"])
        fetched_at = datetime.fromisoformat(payload["fetched_at"])
        if fetched_at.tzinfo is None:
            raise CorruptRecordError("fetched_at has no timezone")
        validator = payload.get("validator")
        if validator is not None and not isinstance(validator, str):
            raise CorruptRecordError("validator must be a string")
        record = CacheRecord(
            ref=ref,
            snapshot=TreeNode.from_dict(payload["snapshot"]),
            root_id=str(payload["root_id"]),
            fetched_at=fetched_at,
            ttl=timedelta(seconds=float(payload["ttl_seconds"])),
            validator=validator,
            truncated=bool(payload.get("truncated", False)),
        )
    except CorruptRecordError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError, ValidationError) as e:
        raise CorruptRecordError(f"{type(e).__name__}: {e}") from e

    if payload.get("key") != record.key:
        raise CorruptRecordError(f"key mismatch: {payload.get('key')!r} != {record.key!r}")
    if expected_key is not None and record.key != expected_key:
        raise CorruptRecordError(f"record for {record.key!r} stored under {expected_key!r}")
    return record
