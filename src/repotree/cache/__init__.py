"""Durable cache of normalized tree snapshots."""

from repotree.cache.base import CacheStore
from repotree.cache.codec import CorruptRecordError, decode_record, encode_record
from repotree.cache.models import CacheRecord
from repotree.cache.store import FileCacheStore

__all__ = [
    "CacheRecord",
    "CacheStore",
    "CorruptRecordError",
    "FileCacheStore",
    "decode_record",
    "encode_record",
]
