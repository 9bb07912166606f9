"""
Storage module for apiary.

The request collection is held in memory and persisted to one JSON document.

Components:
    - RequestStore: CRUD over requests and their history, atomic rewrites
    - VersionedCodec: versioned, per-kind partitioned JSON encoding
    - ReadWriteLock: shared lock for queries, exclusive for mutations
"""

from apiary.store.codec import CURRENT_VERSION, VersionedCodec
from apiary.store.db import RequestStore
from apiary.store.lock import ReadWriteLock

__all__ = [
    "CURRENT_VERSION",
    "ReadWriteLock",
    "RequestStore",
    "VersionedCodec",
]
