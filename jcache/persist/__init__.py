"""
Persistence layer for the expiring cache.

Provides:
- Stable hashing of caller keys into fixed-width identifiers
- Cache record model and its JSON wire format
- SQLite-backed KV store
- Optional at-rest encryption of record bytes
- CacheStore, the expiring record table built on top of them
"""

from .hashing import stable_hash
from .records import CacheRecord, RecordKind, validate_expiry
from .sqlite_store import KVStore
from .cipher import FernetCipher, PlainCipher, RecordCipher
from .store import CacheStore

__all__ = [
    "stable_hash",
    "CacheRecord",
    "RecordKind",
    "validate_expiry",
    "KVStore",
    "FernetCipher",
    "PlainCipher",
    "RecordCipher",
    "CacheStore",
]
