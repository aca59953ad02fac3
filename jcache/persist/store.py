"""
Expiring key-value cache store.

Records live in a SQLite table keyed by stable_hash(original key). Each record
carries its own expiry window, measured from its last touching access:

- set_data / set_file overwrite unconditionally
- get_data / get_file refresh updated_at (and expiry, when given) on a live hit
- expired records are deleted lazily on access, or by garbage_collector()
- a file record whose backing file is gone is treated as a miss and removed

Every write and delete is announced to watch() subscribers of that key.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from jcache.config.settings import CacheConfig
from jcache.errors import (
    CacheClosedError,
    CacheError,
    CacheFileError,
    CacheNotInitializedError,
    EncryptionSeedError,
    MalformedRecordError,
)
from jcache.streams import Broadcast, Subscription

from .cipher import FernetCipher, PlainCipher, RecordCipher, new_salt
from .hashing import stable_hash
from .records import CacheRecord, RecordKind, validate_expiry
from .sqlite_store import KVStore

logger = logging.getLogger(__name__)

RECORDS_TABLE = "records"
META_TABLE = "meta"
SALT_KEY = "cipher_salt"
SEED_CHECK_KEY = "cipher_check"
SEED_CHECK_TOKEN = b"jcache-seed-check"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheStore:
    """
    Persistent, hash-indexed, expiring record table.

    Create with a config, then call init() before any other operation:

        store = CacheStore(CacheConfig(cache_dir=Path("data/cache"))).init()
        store.set_data("user:42", {"name": "Ada"}, expiry=timedelta(hours=1))
        store.get_data("user:42")

    Safe for concurrent callers inside one process; not for several processes
    sharing the same database file.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            config: Store configuration (defaults to CacheConfig())
            clock: Source of the current time, timezone-aware
        """
        self.config = config or CacheConfig()
        self._clock = clock or _utcnow
        self._kv: Optional[KVStore] = None
        self._cipher: RecordCipher = PlainCipher()
        self._watchers: dict[str, Broadcast[Optional[CacheRecord]]] = {}
        self._watch_lock = threading.Lock()
        self._init_lock = threading.Lock()
        self._initialized = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> "CacheStore":
        """
        Open the underlying table and sweep expired records.

        Idempotent: later calls on an initialized store return immediately.

        Returns:
            This store, ready for use

        Raises:
            EncryptionSeedError: If the seed differs from the one the table was created with
        """
        with self._init_lock:
            if self._closed:
                raise CacheClosedError("Cache store has been disposed")
            if self._initialized:
                return self

            self._kv = KVStore(self.config.db_path, tables=(RECORDS_TABLE, META_TABLE))
            try:
                if self.config.encryption_seed:
                    self._cipher = FernetCipher.from_seed(self.config.encryption_seed, self._load_salt())
                self._check_seed()
            except EncryptionSeedError:
                self._kv.close()
                self._kv = None
                self._cipher = PlainCipher()
                raise
            self._initialized = True

        logger.info(
            "Opened cache %s at %s (encrypted=%s)",
            self.config.cache_name,
            self.config.db_path,
            bool(self.config.encryption_seed),
        )
        self.garbage_collector()
        return self

    def dispose(self) -> None:
        """Close the table and end every watch subscription."""
        with self._init_lock:
            if self._closed:
                return
            self._closed = True
            self._initialized = False
            kv, self._kv = self._kv, None

        with self._watch_lock:
            watchers, self._watchers = self._watchers, {}
        for broadcast in watchers.values():
            broadcast.close()

        if kv is not None:
            kv.close()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _require(self) -> KVStore:
        if self._closed:
            raise CacheClosedError("Cache store has been disposed")
        if not self._initialized or self._kv is None:
            raise CacheNotInitializedError("Cache store used before init()")
        return self._kv

    def _load_salt(self) -> bytes:
        salt = self._kv.get(META_TABLE, SALT_KEY)
        if salt is None:
            salt = new_salt()
            self._kv.set(META_TABLE, SALT_KEY, salt)
        return salt

    def _check_seed(self) -> None:
        """Compare the configured seed with the one the table was first opened with."""
        token = self._kv.get(META_TABLE, SEED_CHECK_KEY)
        if token is None:
            self._kv.set(META_TABLE, SEED_CHECK_KEY, self._cipher.encrypt(SEED_CHECK_TOKEN))
            return
        try:
            matches = self._cipher.decrypt(token) == SEED_CHECK_TOKEN
        except MalformedRecordError:
            matches = False
        if not matches:
            raise EncryptionSeedError(
                f"Encryption seed does not match the records in {self.config.db_path}"
            )

    # ------------------------------------------------------------------
    # Record plumbing
    # ------------------------------------------------------------------

    def _resolve_expiry(self, expiry: Optional[timedelta]) -> timedelta:
        if expiry is None:
            return self.config.default_expiry
        return validate_expiry(expiry)

    def _decode(self, hash_key: str, blob: bytes) -> CacheRecord:
        try:
            return CacheRecord.from_bytes(self._cipher.decrypt(blob))
        except MalformedRecordError as e:
            raise MalformedRecordError(str(e), hash_key=hash_key) from e
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedRecordError(f"Cannot decode record {hash_key}: {e}", hash_key=hash_key) from e

    def _read(self, kv: KVStore, hash_key: str) -> Optional[CacheRecord]:
        """Load a record; a corrupt entry is deleted before the error surfaces."""
        blob = kv.get(RECORDS_TABLE, hash_key)
        if blob is None:
            return None
        try:
            return self._decode(hash_key, blob)
        except MalformedRecordError:
            logger.warning("Deleting malformed record %s", hash_key)
            self._delete(kv, hash_key)
            raise

    def _put(self, kv: KVStore, hash_key: str, record: CacheRecord) -> None:
        kv.set(RECORDS_TABLE, hash_key, self._cipher.encrypt(record.to_bytes()))
        self._notify(hash_key, record)

    def _delete(self, kv: KVStore, hash_key: str) -> bool:
        deleted = kv.delete(RECORDS_TABLE, hash_key)
        if deleted:
            self._notify(hash_key, None)
        return deleted

    def _write_back(self, kv: KVStore, hash_key: str, record: CacheRecord) -> None:
        """Persist refreshed metadata; failure never fails the read."""
        try:
            self._put(kv, hash_key, record)
        except (sqlite3.Error, CacheError, OSError) as e:
            logger.warning("Could not refresh metadata for %s: %s", record.original_key, e)

    def _notify(self, hash_key: str, record: Optional[CacheRecord]) -> None:
        with self._watch_lock:
            broadcast = self._watchers.get(hash_key)
            if broadcast is not None and broadcast.subscriber_count == 0:
                del self._watchers[hash_key]
                broadcast = None
        if broadcast is not None:
            broadcast.publish(record.model_copy(deep=True) if record is not None else None)

    @staticmethod
    def _file_exists(path: str) -> bool:
        try:
            Path(path).stat()
        except (FileNotFoundError, NotADirectoryError):
            return False
        except OSError as e:
            raise CacheFileError(f"Cannot check cached file {path}: {e}", path=path) from e
        return True

    @staticmethod
    def _discard_file(path: Optional[str]) -> bool:
        """Best-effort delete of a backing file."""
        if not path:
            return False
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Error deleting cached file %s: %s", path, e)
            return False
        return True

    # ------------------------------------------------------------------
    # Data records
    # ------------------------------------------------------------------

    def set_data(self, key: str, value: Any, expiry: Optional[timedelta] = None) -> None:
        """
        Store a JSON-serializable value under key, replacing any previous record.

        Args:
            key: Logical key (any length)
            value: JSON-serializable value
            expiry: Time-to-live; defaults to config.default_expiry

        Raises:
            InvalidExpiryError: If expiry is negative
            TypeError: If value is not JSON-serializable
        """
        kv = self._require()
        record = CacheRecord.for_data(key, value, self._resolve_expiry(expiry), self._clock())
        self._put(kv, stable_hash(key), record)

    def get_data(self, key: str, expiry: Optional[timedelta] = None) -> Any:
        """
        Read a live value and slide its expiry window.

        Args:
            key: Logical key
            expiry: Replacement time-to-live, applied only when given

        Returns:
            The stored value, or None when absent or expired

        Raises:
            MalformedRecordError: If the stored bytes cannot be decoded (entry deleted)
        """
        kv = self._require()
        if expiry is not None:
            validate_expiry(expiry)

        hash_key = stable_hash(key)
        record = self._read(kv, hash_key)
        if record is None:
            logger.debug("Cache miss for %r", key)
            return None

        now = self._clock()
        if record.is_expired(now):
            logger.debug("Record for %r expired at %s", key, record.expires_at)
            self._delete(kv, hash_key)
            return None

        if record.kind is not RecordKind.DATA:
            logger.debug("Record for %r holds a file, not data", key)
            return None

        record.touch(now, expiry)
        self._write_back(kv, hash_key, record)
        return record.value

    # ------------------------------------------------------------------
    # File records
    # ------------------------------------------------------------------

    def set_file(self, url: str, path: str, expiry: Optional[timedelta] = None) -> None:
        """
        Register a local file as the cached copy of url.

        Args:
            url: Resource URL (the logical key)
            path: Local file path
            expiry: Time-to-live; defaults to config.default_expiry
        """
        kv = self._require()
        record = CacheRecord.for_file(url, str(path), self._resolve_expiry(expiry), self._clock())
        self._put(kv, stable_hash(url), record)

    def get_file(self, url: str, expiry: Optional[timedelta] = None) -> Optional[str]:
        """
        Resolve url to its cached local path.

        Expired records are removed together with their file. A live record whose
        file has disappeared is removed and reported as a miss.

        Returns:
            Local path, or None on a miss

        Raises:
            MalformedRecordError: If the stored bytes cannot be decoded (entry deleted)
            CacheFileError: If the file's existence cannot be determined
        """
        kv = self._require()
        if expiry is not None:
            validate_expiry(expiry)

        hash_key = stable_hash(url)
        record = self._read(kv, hash_key)
        if record is None:
            logger.debug("Cache miss for %s", url)
            return None

        now = self._clock()
        if record.is_expired(now):
            logger.debug("File record for %s expired at %s", url, record.expires_at)
            self._delete(kv, hash_key)
            self._discard_file(record.resource_path)
            return None

        path = record.resource_path
        if not path or not self._file_exists(path):
            logger.warning("Cached file for %s is missing (%s); dropping record", url, path)
            self._delete(kv, hash_key)
            return None

        record.touch(now, expiry)
        self._write_back(kv, hash_key, record)
        return path

    # ------------------------------------------------------------------
    # Table operations
    # ------------------------------------------------------------------

    def remove(self, key: str) -> None:
        """Delete the record for key. Absent keys are ignored."""
        kv = self._require()
        self._delete(kv, stable_hash(key))

    def clear(self) -> int:
        """
        Delete every record.

        Returns:
            Number of records deleted
        """
        kv = self._require()
        with self._watch_lock:
            watched = list(self._watchers)
        count = kv.purge_table(RECORDS_TABLE)
        kv.vacuum()
        for hash_key in watched:
            self._notify(hash_key, None)
        logger.info("Cleared %d records from cache %s", count, self.config.cache_name)
        return count

    def contains(self, key: str) -> bool:
        """Whether a record is stored for key (liveness is not checked)."""
        return self._require().contains(RECORDS_TABLE, stable_hash(key))

    def __contains__(self, key: str) -> bool:
        return self.contains(key)

    @property
    def length(self) -> int:
        return self._require().count(RECORDS_TABLE)

    def __len__(self) -> int:
        return self.length

    @property
    def is_empty(self) -> bool:
        return self.length == 0

    @property
    def is_not_empty(self) -> bool:
        return self.length > 0

    def get_keys(self) -> list[str]:
        """
        Original keys of every decodable record.

        O(n) over the table; intended for diagnostics. Corrupt entries are
        skipped and logged.
        """
        kv = self._require()
        keys = []
        for hash_key in kv.keys(RECORDS_TABLE):
            blob = kv.get(RECORDS_TABLE, hash_key)
            if blob is None:
                continue
            try:
                keys.append(self._decode(hash_key, blob).original_key)
            except MalformedRecordError as e:
                logger.warning("Skipping undecodable record %s: %s", hash_key, e)
        return keys

    def watch(self, key: str) -> Subscription[Optional[CacheRecord]]:
        """
        Subscribe to changes of one key.

        The subscription yields the new record on every write (including the
        refresh done by a successful read) and None on deletion. Each
        subscriber gets its own ordered sequence; close it when done.
        """
        self._require()
        hash_key = stable_hash(key)
        with self._watch_lock:
            broadcast = self._watchers.get(hash_key)
            if broadcast is None:
                broadcast = Broadcast()
                self._watchers[hash_key] = broadcast
            return broadcast.subscribe()

    def garbage_collector(self) -> int:
        """
        Delete every time-expired record, and the backing file of expired file records.

        Iterates a snapshot of the keys so concurrent writes are tolerated.
        Undecodable records are logged and left in place; a file that cannot
        be deleted is logged and the sweep continues.

        Returns:
            Number of records removed
        """
        kv = self._require()
        now = self._clock()
        hash_keys = kv.keys(RECORDS_TABLE)
        removed = 0

        for hash_key in hash_keys:
            blob = kv.get(RECORDS_TABLE, hash_key)
            if blob is None:
                continue

            try:
                record = self._decode(hash_key, blob)
            except MalformedRecordError as e:
                logger.warning("Skipping undecodable record %s: %s", hash_key, e)
                continue

            if not record.is_expired(now):
                continue

            if self._delete(kv, hash_key):
                removed += 1
                if record.kind is RecordKind.FILE:
                    self._discard_file(record.resource_path)

        logger.info("Garbage collection removed %d of %d records", removed, len(hash_keys))
        return removed

    def print_record(self, key: str) -> Optional[CacheRecord]:
        """
        Log a human-readable dump of the record for key.

        Missing or undecodable records are logged and otherwise ignored.

        Returns:
            The record that was printed, or None
        """
        kv = self._require()
        hash_key = stable_hash(key)
        blob = kv.get(RECORDS_TABLE, hash_key)
        if blob is None:
            logger.info("No record for key %r", key)
            return None

        try:
            record = self._decode(hash_key, blob)
        except MalformedRecordError as e:
            logger.warning("Cannot print record for key %r: %s", key, e)
            return None

        logger.info(
            "%s\n  Key: %s\n  Expiry: %s\n  Created At: %s\n  Updated At: %s\n  Value: %s",
            record.kind.value.upper(),
            record.original_key,
            record.expiry,
            record.created_at.isoformat(),
            record.updated_at.isoformat(),
            json.dumps(record.data, indent=2, ensure_ascii=False),
        )
        return record

    def stats(self) -> dict:
        """
        Table statistics.

        Returns:
            Dict with count, total_bytes, oldest_ts, newest_ts, db_path
        """
        stats = self._require().stats(RECORDS_TABLE)
        stats["db_path"] = str(self.config.db_path)
        return stats

    def __enter__(self) -> "CacheStore":
        return self.init()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
