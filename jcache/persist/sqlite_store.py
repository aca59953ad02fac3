"""
SQLite-backed key-value store.

Tables used by the cache:
- records: hashed key → (possibly encrypted) record bytes
- meta: store-level settings such as the encryption salt

All values stored as BLOB with a write timestamp.
"""

import sqlite3
import threading
import time
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_TABLES = ("records", "meta")


class KVStore:
    """
    File-backed SQLite key-value store.

    Thread-safe within one process: WAL mode plus a connection-level lock.
    Not meant to be shared between processes.
    """

    def __init__(self, db_path: Path, tables: Iterable[str] = DEFAULT_TABLES):
        """
        Initialize KV store at given path.

        Args:
            db_path: Path to SQLite database file
            tables: Table names to create if missing
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.tables = tuple(tables)

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=10.0,
        )

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._init_tables()

    def _init_tables(self) -> None:
        """Create tables if they don't exist."""
        for table in self.tables:
            self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    ts INTEGER NOT NULL
                )
            """)
        self._conn.commit()

    def _check_table(self, table: str) -> None:
        if table not in self.tables:
            raise ValueError(f"Unknown table {table!r}; valid tables: {', '.join(self.tables)}")

    def set(self, table: str, key: str, value: bytes) -> None:
        """Insert or replace a key-value pair."""
        self._check_table(table)
        with self._lock:
            self._conn.execute(
                f"INSERT OR REPLACE INTO {table} (key, value, ts) VALUES (?, ?, ?)",
                (key, value, int(time.time())),
            )
            self._conn.commit()

    def get(self, table: str, key: str) -> Optional[bytes]:
        """
        Get value for a key.

        Returns:
            Binary value if found, None otherwise
        """
        self._check_table(table)
        with self._lock:
            row = self._conn.execute(
                f"SELECT value FROM {table} WHERE key = ?",
                (key,),
            ).fetchone()
        return row[0] if row else None

    def delete(self, table: str, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if a row was deleted, False if the key was absent
        """
        self._check_table(table)
        with self._lock:
            cursor = self._conn.execute(
                f"DELETE FROM {table} WHERE key = ?",
                (key,),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def contains(self, table: str, key: str) -> bool:
        self._check_table(table)
        with self._lock:
            row = self._conn.execute(
                f"SELECT 1 FROM {table} WHERE key = ?",
                (key,),
            ).fetchone()
        return row is not None

    def keys(self, table: str) -> list[str]:
        """Snapshot of all keys in a table."""
        self._check_table(table)
        with self._lock:
            rows = self._conn.execute(f"SELECT key FROM {table}").fetchall()
        return [row[0] for row in rows]

    def count(self, table: str) -> int:
        self._check_table(table)
        with self._lock:
            return self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def purge_table(self, table: str) -> int:
        """
        Delete all entries from a table.

        Returns:
            Number of rows deleted
        """
        self._check_table(table)
        with self._lock:
            count = self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            self._conn.execute(f"DELETE FROM {table}")
            self._conn.commit()
        return count

    def stats(self, table: str) -> dict:
        """
        Get statistics for a table.

        Returns:
            Dict with count, total_bytes, oldest_ts, newest_ts
        """
        self._check_table(table)
        with self._lock:
            row = self._conn.execute(f"""
                SELECT
                    COUNT(*) as count,
                    SUM(LENGTH(value)) as total_bytes,
                    MIN(ts) as oldest_ts,
                    MAX(ts) as newest_ts
                FROM {table}
            """).fetchone()

        return {
            "count": row[0] or 0,
            "total_bytes": row[1] or 0,
            "oldest_ts": row[2] or 0,
            "newest_ts": row[3] or 0,
        }

    def vacuum(self) -> None:
        """Reclaim space after large deletions."""
        with self._lock:
            self._conn.execute("VACUUM")
            self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
