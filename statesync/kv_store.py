"""
Durable key-value stores for the serialized state document.

The state manager only needs get/set of strings under a fixed key, the
same primitive a browser extension host provides. SqliteKeyValueStore
gives a file-backed equivalent; MemoryKeyValueStore keeps values in
process memory.
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class SqliteKeyValueStore:
    """
    SQLite-backed string key-value store.

    One row per key, with the time of the last write. WAL mode lets a
    reader in another process (e.g. the CLI) see the state while a host
    process keeps writing it.
    """

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file
        """
        self._db_path = store_path
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        # Wait up to 5 seconds for locks instead of failing immediately
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def _now(self) -> str:
        """Current timestamp in ISO format."""
        return datetime.now(timezone.utc).isoformat()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the stored value for key, or default if absent."""
        row = self._conn.execute(
            "SELECT value FROM kv WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row is not None else default

    def set(self, key: str, value: str) -> None:
        """Insert or replace the value for key."""
        self._conn.execute("""
            INSERT OR REPLACE INTO kv (key, value, updated_at)
            VALUES (?, ?, ?)
        """, (key, value, self._now()))
        self._conn.commit()

    def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if the key existed
        """
        cursor = self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._conn.commit()
        return cursor.rowcount > 0

    def updated_at(self, key: str) -> Optional[str]:
        """Time of the last write to key, or None."""
        row = self._conn.execute(
            "SELECT updated_at FROM kv WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row is not None else None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()


class MemoryKeyValueStore:
    """Process-local store; nothing survives the process."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def close(self) -> None:
        pass
