import json
import sqlite3
import logging
from pathlib import Path
from typing import Any, List, Optional, Union

from ..errors import LocalStorageError

logger = logging.getLogger(__name__)

# Same order of magnitude as a browser origin's localStorage quota
DEFAULT_MAX_BYTES = 5 * 1024 * 1024


class KeyValueStore:
    """Local durable store for JSON values keyed by string."""

    def __init__(
        self,
        db_path: Optional[Union[Path, str]] = None,
        max_bytes: int = DEFAULT_MAX_BYTES
    ):
        """
        Initialize the key/value store.

        Args:
            db_path: Path to the SQLite database file.
                     If None, uses in-memory database.
            max_bytes: Upper bound on the total size of stored values
        """
        self.db_path = str(db_path) if db_path else ":memory:"
        self.max_bytes = max_bytes
        self.last_error: Optional[LocalStorageError] = None
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path)
        self._init_db()

    def _init_db(self):
        """Initialize the SQLite database schema."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)

    @staticmethod
    def serialize(value: Any) -> str:
        """Canonical string form of a JSON value."""
        return json.dumps(value, sort_keys=True, separators=(",", ":"), allow_nan=False)

    def get(self, key: str) -> Any:
        """
        Retrieve a value.

        Returns:
            Decoded value, or None if the key is missing or unreadable
        """
        try:
            row = self._conn.execute(
                "SELECT value FROM kv_store WHERE key = ?",
                (key,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Error reading '{key}' from local store: {e}")
            return None

        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt value for '{key}' in local store: {e}")
            return None

    def set(self, key: str, value: Any) -> bool:
        """
        Store a value.

        Returns:
            True if stored, False on serialization, capacity or database errors
        """
        try:
            payload = self.serialize(value)
        except (TypeError, ValueError) as e:
            return self._fail(f"Cannot serialize '{key}': {e}")

        try:
            with self._conn:
                row = self._conn.execute(
                    "SELECT COALESCE(SUM(LENGTH(value)), 0) FROM kv_store WHERE key != ?",
                    (key,)
                ).fetchone()
                if row[0] + len(payload) > self.max_bytes:
                    return self._fail(
                        f"Storing '{key}' ({len(payload)} bytes) would exceed "
                        f"the {self.max_bytes} byte quota"
                    )
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    """,
                    (key, payload)
                )
        except sqlite3.Error as e:
            return self._fail(f"Error writing '{key}' to local store: {e}")

        self.last_error = None
        return True

    def remove(self, key: str) -> bool:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            return True
        except sqlite3.Error as e:
            return self._fail(f"Error removing '{key}' from local store: {e}")

    def keys(self) -> List[str]:
        try:
            rows = self._conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error listing local store keys: {e}")
            return []
        return [row[0] for row in rows]

    def size(self) -> int:
        """Total bytes used by stored values."""
        try:
            row = self._conn.execute(
                "SELECT COALESCE(SUM(LENGTH(value)), 0) FROM kv_store"
            ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Error measuring local store: {e}")
            return 0
        return row[0]

    def close(self) -> None:
        self._conn.close()

    def _fail(self, message: str) -> bool:
        logger.error(message)
        self.last_error = LocalStorageError(message)
        return False
