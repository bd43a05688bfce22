from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from threading import Lock
from typing import Optional, Union

from tiny_resilience.domain.errors import BackingStoreError, QuotaExceededError

logger = logging.getLogger(__name__)


class SqliteBackingStore:
    """Key/value records in a single SQLite table."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
        with self._lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL
                )
                """
            )
        logger.debug("SQLite backing store at %s", self.db_path)

    def read(self, key: str) -> Optional[bytes]:
        try:
            with self._lock:
                row = self._conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise BackingStoreError(f"cannot read {key!r}: {exc}") from exc
        return None if row is None else bytes(row[0])

    def write(self, key: str, data: bytes) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                    (key, sqlite3.Binary(data)),
                )
        except sqlite3.OperationalError as exc:
            if "full" in str(exc).lower():
                raise QuotaExceededError(f"database full writing {key!r}: {exc}") from exc
            raise BackingStoreError(f"cannot write {key!r}: {exc}") from exc
        except sqlite3.Error as exc:
            raise BackingStoreError(f"cannot write {key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise BackingStoreError(f"cannot delete {key!r}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()
