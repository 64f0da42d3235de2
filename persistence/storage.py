"""SQLite-backed local key/value storage used underneath the expiring cache."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import List

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_items (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class QuotaExceededError(RuntimeError):
    """Raised when a write would push the store past its byte quota."""


class LocalKeyValueStore:
    """Persistent string-to-string store with an optional byte quota.

    Sizes are measured as ``len(key) + len(value)`` in UTF-8 bytes.
    """

    def __init__(self, db_path: Path, *, quota_bytes: int | None = None) -> None:
        self.db_path = db_path
        self.quota_bytes = quota_bytes
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        """Create a connection, ensuring the parent directory exists."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self) -> None:
        with self._connect() as con:
            con.executescript(_SCHEMA)

    def get_item(self, key: str) -> str | None:
        with self._connect() as con:
            row = con.execute("SELECT value FROM kv_items WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with self._connect() as con:
            if self.quota_bytes is not None:
                used = self._used_bytes(con, exclude=key)
                needed = _size(key, value)
                if used + needed > self.quota_bytes:
                    raise QuotaExceededError(
                        f"Writing {key!r} needs {needed} bytes; {self.quota_bytes - used} available"
                    )
            con.execute(
                "INSERT INTO kv_items(key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            con.commit()

    def remove_item(self, key: str) -> None:
        with self._connect() as con:
            con.execute("DELETE FROM kv_items WHERE key = ?", (key,))
            con.commit()

    def keys(self, prefix: str | None = None) -> List[str]:
        sql = "SELECT key FROM kv_items"
        params: tuple = tuple()
        if prefix:
            sql += " WHERE substr(key, 1, ?) = ?"
            params = (len(prefix), prefix)
        sql += " ORDER BY key"
        with self._connect() as con:
            return [row[0] for row in con.execute(sql, params)]

    def total_bytes(self) -> int:
        with self._connect() as con:
            return self._used_bytes(con)

    @staticmethod
    def _used_bytes(con: sqlite3.Connection, exclude: str | None = None) -> int:
        rows = con.execute("SELECT key, value FROM kv_items").fetchall()
        return sum(_size(key, value) for key, value in rows if key != exclude)


def _size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


__all__ = ["LocalKeyValueStore", "QuotaExceededError"]
