"""SQLite-backed shared cache usable by several processes on one host."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Optional


class SQLiteCacheStore:
    """Expiring key-value entries in a single table keyed by ``key``."""

    def __init__(
        self, db_path: str, *, clock: Callable[[], float] = time.time
    ) -> None:
        self._db_path = Path(db_path)
        self._clock = clock
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=5.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
                """
            )

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[float]:
        return None if ttl_seconds is None else self._clock() + ttl_seconds

    def _get(self, key: str) -> Optional[Any]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT value FROM cache_entries
                WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)
                """,
                (key, self._clock()),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["value"])

    def _set(self, key: str, value: Any, ttl_seconds: Optional[float]) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO cache_entries (key, value, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (key, json.dumps(value), self._expiry(ttl_seconds)),
            )

    def _delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))

    def _set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        now = self._clock()
        # A single statement: inserts, or takes over an expired entry, or
        # changes nothing when a live entry exists.
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO cache_entries (key, value, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                WHERE cache_entries.expires_at IS NOT NULL
                  AND cache_entries.expires_at <= ?
                """,
                (key, json.dumps(value), now + ttl_seconds, now),
            )
            return cursor.rowcount == 1

    def _delete_if_equal(self, key: str, value: Any) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM cache_entries
                WHERE key = ? AND value = ?
                  AND (expires_at IS NULL OR expires_at > ?)
                """,
                (key, json.dumps(value), self._clock()),
            )
            return cursor.rowcount == 1

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        await asyncio.to_thread(self._set, key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        return await asyncio.to_thread(self._set_if_absent, key, value, ttl_seconds)

    async def delete_if_equal(self, key: str, value: Any) -> bool:
        return await asyncio.to_thread(self._delete_if_equal, key, value)


__all__ = ["SQLiteCacheStore"]
