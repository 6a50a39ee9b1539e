"""
Local SQLite mirror of ERP partners.

``SQLitePartnerStore.connect`` hands out one transactional session per
reconciliation run. Rows are never deleted: a partner missing from the latest
pull keeps its data with ``is_current = 0``.
"""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from app.schemas.partner import PARTNER_FIELDS
from app.schemas.sync import SyncStats

# Every mirrored field except the key, as lowercase column names.
_DATA_COLUMNS = [field.lower() for field in PARTNER_FIELDS if field != "CODPARC"]


def _partner_values(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a decoded ERP record onto column values; blanks become NULL."""
    raw_code = record.get("CODPARC")
    if raw_code in (None, ""):
        raise ValueError("Partner record is missing CODPARC")
    values: Dict[str, Any] = {"codparc": int(raw_code)}
    for field in PARTNER_FIELDS:
        if field == "CODPARC":
            continue
        value = record.get(field)
        values[field.lower()] = None if value in (None, "") else value
    return values


class PartnerStoreSession:
    """A single connection with an open implicit transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def _mark_all_stale(self, tenant_id: int, synced_at: str) -> int:
        cursor = self._conn.execute(
            """
            UPDATE partners
            SET is_current = 0, last_synced_at = ?
            WHERE tenant_id = ? AND is_current = 1
            """,
            (synced_at, tenant_id),
        )
        return cursor.rowcount

    def _upsert(self, tenant_id: int, record: Mapping[str, Any], synced_at: str) -> bool:
        values = _partner_values(record)
        assignments = ", ".join(f"{column} = :{column}" for column in _DATA_COLUMNS)
        params = {**values, "tenant_id": tenant_id, "synced_at": synced_at}
        cursor = self._conn.execute(
            f"""
            UPDATE partners
            SET {assignments}, is_current = 1, last_synced_at = :synced_at
            WHERE tenant_id = :tenant_id AND codparc = :codparc
            """,
            params,
        )
        if cursor.rowcount:
            return False
        columns = ", ".join(_DATA_COLUMNS)
        placeholders = ", ".join(f":{column}" for column in _DATA_COLUMNS)
        self._conn.execute(
            f"""
            INSERT INTO partners (
                tenant_id, codparc, {columns}, is_current, last_synced_at, created_at
            ) VALUES (
                :tenant_id, :codparc, {placeholders}, 1, :synced_at, :synced_at
            )
            """,
            params,
        )
        return True

    async def mark_all_stale(self, tenant_id: int, synced_at: datetime) -> int:
        """Flag every current row of the tenant as not current; returns the count."""
        return await asyncio.to_thread(self._mark_all_stale, tenant_id, synced_at.isoformat())

    async def upsert(self, tenant_id: int, record: Mapping[str, Any], synced_at: datetime) -> bool:
        """Write one partner as current. Returns True when the row was inserted."""
        return await asyncio.to_thread(self._upsert, tenant_id, record, synced_at.isoformat())

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def rollback(self) -> None:
        await asyncio.to_thread(self._conn.rollback)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


class SQLitePartnerStore:
    """Partner mirror table keyed by (tenant_id, codparc)."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        data_columns = ",\n".join(f"{column} TEXT" for column in _DATA_COLUMNS)
        with self._connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS partners (
                    tenant_id INTEGER NOT NULL,
                    codparc INTEGER NOT NULL,
                    {data_columns},
                    is_current INTEGER NOT NULL DEFAULT 1,
                    last_synced_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (tenant_id, codparc)
                )
                """
            )

    async def connect(self) -> PartnerStoreSession:
        conn = await asyncio.to_thread(self._connect)
        return PartnerStoreSession(conn)

    def _stats(self, tenant_id: Optional[int]) -> List[SyncStats]:
        where = "WHERE tenant_id = ?" if tenant_id is not None else ""
        params: tuple = (tenant_id,) if tenant_id is not None else ()
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT
                    tenant_id,
                    COUNT(*) AS total_records,
                    SUM(CASE WHEN is_current = 1 THEN 1 ELSE 0 END) AS current_records,
                    SUM(CASE WHEN is_current = 0 THEN 1 ELSE 0 END) AS stale_records,
                    MAX(last_synced_at) AS last_synced_at
                FROM partners
                {where}
                GROUP BY tenant_id
                ORDER BY tenant_id
                """,
                params,
            ).fetchall()
        return [
            SyncStats(
                tenant_id=row["tenant_id"],
                total_records=row["total_records"],
                current_records=row["current_records"] or 0,
                stale_records=row["stale_records"] or 0,
                last_synced_at=row["last_synced_at"],
            )
            for row in rows
        ]

    def _list(self, tenant_id: int, current_only: bool) -> List[Dict[str, Any]]:
        query = "SELECT * FROM partners WHERE tenant_id = ?"
        if current_only:
            query += " AND is_current = 1"
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY codparc", (tenant_id,)).fetchall()
        return [dict(row) for row in rows]

    async def sync_stats(self, tenant_id: Optional[int] = None) -> List[SyncStats]:
        return await asyncio.to_thread(self._stats, tenant_id)

    async def list_partners(
        self, tenant_id: int, *, current_only: bool = False
    ) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._list, tenant_id, current_only)


__all__ = ["PartnerStoreSession", "SQLitePartnerStore"]
