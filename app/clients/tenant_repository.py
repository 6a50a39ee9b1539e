"""
Contract (tenant) storage backed by the local SQLite database.

The token manager and the sync engine only depend on the read side of
``TenantRepository``; the create/update helpers back the contract routes.
"""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Protocol

from app.schemas.tenant import (
    Tenant,
    TenantCreateRequest,
    TenantCredentials,
    TenantUpdateRequest,
)
from app.services.credential_cipher import CredentialCipher


class TenantRepository(Protocol):
    async def get_active(self) -> Optional[Tenant]:
        ...

    async def get_by_id(self, tenant_id: int) -> Optional[Tenant]:
        ...

    async def list_active(self) -> List[Tenant]:
        ...


_SECRET_COLUMNS = {
    "erp_token": "erp_token_encrypted",
    "erp_app_key": "erp_app_key_encrypted",
    "erp_username": "erp_username_encrypted",
    "erp_password": "erp_password_encrypted",
}


class SQLiteTenantRepository:
    """Contracts table with encrypted ERP credentials."""

    def __init__(self, db_path: str, cipher: CredentialCipher) -> None:
        self._db_path = Path(db_path)
        self._cipher = cipher
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS contracts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    company TEXT NOT NULL,
                    cnpj TEXT NOT NULL,
                    erp_token_encrypted TEXT NOT NULL DEFAULT '',
                    erp_app_key_encrypted TEXT NOT NULL DEFAULT '',
                    erp_username_encrypted TEXT NOT NULL DEFAULT '',
                    erp_password_encrypted TEXT NOT NULL DEFAULT '',
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def _to_tenant(self, row: sqlite3.Row) -> Tenant:
        return Tenant(
            id=row["id"],
            label=row["company"],
            cnpj=row["cnpj"],
            active=bool(row["active"]),
            credentials=TenantCredentials(
                token=self._cipher.decrypt(row["erp_token_encrypted"]),
                app_key=self._cipher.decrypt(row["erp_app_key_encrypted"]),
                username=self._cipher.decrypt(row["erp_username_encrypted"]),
                password=self._cipher.decrypt(row["erp_password_encrypted"]),
            ),
        )

    def _fetch_one(self, query: str, params: tuple = ()) -> Optional[Tenant]:
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return self._to_tenant(row) if row else None

    def _list_active(self) -> List[Tenant]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM contracts WHERE active = 1 ORDER BY company, id"
            ).fetchall()
        return [self._to_tenant(row) for row in rows]

    def _create(self, payload: TenantCreateRequest) -> int:
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO contracts (
                    company, cnpj, erp_token_encrypted, erp_app_key_encrypted,
                    erp_username_encrypted, erp_password_encrypted, active,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    payload.company,
                    payload.cnpj,
                    self._cipher.encrypt(payload.erp_token),
                    self._cipher.encrypt(payload.erp_app_key),
                    self._cipher.encrypt(payload.erp_username),
                    self._cipher.encrypt(payload.erp_password),
                    int(payload.active),
                    now,
                    now,
                ),
            )
            return int(cursor.lastrowid)

    def _update(self, tenant_id: int, payload: TenantUpdateRequest) -> bool:
        changes = payload.model_dump(exclude_none=True)
        assignments: list[str] = []
        params: list[object] = []
        for field, value in changes.items():
            if field in _SECRET_COLUMNS:
                assignments.append(f"{_SECRET_COLUMNS[field]} = ?")
                params.append(self._cipher.encrypt(value))
            elif field == "active":
                assignments.append("active = ?")
                params.append(int(value))
            else:
                assignments.append(f"{field} = ?")
                params.append(value)
        assignments.append("updated_at = ?")
        params.append(datetime.now(timezone.utc).isoformat())
        params.append(tenant_id)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE contracts SET {', '.join(assignments)} WHERE id = ?",
                tuple(params),
            )
            return cursor.rowcount == 1

    async def get_active(self) -> Optional[Tenant]:
        """Return the active contract used when callers name no tenant."""
        return await asyncio.to_thread(
            self._fetch_one, "SELECT * FROM contracts WHERE active = 1 ORDER BY id LIMIT 1"
        )

    async def get_by_id(self, tenant_id: int) -> Optional[Tenant]:
        return await asyncio.to_thread(
            self._fetch_one, "SELECT * FROM contracts WHERE id = ?", (tenant_id,)
        )

    async def list_active(self) -> List[Tenant]:
        """Active contracts ordered by company name."""
        return await asyncio.to_thread(self._list_active)

    async def create(self, payload: TenantCreateRequest) -> int:
        return await asyncio.to_thread(self._create, payload)

    async def update(self, tenant_id: int, payload: TenantUpdateRequest) -> bool:
        return await asyncio.to_thread(self._update, tenant_id, payload)


__all__ = ["SQLiteTenantRepository", "TenantRepository"]
