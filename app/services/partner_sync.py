"""
Full-snapshot reconciliation of ERP partners into the local mirror.

A run marks every current row of the tenant as stale, then upserts the pulled
collection back to current in fixed-size batches, committing per batch.
Whatever is still stale afterwards was deleted remotely. Batches committed
before a failure stay committed, so a failed run can leave a partially
reconciled tenant until the next successful run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from app.core.config import SyncSettings
from app.schemas.sync import SyncPhase, SyncRunResult, SyncStats

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from app.clients.erp_partners import ErpPartnerClient
    from app.clients.partner_store import PartnerStoreSession, SQLitePartnerStore
    from app.clients.tenant_repository import TenantRepository
    from app.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


class PartnerSyncService:
    """Reconcile one tenant, or every active tenant in turn."""

    def __init__(
        self,
        *,
        token_manager: "TokenManager",
        partner_client: "ErpPartnerClient",
        partner_store: "SQLitePartnerStore",
        tenants: "TenantRepository",
        settings: SyncSettings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._tokens = token_manager
        self._partners = partner_client
        self._store = partner_store
        self._tenants = tenants
        self._settings = settings
        self._clock = clock
        self._sleep = sleep

    async def sync_tenant(self, tenant_id: int, tenant_label: str) -> SyncRunResult:
        """Run one reconciliation. Failures are reported in the result."""
        started_at = datetime.now(timezone.utc)
        started = self._clock()
        phase = SyncPhase.STARTED
        counts: Dict[str, int] = {"total": 0, "inserted": 0, "updated": 0, "stale": 0}
        session: Optional["PartnerStoreSession"] = None
        logger.info("Starting partner sync for %s (tenant %s)", tenant_label, tenant_id)

        try:
            await self._tokens.get_token(tenant_id)
            phase = self._advance(tenant_id, SyncPhase.TOKEN_OBTAINED)

            partners = await self._partners.fetch_all_partners(tenant_id)
            counts["total"] = len(partners)
            phase = self._advance(tenant_id, SyncPhase.PULLED)

            session = await self._store.connect()
            synced_at = datetime.now(timezone.utc)
            counts["stale"] = await session.mark_all_stale(tenant_id, synced_at)
            logger.info("Marked %s partners of tenant %s as not current", counts["stale"], tenant_id)
            phase = self._advance(tenant_id, SyncPhase.MARKED_STALE)

            inserted, updated = await self._upsert_in_batches(session, tenant_id, partners, synced_at)
            counts["inserted"], counts["updated"] = inserted, updated
            phase = self._advance(tenant_id, SyncPhase.UPSERTED)

            # Covers the stale marking when the pull came back empty.
            await session.commit()
            phase = self._advance(tenant_id, SyncPhase.COMMITTED)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception(
                "Partner sync failed for %s (tenant %s) during phase %s",
                tenant_label,
                tenant_id,
                phase.value,
            )
            self._advance(tenant_id, SyncPhase.FAILED)
            if session is not None:
                try:
                    await session.rollback()
                except Exception:  # pylint: disable=broad-except
                    logger.exception("Rollback failed for tenant %s", tenant_id)
            return self._finalize(
                tenant_id, tenant_label, started_at, started, success=False, error=str(exc) or repr(exc)
            )
        finally:
            if session is not None:
                try:
                    await session.close()
                except Exception:  # pylint: disable=broad-except
                    logger.exception("Closing store connection failed for tenant %s", tenant_id)

        result = self._finalize(tenant_id, tenant_label, started_at, started, success=True, counts=counts)
        logger.info(
            "Partner sync for %s done: %s records, %s inserted, %s updated, %s marked stale in %sms",
            tenant_label,
            result.total_records,
            result.inserted,
            result.updated,
            result.marked_stale,
            result.duration_ms,
        )
        return result

    async def sync_all_active_tenants(self) -> List[SyncRunResult]:
        """Sync every active tenant sequentially, pausing between tenants."""
        tenants = await self._tenants.list_active()
        if not tenants:
            logger.warning("No active contracts to sync")
            return []

        logger.info("Syncing partners for %s active contracts", len(tenants))
        results: List[SyncRunResult] = []
        for index, tenant in enumerate(tenants):
            if index:
                await self._sleep(self._settings.tenant_delay_seconds)
            results.append(await self.sync_tenant(tenant.id, tenant.label))

        failures = sum(1 for result in results if not result.success)
        logger.info(
            "Partner sync finished: %s succeeded, %s failed", len(results) - failures, failures
        )
        return results

    async def get_sync_stats(self, tenant_id: Optional[int] = None) -> List[SyncStats]:
        return await self._store.sync_stats(tenant_id)

    async def _upsert_in_batches(
        self,
        session: "PartnerStoreSession",
        tenant_id: int,
        partners: List[Dict[str, Any]],
        synced_at: datetime,
    ) -> tuple[int, int]:
        batch_size = self._settings.batch_size
        total_batches = -(-len(partners) // batch_size)
        inserted = updated = 0
        for batch_number, start in enumerate(range(0, len(partners), batch_size), start=1):
            for record in partners[start : start + batch_size]:
                if await session.upsert(tenant_id, record, synced_at):
                    inserted += 1
                else:
                    updated += 1
            await session.commit()
            logger.info(
                "Committed partner batch %s/%s for tenant %s", batch_number, total_batches, tenant_id
            )
        return inserted, updated

    @staticmethod
    def _advance(tenant_id: int, phase: SyncPhase) -> SyncPhase:
        logger.debug("Tenant %s sync reached phase %s", tenant_id, phase.value)
        return phase

    def _finalize(
        self,
        tenant_id: int,
        tenant_label: str,
        started_at: datetime,
        started: float,
        *,
        success: bool,
        counts: Optional[Dict[str, int]] = None,
        error: Optional[str] = None,
    ) -> SyncRunResult:
        counts = counts or {}
        return SyncRunResult(
            success=success,
            tenant_id=tenant_id,
            tenant_label=tenant_label,
            total_records=counts.get("total", 0),
            inserted=counts.get("inserted", 0),
            updated=counts.get("updated", 0),
            marked_stale=counts.get("stale", 0),
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            duration_ms=int((self._clock() - started) * 1000),
            error=error,
        )


__all__ = ["PartnerSyncService"]
