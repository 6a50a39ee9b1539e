"""
Partner ("Parceiro") queries and commands against the ERP gateway.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from app.core.config import ErpSettings, SyncSettings
from app.schemas.partner import (
    PARTNER_ENTITY,
    PARTNER_FIELDS,
    PARTNER_SAVE_FIELDS,
    PartnerPage,
    PartnerSaveRequest,
)
from app.utils.envelope import (
    build_load_records_payload,
    build_save_payload,
    decode_entities,
)

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from app.clients.cache_store import CacheStore
    from app.services.request_executor import RequestExecutor

logger = logging.getLogger(__name__)

# Optional text columns the gateway expects as "" rather than null on save.
_BLANKABLE_SAVE_FIELDS = {
    "RAZAOSOCIAL",
    "IDENTINSCESTAD",
    "CEP",
    "CODEND",
    "NUMEND",
    "COMPLEMENTO",
    "CODBAI",
    "LATITUDE",
    "LONGITUDE",
}


def _entities_of(response: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(response, dict):
        return None
    body = response.get("responseBody") or {}
    return body.get("entities")


class ErpPartnerClient:
    """Load, search and save partners through the request executor."""

    def __init__(
        self,
        *,
        executor: "RequestExecutor",
        cache: "CacheStore",
        erp_settings: ErpSettings,
        sync_settings: SyncSettings,
        key_prefix: str = "erp",
    ) -> None:
        self._executor = executor
        self._cache = cache
        self._erp = erp_settings
        self._cache_ttl = sync_settings.partner_search_cache_ttl_seconds
        self._generation_key = f"{key_prefix}:partners:list:generation"
        self._key_prefix = key_prefix

    async def fetch_all_partners(self, tenant_id: int) -> List[Dict[str, Any]]:
        """Pull the tenant's complete partner collection in one request."""
        payload = build_load_records_payload(PARTNER_ENTITY, PARTNER_FIELDS)
        logger.info("Fetching all ERP partners for tenant %s", tenant_id)
        response = await self._executor.execute(
            self._erp.load_records_url, "POST", payload, tenant_id=tenant_id
        )
        partners = decode_entities(_entities_of(response))
        logger.info("Fetched %s ERP partners for tenant %s", len(partners), tenant_id)
        return partners

    async def search_partners(
        self,
        *,
        page: int = 1,
        page_size: int = 50,
        name: str = "",
        code: str = "",
        seller_id: Optional[int] = None,
        seller_ids: Optional[Sequence[int]] = None,
        tenant_id: Optional[int] = None,
    ) -> PartnerPage:
        """Search customers, optionally scoped to one seller or a seller team."""
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")
        criteria = self._build_criteria(name=name, code=code, seller_id=seller_id, seller_ids=seller_ids)

        generation = await self._cache.get(self._generation_key) or 0
        cache_key = (
            f"{self._key_prefix}:partners:list:{generation}:{tenant_id}:"
            f"{page}:{page_size}:{criteria}"
        )
        cached = await self._cache.get(cache_key)
        if cached is not None:
            logger.debug("Partner search served from cache")
            return PartnerPage.model_validate(cached)

        payload = build_load_records_payload(PARTNER_ENTITY, PARTNER_FIELDS, criteria=criteria)
        response = await self._executor.execute(
            self._erp.load_records_url, "POST", payload, tenant_id=tenant_id
        )
        partners = decode_entities(_entities_of(response))
        for index, partner in enumerate(partners):
            partner["_id"] = str(partner["CODPARC"]) if partner.get("CODPARC") else str(index)

        total = len(partners)
        start = (page - 1) * page_size
        result = PartnerPage(
            partners=partners[start : start + page_size],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        )
        await self._cache.set(cache_key, result.model_dump(mode="json"), self._cache_ttl)
        return result

    async def save_partner(
        self, partner: PartnerSaveRequest, *, tenant_id: Optional[int] = None
    ) -> Any:
        """Create the partner, or update it when ``CODPARC`` is present."""
        values: Dict[str, Any] = partner.model_dump()
        for field in _BLANKABLE_SAVE_FIELDS:
            if values.get(field) is None:
                values[field] = ""
        pk = {"CODPARC": partner.CODPARC} if partner.CODPARC else None
        payload = build_save_payload(PARTNER_ENTITY, PARTNER_SAVE_FIELDS, values, pk=pk)

        action = "update" if pk else "create"
        logger.info("Sending partner %s to ERP (%s)", action, partner.CODPARC or partner.NOMEPARC)
        response = await self._executor.execute(
            self._erp.save_url, "POST", payload, tenant_id=tenant_id
        )
        await self.invalidate_search_cache()
        return response

    async def invalidate_search_cache(self) -> None:
        """Orphan every cached search page by moving to a new generation."""
        generation = await self._cache.get(self._generation_key) or 0
        await self._cache.set(self._generation_key, int(generation) + 1)

    @staticmethod
    def _build_criteria(
        *,
        name: str,
        code: str,
        seller_id: Optional[int],
        seller_ids: Optional[Sequence[int]],
    ) -> str:
        filters = ["CLIENTE = 'S'"]
        code = code.strip()
        if code:
            if not code.isdigit():
                raise ValueError("Partner code must be numeric")
            filters.append(f"CODPARC = {int(code)}")
        name = name.strip()
        if name:
            escaped = name.upper().replace("'", "''")
            filters.append(f"NOMEPARC LIKE '%{escaped}%'")
        if seller_ids:
            team = ",".join(str(int(seller)) for seller in seller_ids)
            filters.append(f"CODVEND IN ({team})")
            filters.append("CODVEND IS NOT NULL")
        elif seller_id:
            filters.append(f"CODVEND = {int(seller_id)}")
            filters.append("CODVEND IS NOT NULL")
        return " AND ".join(filters)


__all__ = ["ErpPartnerClient"]
