"""
FastAPI routes exposing sync triggers, token administration and partner access.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.errors import (
    AuthFailedError,
    AuthServiceUnavailableError,
    ErpIntegrationError,
    LockTimeoutError,
    NoActiveTenantError,
    RequestFailedError,
    SessionExpiredError,
    UpstreamUnavailableError,
)
from app.dependencies import (
    get_partner_client,
    get_partner_sync_service,
    get_request_log_buffer,
    get_tenant_repository,
    get_token_manager,
)
from app.schemas import (
    PartnerPage,
    PartnerSaveRequest,
    RequestLogEvent,
    SyncRunResult,
    SyncStats,
    TenantCreateRequest,
    TenantUpdateRequest,
    TokenStatus,
)

router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_STATUS: list[tuple[type[ErpIntegrationError], HTTPStatus]] = [
    (NoActiveTenantError, HTTPStatus.CONFLICT),
    (AuthFailedError, HTTPStatus.BAD_GATEWAY),
    (AuthServiceUnavailableError, HTTPStatus.SERVICE_UNAVAILABLE),
    (LockTimeoutError, HTTPStatus.SERVICE_UNAVAILABLE),
    (SessionExpiredError, HTTPStatus.UNAUTHORIZED),
    (UpstreamUnavailableError, HTTPStatus.SERVICE_UNAVAILABLE),
    (RequestFailedError, HTTPStatus.BAD_GATEWAY),
]


def _raise_http(exc: ErpIntegrationError) -> NoReturn:
    """Translate an integration failure into an HTTP error response."""
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status, detail=str(exc)) from exc
    raise HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc)) from exc


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.post("/sync/partners", response_model=List[SyncRunResult])
async def sync_all_partners(
    sync_service: Annotated[Any, Depends(get_partner_sync_service)],
) -> List[SyncRunResult]:
    """Reconcile partners for every active contract, one after another."""
    return await sync_service.sync_all_active_tenants()


@router.get("/sync/partners/stats", response_model=List[SyncStats])
async def partner_sync_stats(
    sync_service: Annotated[Any, Depends(get_partner_sync_service)],
    tenant_id: Optional[int] = Query(default=None),
) -> List[SyncStats]:
    return await sync_service.get_sync_stats(tenant_id)


@router.post("/sync/partners/{tenant_id}", response_model=SyncRunResult)
async def sync_tenant_partners(
    tenant_id: int,
    sync_service: Annotated[Any, Depends(get_partner_sync_service)],
    tenants: Annotated[Any, Depends(get_tenant_repository)],
) -> SyncRunResult:
    tenant = await tenants.get_by_id(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Contract not found.")
    return await sync_service.sync_tenant(tenant.id, tenant.label)


@router.get("/tokens/{tenant_id}", response_model=TokenStatus)
async def token_status(
    tenant_id: int,
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> TokenStatus:
    status = await token_manager.token_status(tenant_id)
    if status is None:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="No cached token.")
    return status


@router.post("/tokens/{tenant_id}/refresh", response_model=TokenStatus)
async def refresh_token(
    tenant_id: int,
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> TokenStatus:
    """Force a new token for the contract and report its validity window."""
    try:
        await token_manager.get_token(tenant_id, force_refresh=True)
    except ErpIntegrationError as exc:
        logger.warning("Manual token refresh failed for tenant %s: %s", tenant_id, exc)
        _raise_http(exc)
    status = await token_manager.token_status(tenant_id)
    if status is None:  # pragma: no cover - evicted between refresh and read
        raise HTTPException(status_code=HTTPStatus.CONFLICT, detail="Token evicted.")
    return status


@router.delete("/tokens/{tenant_id}", status_code=HTTPStatus.OK)
async def invalidate_token(
    tenant_id: int,
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> dict:
    await token_manager.invalidate_token(tenant_id)
    return {"status": "invalidated", "tenant_id": tenant_id}


@router.get("/partners", response_model=PartnerPage)
async def search_partners(
    partner_client: Annotated[Any, Depends(get_partner_client)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    name: str = Query(default=""),
    code: str = Query(default=""),
    seller_id: Optional[int] = Query(default=None),
    seller_ids: Optional[List[int]] = Query(default=None),
    tenant_id: Optional[int] = Query(default=None),
) -> PartnerPage:
    try:
        return await partner_client.search_partners(
            page=page,
            page_size=page_size,
            name=name,
            code=code,
            seller_id=seller_id,
            seller_ids=seller_ids,
            tenant_id=tenant_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc
    except ErpIntegrationError as exc:
        _raise_http(exc)


@router.post("/partners", status_code=HTTPStatus.OK)
async def save_partner(
    payload: PartnerSaveRequest,
    partner_client: Annotated[Any, Depends(get_partner_client)],
    tenant_id: Optional[int] = Query(default=None),
) -> Any:
    """Create or update a partner in the ERP."""
    try:
        return await partner_client.save_partner(payload, tenant_id=tenant_id)
    except ErpIntegrationError as exc:
        _raise_http(exc)


@router.post("/contracts", status_code=HTTPStatus.OK)
async def create_contract(
    payload: TenantCreateRequest,
    tenants: Annotated[Any, Depends(get_tenant_repository)],
) -> dict:
    if not payload.company or not payload.cnpj:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Company and CNPJ are required.",
        )
    tenant_id = await tenants.create(payload)
    return {"success": True, "id": tenant_id}


@router.put("/contracts/{tenant_id}", status_code=HTTPStatus.OK)
async def update_contract(
    tenant_id: int,
    payload: TenantUpdateRequest,
    tenants: Annotated[Any, Depends(get_tenant_repository)],
    token_manager: Annotated[Any, Depends(get_token_manager)],
) -> dict:
    if not await tenants.update(tenant_id, payload):
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Contract not found.")
    # New credentials must not keep using a token minted with the old ones.
    await token_manager.invalidate_token(tenant_id)
    return {"success": True, "id": tenant_id}


@router.get("/admin/request-logs", response_model=List[RequestLogEvent])
async def request_logs(
    log_buffer: Annotated[Any, Depends(get_request_log_buffer)],
    limit: int = Query(default=100, ge=1, le=1000),
) -> List[RequestLogEvent]:
    return log_buffer.recent(limit)


__all__ = ["router"]
