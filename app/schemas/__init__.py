"""Pydantic schemas exposed by the application."""

from .auth import LockRecord, TokenRecord, TokenStatus
from .partner import PARTNER_FIELDS, PartnerPage, PartnerSaveRequest
from .sync import RequestLogEvent, SyncPhase, SyncRunResult, SyncStats
from .tenant import (
    Tenant,
    TenantCreateRequest,
    TenantCredentials,
    TenantUpdateRequest,
)

__all__ = [
    "LockRecord",
    "PARTNER_FIELDS",
    "PartnerPage",
    "PartnerSaveRequest",
    "RequestLogEvent",
    "SyncPhase",
    "SyncRunResult",
    "SyncStats",
    "Tenant",
    "TenantCreateRequest",
    "TenantCredentials",
    "TenantUpdateRequest",
    "TokenRecord",
    "TokenStatus",
]
