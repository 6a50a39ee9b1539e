"""
Models describing reconciliation runs and the request log.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncPhase(str, Enum):
    """Progress markers of a single reconciliation run."""

    STARTED = "started"
    TOKEN_OBTAINED = "token_obtained"
    PULLED = "pulled"
    MARKED_STALE = "marked_stale"
    UPSERTED = "upserted"
    COMMITTED = "committed"
    FAILED = "failed"


class SyncRunResult(BaseModel):
    """Outcome of one tenant reconciliation; immutable once built."""

    model_config = ConfigDict(frozen=True)

    success: bool
    tenant_id: int
    tenant_label: str
    total_records: int = 0
    inserted: int = 0
    updated: int = 0
    marked_stale: int = 0
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    error: Optional[str] = None


class SyncStats(BaseModel):
    """Aggregate view of the partner mirror for one tenant."""

    tenant_id: int
    total_records: int
    current_records: int
    stale_records: int
    last_synced_at: Optional[datetime] = None


class RequestLogEvent(BaseModel):
    """One attempt of an authenticated ERP call."""

    method: str
    url: str
    status: Optional[int] = Field(
        None, description="HTTP status, absent when the transport failed."
    )
    duration_ms: int
    outcome: str
    tenant_id: Optional[int] = None
    error: Optional[str] = None
    timestamp: datetime


__all__ = ["RequestLogEvent", "SyncPhase", "SyncRunResult", "SyncStats"]
