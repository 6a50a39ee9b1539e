"""Schemas describing cached bearer tokens and refresh locks."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TokenRecord(BaseModel):
    """A bearer token minted for one tenant."""

    model_config = ConfigDict(frozen=True)

    token: str = Field(..., min_length=1)
    issued_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def _expiry_after_issue(self) -> "TokenRecord":
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be later than issued_at")
        return self

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class LockRecord(BaseModel):
    """Ownership marker for a refresh attempt held in the shared cache."""

    owner: str
    acquired_at: datetime


class TokenStatus(BaseModel):
    """Read-only view of the cached token for admin screens."""

    tenant_id: int
    active: bool
    token: Optional[str] = Field(
        None, description="Only populated while the token is still valid."
    )
    issued_at: datetime
    expires_at: datetime
    remaining_seconds: int
    remaining_minutes: int

    @classmethod
    def from_record(
        cls, tenant_id: int, record: TokenRecord, now: datetime
    ) -> "TokenStatus":
        remaining = max(0, int((record.expires_at - now).total_seconds()))
        active = record.is_valid(now)
        return cls(
            tenant_id=tenant_id,
            active=active,
            token=record.token if active else None,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
            remaining_seconds=remaining,
            remaining_minutes=remaining // 60,
        )


def utc_from_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


__all__ = ["LockRecord", "TokenRecord", "TokenStatus", "utc_from_timestamp"]
