"""
Pydantic models for ERP contracts (tenants) and their credentials.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TenantCredentials(BaseModel):
    """Identity material sent as headers to the ERP login endpoint."""

    model_config = ConfigDict(frozen=True)

    token: str = Field("", description="Integration token issued by the ERP.")
    app_key: str = Field("", description="Application key registered with the ERP.")
    username: str = Field("")
    password: str = Field("")

    def as_login_headers(self) -> dict[str, str]:
        return {
            "token": self.token,
            "appkey": self.app_key,
            "username": self.username,
            "password": self.password,
        }


class Tenant(BaseModel):
    """A contract with the remote ERP."""

    id: int
    label: str = Field(..., description="Company name shown in logs and results.")
    cnpj: str
    active: bool = True
    credentials: TenantCredentials


class TenantCreateRequest(BaseModel):
    """Incoming payload for registering a contract."""

    company: str = Field("", description="Company name.")
    cnpj: str = Field("", description="Brazilian company registry number.")
    erp_token: str = Field("")
    erp_app_key: str = Field("")
    erp_username: str = Field("")
    erp_password: str = Field("")
    active: bool = True


class TenantUpdateRequest(BaseModel):
    """Partial update of a contract; omitted fields are left unchanged."""

    company: Optional[str] = None
    cnpj: Optional[str] = None
    erp_token: Optional[str] = None
    erp_app_key: Optional[str] = None
    erp_username: Optional[str] = None
    erp_password: Optional[str] = None
    active: Optional[bool] = None


__all__ = [
    "Tenant",
    "TenantCreateRequest",
    "TenantCredentials",
    "TenantUpdateRequest",
]
