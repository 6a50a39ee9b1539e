"""
Pydantic models for ERP business partners ("Parceiro" entity).
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

PARTNER_ENTITY = "Parceiro"

# Order matters: it is the fieldset requested from the ERP and the column
# order of the local mirror.
PARTNER_FIELDS: tuple[str, ...] = (
    "CODPARC",
    "NOMEPARC",
    "CGC_CPF",
    "CODCID",
    "ATIVO",
    "TIPPESSOA",
    "RAZAOSOCIAL",
    "IDENTINSCESTAD",
    "CEP",
    "CODEND",
    "NUMEND",
    "COMPLEMENTO",
    "CODBAI",
    "LATITUDE",
    "LONGITUDE",
    "CLIENTE",
    "CODVEND",
)

# Fields written by DatasetSP.save; CODPARC is position 0 and travels in pk.
PARTNER_SAVE_FIELDS: tuple[str, ...] = (
    "CODPARC",
    "NOMEPARC",
    "ATIVO",
    "TIPPESSOA",
    "CGC_CPF",
    "CODCID",
    "CODVEND",
    "RAZAOSOCIAL",
    "IDENTINSCESTAD",
    "CEP",
    "CODEND",
    "NUMEND",
    "COMPLEMENTO",
    "CODBAI",
    "LATITUDE",
    "LONGITUDE",
)


class PartnerSaveRequest(BaseModel):
    """Partner payload accepted for create (no CODPARC) or update."""

    CODPARC: Optional[str] = None
    NOMEPARC: str = Field(..., min_length=1)
    CGC_CPF: str
    CODCID: str
    ATIVO: str = Field("S", pattern="^[SN]$")
    TIPPESSOA: str = Field(..., pattern="^[FJ]$")
    CODVEND: Optional[int] = None
    RAZAOSOCIAL: Optional[str] = None
    IDENTINSCESTAD: Optional[str] = None
    CEP: Optional[str] = None
    CODEND: Optional[str] = None
    NUMEND: Optional[str] = None
    COMPLEMENTO: Optional[str] = None
    CODBAI: Optional[str] = None
    LATITUDE: Optional[str] = None
    LONGITUDE: Optional[str] = None


class PartnerPage(BaseModel):
    """One page of a partner search."""

    partners: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 50
    total_pages: int = 0


__all__ = [
    "PARTNER_ENTITY",
    "PARTNER_FIELDS",
    "PARTNER_SAVE_FIELDS",
    "PartnerPage",
    "PartnerSaveRequest",
]
