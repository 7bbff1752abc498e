"""Proforma schemas."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from billing_recon.models import ProformaStatus
from billing_recon.schemas.base import BaseResponse


class ProformaSyncRequest(BaseModel):
    """Proforma as exported by the accounting system."""

    fullnumber: str = Field(min_length=1, max_length=64)
    currency: str = Field(min_length=3, max_length=3)
    total: Decimal = Field(ge=0)
    issued_at: date
    buyer_name: str | None = Field(default=None, max_length=255)
    exchange_rate: Decimal | None = Field(default=None, gt=0)
    status: ProformaStatus = ProformaStatus.ACTIVE

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class ProformaResponse(BaseResponse):
    id: UUID
    fullnumber: str
    currency: str
    total: Decimal
    exchange_rate: Decimal | None
    buyer_name: str | None
    issued_at: date
    status: ProformaStatus
    payments_total: Decimal
    payments_total_base: Decimal
    payments_count: int
    payments_currency_exchange: Decimal | None
    remaining: Decimal
    created_at: datetime
    updated_at: datetime
