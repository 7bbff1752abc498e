"""Payment reconciliation schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from billing_recon.models import (
    BackupType,
    ManualStatus,
    MatchOrigin,
    MatchStatus,
    PaymentDirection,
)
from billing_recon.schemas.base import BaseResponse


class PaymentSnapshot(BaseModel):
    """Full copy of a payment row, stored in pre-import backups."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    operation_date: date
    description: str
    account: str | None = None
    category: str | None = None
    amount: Decimal
    currency: str | None = None
    direction: PaymentDirection
    amount_raw: str | None = None
    raw_line: str
    payer_name: str | None = None
    payer_normalized_name: str | None = None
    invoice_number_hint: str | None = None
    content_hash: str
    source: str
    import_id: UUID | None = None
    income_category: str | None = None
    is_refund: bool = False
    match_status: MatchStatus
    match_confidence: int = 0
    match_reason: str | None = None
    match_metadata: dict[str, Any] | None = None
    proforma_id: UUID | None = None
    proforma_fullnumber: str | None = None
    manual_status: ManualStatus | None = None
    manual_proforma_id: UUID | None = None
    manual_proforma_fullnumber: str | None = None
    manual_comment: str | None = None
    manual_user: str | None = None
    manual_updated_at: datetime | None = None
    status: MatchStatus
    deleted_at: datetime | None = None


class PaymentResponse(BaseResponse):
    """Payment as shown to operators, with the effective (manual-first) match."""

    id: UUID
    operation_date: date
    description: str
    account: str | None
    category: str | None
    amount: Decimal
    currency: str | None
    direction: PaymentDirection
    payer_name: str | None
    invoice_number_hint: str | None
    income_category: str | None
    is_refund: bool
    status: MatchStatus
    origin: MatchOrigin
    proforma_id: UUID | None
    proforma_fullnumber: str | None
    confidence: int
    reason: str | None
    match_status: MatchStatus
    manual_status: ManualStatus | None
    manual_comment: str | None
    manual_user: str | None
    manual_updated_at: datetime | None
    match_metadata: dict[str, Any] | None
    created_at: datetime


class CandidateResponse(BaseModel):
    proforma_id: UUID | None
    fullnumber: str
    score: int
    reason: str
    amount_diff: Decimal | None
    remaining: Decimal | None
    currency: str | None


class PaymentDetailsResponse(BaseModel):
    payment: PaymentResponse
    candidates: list[CandidateResponse]


class PaymentImportResponse(BaseResponse):
    id: UUID
    filename: str | None
    uploaded_at: datetime
    user_name: str | None
    total_records: int
    processed: int
    matched: int
    needs_review: int
    unmatched: int
    skipped: int


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]
    total: int
    imports: list[PaymentImportResponse]


class IngestResponse(BaseModel):
    status: str = "ok"
    processed: int
    matched: int
    needs_review: int
    unmatched: int
    skipped: int
    ignored: int = 0
    import_id: UUID | None = None
    backup_id: UUID | None = None


class ManualActionRequest(BaseModel):
    user: str | None = Field(default=None, max_length=128)
    comment: str | None = Field(default=None, max_length=2000)


class ApproveMatchRequest(ManualActionRequest):
    proforma_id: UUID | None = None
    fullnumber: str | None = Field(default=None, max_length=64)


class BulkApproveRequest(BaseModel):
    user: str | None = Field(default=None, max_length=128)
    min_confidence: int | None = Field(default=None, ge=0, le=100)


class BulkApproveResponse(BaseModel):
    approved: int
    skipped: int
    payment_ids: list[UUID]


class ResetMatchesResponse(BaseModel):
    reset: int


class BackupResponse(BaseResponse):
    id: UUID
    import_id: UUID | None
    backup_type: BackupType
    payments_count: int
    expires_at: datetime
    restored_at: datetime | None
    created_at: datetime


class RestoreResponse(BaseModel):
    backup_id: UUID
    restored: int
    recreated: int


class CleanupResponse(BaseModel):
    removed: int
