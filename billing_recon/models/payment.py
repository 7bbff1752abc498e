"""Payment (bank/card transaction) model."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from billing_recon.database import Base, JSONType
from billing_recon.models.base import SoftDeleteMixin, TimestampMixin, UUIDMixin


class PaymentDirection(str, Enum):
    """Money flow relative to our account."""

    IN = "in"
    OUT = "out"


class MatchStatus(str, Enum):
    """Match status; the engine only ever produces UNMATCHED or NEEDS_REVIEW."""

    UNMATCHED = "unmatched"
    NEEDS_REVIEW = "needs_review"
    MATCHED = "matched"


class ManualStatus(str, Enum):
    """Operator decision that overrides the automatic match."""

    APPROVED = "approved"
    REJECTED = "rejected"


class MatchOrigin(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


PAYMENT_SOURCE_BANK_STATEMENT = "bank_statement"


class Payment(UUIDMixin, TimestampMixin, SoftDeleteMixin, Base):
    """A parsed statement line and its reconciliation state.

    Three groups of fields live here:
    - raw/parsed fields, refreshed only where null on re-import
    - automatic match fields, rewritten by every matching run
    - manual override fields, owned by the operator and never touched by imports
    """

    __tablename__ = "payments"

    # Raw / parsed
    operation_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    account: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    direction: Mapped[PaymentDirection] = mapped_column(
        SQLEnum(PaymentDirection, name="payment_direction"), nullable=False
    )
    amount_raw: Mapped[str | None] = mapped_column(String(64), nullable=True)
    raw_line: Mapped[str] = mapped_column(Text, nullable=False)
    payer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payer_normalized_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    invoice_number_hint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    source: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PAYMENT_SOURCE_BANK_STATEMENT
    )
    import_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payment_imports.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Operator categorization, preserved across re-imports
    income_category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_refund: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Automatic match
    match_status: Mapped[MatchStatus] = mapped_column(
        SQLEnum(MatchStatus, name="payment_match_status"),
        nullable=False,
        default=MatchStatus.UNMATCHED,
    )
    match_confidence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    match_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    match_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    proforma_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("proformas.id", ondelete="SET NULL"),
        nullable=True,
    )
    proforma_fullnumber: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Manual override
    manual_status: Mapped[ManualStatus | None] = mapped_column(
        SQLEnum(ManualStatus, name="payment_manual_status"), nullable=True
    )
    manual_proforma_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("proformas.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    manual_proforma_fullnumber: Mapped[str | None] = mapped_column(String(64), nullable=True)
    manual_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    manual_user: Mapped[str | None] = mapped_column(String(128), nullable=True)
    manual_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Effective status shown to operators (manual decision wins over auto)
    status: Mapped[MatchStatus] = mapped_column(
        SQLEnum(MatchStatus, name="payment_match_status"),
        nullable=False,
        default=MatchStatus.UNMATCHED,
        index=True,
    )

    @property
    def has_manual_decision(self) -> bool:
        return self.manual_status is not None
