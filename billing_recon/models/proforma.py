"""Proforma (open invoice) model."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, Integer, Numeric, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from billing_recon.database import Base
from billing_recon.models.base import TimestampMixin, UUIDMixin


class ProformaStatus(str, Enum):
    """Lifecycle state of a proforma in the accounting system."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    DELETED = "deleted"


class Proforma(UUIDMixin, TimestampMixin, Base):
    """Invoice awaiting payment.

    The payments_* columns are derived by the aggregate calculator from the
    approved manual links and must not be edited by hand.
    """

    __tablename__ = "proformas"

    fullnumber: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    buyer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    buyer_normalized_name: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    issued_at: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[ProformaStatus] = mapped_column(
        SQLEnum(ProformaStatus, name="proforma_status"),
        nullable=False,
        default=ProformaStatus.ACTIVE,
    )

    payments_total: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    payments_total_base: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    payments_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payments_currency_exchange: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 6), nullable=True
    )

    @property
    def paid_total(self) -> Decimal:
        # Transient objects have no column defaults applied yet.
        return self.payments_total if self.payments_total is not None else Decimal("0")

    @property
    def remaining(self) -> Decimal:
        """Outstanding amount, never negative (over-payment is visible via paid_total)."""
        return max(self.total - self.paid_total, Decimal("0"))

    @property
    def is_active(self) -> bool:
        return self.status == ProformaStatus.ACTIVE
