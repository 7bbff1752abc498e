"""Operator-facing payment listing and CSV export."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_recon.models import ManualStatus, Payment, PaymentImport
from billing_recon.services.ledger import ResolvedPayment, resolve_payment

DEFAULT_LIST_LIMIT = 500
RECENT_IMPORTS_LIMIT = 10
EXPORT_COLUMNS = ("date", "description", "amount", "currency", "payer", "proforma", "status")


@dataclass
class PaymentListing:
    payments: list[tuple[Payment, ResolvedPayment]]
    total: int
    imports: list[PaymentImport]


def _open_payments_filter():
    return (
        Payment.deleted_at.is_(None),
        or_(Payment.manual_status.is_(None), Payment.manual_status != ManualStatus.APPROVED),
    )


async def list_imports(
    db: AsyncSession, *, limit: int = RECENT_IMPORTS_LIMIT
) -> list[PaymentImport]:
    result = await db.execute(
        select(PaymentImport).order_by(PaymentImport.uploaded_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def list_payments(db: AsyncSession, *, limit: int = DEFAULT_LIST_LIMIT) -> PaymentListing:
    """Payments still needing attention (not deleted, not approved), newest first."""
    filters = _open_payments_filter()
    total = await db.scalar(select(func.count()).select_from(Payment).where(*filters))
    result = await db.execute(
        select(Payment)
        .where(*filters)
        .order_by(Payment.operation_date.desc(), Payment.created_at.desc())
        .limit(limit)
    )
    payments = [(payment, resolve_payment(payment)) for payment in result.scalars().all()]
    return PaymentListing(
        payments=payments,
        total=total or 0,
        imports=await list_imports(db),
    )


async def export_csv(db: AsyncSession) -> str:
    """All live payments with their effective match, as CSV text."""
    result = await db.execute(
        select(Payment)
        .where(Payment.deleted_at.is_(None))
        .order_by(Payment.operation_date.desc(), Payment.created_at.desc())
    )

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for payment in result.scalars().all():
        resolved = resolve_payment(payment)
        writer.writerow(
            [
                payment.operation_date.isoformat(),
                payment.description,
                f"{payment.amount:.2f}",
                payment.currency or "",
                payment.payer_name or "",
                resolved.proforma_fullnumber or "",
                resolved.status.value,
            ]
        )
    return buffer.getvalue()
