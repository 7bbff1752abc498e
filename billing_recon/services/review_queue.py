"""Manual review of payment matches.

Every action here changes the operator-owned fields of a payment, re-derives
its display status and recomputes the totals of each proforma whose set of
approved links changed (the one that lost the link and the one that gained it).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_recon.config import settings
from billing_recon.database import StorageDisabled, storage_disabled
from billing_recon.logger import get_logger
from billing_recon.models import (
    ManualStatus,
    MatchStatus,
    Payment,
    PaymentDirection,
    Proforma,
)
from billing_recon.models.base import utcnow
from billing_recon.services.aggregates import safe_recompute_many
from billing_recon.services.ledger import (
    ResolvedPayment,
    clear_auto_match,
    get_payment,
    refresh_status,
    resolve_payment,
)
from billing_recon.services.matching import MatchCandidate, match
from billing_recon.services.matching_context import build_matching_context
from billing_recon.services.normalize import normalize_invoice_number
from billing_recon.services.proformas import ProformaNotFoundError, ProformaRepository

logger = get_logger(__name__)

QUICK_APPROVE_USER = "quick-auto"
BULK_APPROVE_USER = "bulk-auto"
BULK_APPROVE_LIMIT = 1000
REFUND_REASON = "marked as refund"


class ReviewValidationError(ValueError):
    """Manual action cannot be applied as requested."""


@dataclass
class PaymentDetails:
    payment: Payment
    resolved: ResolvedPayment
    candidates: list[MatchCandidate] = field(default_factory=list)


@dataclass
class BulkApproveResult:
    approved: list[Payment] = field(default_factory=list)
    skipped: int = 0
    failed_recompute: list[UUID] = field(default_factory=list)


async def get_pending_items(
    db: AsyncSession,
    *,
    limit: int = 50,
    offset: int = 0,
) -> list[Payment]:
    """Return incoming payments waiting for an operator decision."""
    result = await db.execute(
        select(Payment)
        .where(Payment.deleted_at.is_(None))
        .where(Payment.manual_status.is_(None))
        .where(Payment.match_status == MatchStatus.NEEDS_REVIEW)
        .order_by(Payment.match_confidence.desc(), Payment.operation_date.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def _resolve_target(
    db: AsyncSession,
    *,
    proforma_id: UUID | None,
    fullnumber: str | None,
) -> Proforma:
    repo = ProformaRepository(db)
    if proforma_id is not None:
        try:
            proforma = await repo.get(proforma_id)
        except ProformaNotFoundError as e:
            raise ReviewValidationError(f"Proforma {proforma_id} not found") from e
    elif fullnumber is not None:
        canonical = normalize_invoice_number(fullnumber)
        if not canonical:
            raise ReviewValidationError("Proforma number is required")
        proforma = await repo.get_by_fullnumber(canonical)
        if proforma is None:
            raise ReviewValidationError(f"Proforma {canonical} not found")
    else:
        raise ReviewValidationError("Either proforma_id or fullnumber is required")

    if not proforma.is_active:
        raise ReviewValidationError(
            f"Proforma {proforma.fullnumber} is {proforma.status.value} and cannot be linked"
        )
    return proforma


def _ensure_linkable(payment: Payment) -> None:
    if payment.direction != PaymentDirection.IN:
        raise ReviewValidationError("Only incoming payments can be linked to a proforma")


def _approved_link(payment: Payment) -> UUID | None:
    if payment.manual_status == ManualStatus.APPROVED:
        return payment.manual_proforma_id
    return None


def _set_manual(
    payment: Payment,
    *,
    status: ManualStatus | None,
    proforma: Proforma | None,
    user: str | None,
    comment: str | None,
) -> None:
    payment.manual_status = status
    payment.manual_proforma_id = proforma.id if proforma else None
    payment.manual_proforma_fullnumber = proforma.fullnumber if proforma else None
    payment.manual_comment = comment
    payment.manual_user = user
    payment.manual_updated_at = utcnow()
    refresh_status(payment)


def _link(
    payment: Payment,
    proforma: Proforma,
    *,
    user: str | None,
    comment: str | None,
) -> UUID | None:
    """Approve a link in memory and return the proforma that lost it, if any."""
    _ensure_linkable(payment)
    previous = _approved_link(payment)
    _set_manual(
        payment,
        status=ManualStatus.APPROVED,
        proforma=proforma,
        user=user,
        comment=comment,
    )
    return previous


async def approve_match(
    db: AsyncSession | None,
    payment_id: UUID,
    *,
    proforma_id: UUID | None = None,
    fullnumber: str | None = None,
    user: str | None = None,
    comment: str | None = None,
) -> Payment | StorageDisabled:
    """Link a payment to a proforma by id or number.

    Raises:
        PaymentNotFoundError: payment missing or deleted
        ReviewValidationError: proforma missing or not active, payment not incoming
    """
    if db is None:
        return storage_disabled("approve_match")
    payment = await get_payment(db, payment_id, for_update=True)
    _ensure_linkable(payment)
    proforma = await _resolve_target(db, proforma_id=proforma_id, fullnumber=fullnumber)

    previous = _link(payment, proforma, user=user, comment=comment)
    await db.flush()
    logger.info(
        "Payment match approved",
        payment_id=str(payment.id),
        proforma_id=str(proforma.id),
        fullnumber=proforma.fullnumber,
        previous_proforma_id=str(previous) if previous else None,
        user=user,
    )

    await safe_recompute_many(db, [previous, proforma.id])
    return payment


async def approve_auto_match(
    db: AsyncSession | None,
    payment_id: UUID,
    *,
    user: str | None = None,
) -> Payment | StorageDisabled:
    """Confirm the automatic candidate of a payment."""
    if db is None:
        return storage_disabled("approve_auto_match")
    payment = await get_payment(db, payment_id, for_update=True)
    if payment.proforma_id is None:
        raise ReviewValidationError("Payment has no automatic match to approve")
    return await approve_match(
        db,
        payment_id,
        proforma_id=payment.proforma_id,
        user=user or QUICK_APPROVE_USER,
        comment="Approved automatic match",
    )


async def bulk_approve_auto_matches(
    db: AsyncSession,
    *,
    user: str | None = None,
    min_confidence: int | None = None,
    limit: int = BULK_APPROVE_LIMIT,
) -> BulkApproveResult:
    """Approve every pending automatic candidate at or above min_confidence."""
    min_confidence = (
        settings.bulk_approve_min_confidence if min_confidence is None else min_confidence
    )
    result = await db.execute(
        select(Payment)
        .where(Payment.deleted_at.is_(None))
        .where(Payment.manual_status.is_(None))
        .where(Payment.match_status == MatchStatus.NEEDS_REVIEW)
        .where(Payment.direction == PaymentDirection.IN)
        .where(Payment.proforma_id.is_not(None))
        .where(Payment.match_confidence >= min_confidence)
        .order_by(Payment.match_confidence.desc())
        .limit(limit)
        .with_for_update()
    )
    payments = list(result.scalars().all())
    outcome = BulkApproveResult()
    if not payments:
        return outcome

    proforma_ids = {p.proforma_id for p in payments}
    proformas_result = await db.execute(select(Proforma).where(Proforma.id.in_(proforma_ids)))
    proformas = {p.id: p for p in proformas_result.scalars().all()}

    affected: list[UUID | None] = []
    for payment in payments:
        proforma = proformas.get(payment.proforma_id)
        if proforma is None or not proforma.is_active:
            outcome.skipped += 1
            logger.info(
                "Bulk approve skipped payment",
                payment_id=str(payment.id),
                proforma_id=str(payment.proforma_id),
            )
            continue
        previous = _link(
            payment,
            proforma,
            user=user or BULK_APPROVE_USER,
            comment=f"Bulk approved (confidence >= {min_confidence})",
        )
        affected.extend([previous, proforma.id])
        outcome.approved.append(payment)

    await db.flush()
    outcome.failed_recompute = await safe_recompute_many(db, affected)
    logger.info(
        "Bulk approve completed",
        approved=len(outcome.approved),
        skipped=outcome.skipped,
        min_confidence=min_confidence,
    )
    return outcome


async def reject_match(
    db: AsyncSession | None,
    payment_id: UUID,
    *,
    user: str | None = None,
    comment: str | None = None,
) -> Payment | StorageDisabled:
    """Record that the payment does not belong to any proposed proforma."""
    if db is None:
        return storage_disabled("reject_match")
    payment = await get_payment(db, payment_id, for_update=True)
    previous = _approved_link(payment)
    _set_manual(payment, status=ManualStatus.REJECTED, proforma=None, user=user, comment=comment)
    await db.flush()
    logger.info("Payment match rejected", payment_id=str(payment.id), user=user)

    await safe_recompute_many(db, [previous])
    return payment


async def clear_match(
    db: AsyncSession | None,
    payment_id: UUID,
    *,
    user: str | None = None,
    comment: str | None = None,
) -> Payment | StorageDisabled:
    """Drop the manual decision; the automatic match becomes visible again."""
    if db is None:
        return storage_disabled("clear_match")
    payment = await get_payment(db, payment_id, for_update=True)
    previous = _approved_link(payment)
    _set_manual(payment, status=None, proforma=None, user=user, comment=comment)
    await db.flush()
    logger.info("Payment manual match cleared", payment_id=str(payment.id), user=user)

    await safe_recompute_many(db, [previous])
    return payment


async def mark_refund(
    db: AsyncSession | None,
    payment_id: UUID,
    *,
    user: str | None = None,
    comment: str | None = None,
) -> Payment | StorageDisabled:
    """Reclassify a payment as an outgoing refund and unlink it."""
    if db is None:
        return storage_disabled("mark_refund")
    payment = await get_payment(db, payment_id, for_update=True)
    previous = _approved_link(payment)
    payment.direction = PaymentDirection.OUT
    payment.is_refund = True
    _set_manual(payment, status=None, proforma=None, user=user, comment=comment)
    clear_auto_match(payment, REFUND_REASON)
    await db.flush()
    logger.info("Payment marked as refund", payment_id=str(payment.id), user=user)

    await safe_recompute_many(db, [previous])
    return payment


async def reset_matches(db: AsyncSession) -> int:
    """Clear automatic match fields of payments without a manual decision."""
    result = await db.execute(
        select(Payment)
        .where(Payment.deleted_at.is_(None))
        .where(Payment.manual_status.is_(None))
        .where(Payment.match_status != MatchStatus.UNMATCHED)
    )
    payments = list(result.scalars().all())
    for payment in payments:
        clear_auto_match(payment)
    await db.flush()
    logger.info("Automatic matches reset", payments=len(payments))
    return len(payments)


async def get_payment_details(db: AsyncSession, payment_id: UUID) -> PaymentDetails:
    """Payment with freshly computed candidates; a confirmed proforma is listed first."""
    payment = await get_payment(db, payment_id)
    candidates: list[MatchCandidate] = []
    if payment.direction == PaymentDirection.IN:
        context = await build_matching_context([payment], ProformaRepository(db))
        candidates = match(payment, context)

    manual_id = _approved_link(payment)
    if manual_id is not None:
        proforma = await db.get(Proforma, manual_id)
        if proforma is not None:
            candidates = [c for c in candidates if c.invoice_id != manual_id]
            candidates.insert(
                0,
                MatchCandidate(
                    rule=None,
                    score=100,
                    fullnumber=proforma.fullnumber,
                    invoice_id=proforma.id,
                    amount_diff=abs(payment.amount - proforma.remaining),
                    remaining=proforma.remaining,
                    currency=proforma.currency,
                ),
            )

    return PaymentDetails(payment=payment, resolved=resolve_payment(payment), candidates=candidates)

