"""Payment ledger with idempotent, content-hash keyed ingestion."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_recon.logger import get_logger
from billing_recon.models import (
    PAYMENT_SOURCE_BANK_STATEMENT,
    ManualStatus,
    MatchOrigin,
    MatchStatus,
    Payment,
    PaymentDirection,
)
from billing_recon.models.base import utcnow
from billing_recon.services.aggregates import safe_recompute_many
from billing_recon.services.matching import MANUAL_REASON, MatchOutcome, build_match_metadata
from billing_recon.services.statement_parser import StatementRecord, calculate_content_hash

logger = get_logger(__name__)

CENT = Decimal("0.01")
MANUAL_REJECTED_REASON = "rejected manually"

# Parse-derived fields that a re-import may fill in when they are still empty
FILLABLE_FIELDS = (
    "account",
    "category",
    "currency",
    "amount_raw",
    "payer_name",
    "payer_normalized_name",
    "invoice_number_hint",
)

DriftKey = tuple[date, Decimal, PaymentDirection]


class PaymentNotFoundError(Exception):
    """Requested payment does not exist (or is deleted)."""


@dataclass
class UpsertResult:
    payments: list[Payment] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    skipped_deleted: int = 0
    skipped_drift: int = 0
    skipped_duplicates: int = 0

    @property
    def skipped(self) -> int:
        return self.skipped_deleted + self.skipped_drift + self.skipped_duplicates


@dataclass
class ResolvedPayment:
    """Effective view of a payment: manual decision wins over the auto match."""

    status: MatchStatus
    origin: MatchOrigin
    proforma_id: UUID | None
    proforma_fullnumber: str | None
    confidence: int
    reason: str | None


def drift_key(operation_date: date, amount: Decimal, direction: PaymentDirection) -> DriftKey:
    return (operation_date, amount.quantize(CENT), direction)


class PaymentLedger:
    """Stores parsed statement records keyed by content hash.

    Re-ingesting the same export is a no-op for everything an operator owns:
    manual links, categorization and deletions survive any number of imports.
    """

    calculate_content_hash = staticmethod(calculate_content_hash)

    @staticmethod
    def dedupe_batch(
        records: Iterable[StatementRecord],
    ) -> tuple[list[StatementRecord], int]:
        """Drop repeated hashes inside one batch; the first occurrence wins."""
        seen: set[str] = set()
        unique: list[StatementRecord] = []
        duplicates = 0
        for record in records:
            if record.content_hash in seen:
                duplicates += 1
                continue
            seen.add(record.content_hash)
            unique.append(record)
        return unique, duplicates

    @staticmethod
    def _new_payment(record: StatementRecord, import_id: UUID | None) -> Payment:
        return Payment(
            operation_date=record.operation_date,
            description=record.description,
            account=record.account,
            category=record.category,
            amount=record.amount,
            currency=record.currency,
            direction=record.direction,
            amount_raw=record.amount_raw,
            raw_line=record.raw_line,
            payer_name=record.payer_name,
            payer_normalized_name=record.payer_normalized_name,
            invoice_number_hint=record.invoice_number_hint,
            content_hash=record.content_hash,
            source=PAYMENT_SOURCE_BANK_STATEMENT,
            import_id=import_id,
            is_refund=False,
            match_status=MatchStatus.UNMATCHED,
            match_confidence=0,
            status=MatchStatus.UNMATCHED,
        )

    @staticmethod
    def _fill_missing(payment: Payment, record: StatementRecord) -> bool:
        changed = False
        for name in FILLABLE_FIELDS:
            if getattr(payment, name) is None and getattr(record, name) is not None:
                setattr(payment, name, getattr(record, name))
                changed = True
        return changed

    async def _existing_by_hash(
        self, db: AsyncSession, hashes: Sequence[str]
    ) -> dict[str, Payment]:
        if not hashes:
            return {}
        result = await db.execute(select(Payment).where(Payment.content_hash.in_(list(hashes))))
        return {payment.content_hash: payment for payment in result.scalars().all()}

    async def _drift_index(
        self, db: AsyncSession, records: Sequence[StatementRecord]
    ) -> dict[DriftKey, Payment]:
        if not records:
            return {}
        dates = {record.operation_date for record in records}
        result = await db.execute(
            select(Payment)
            .where(Payment.operation_date.in_(sorted(dates)))
            .where(Payment.deleted_at.is_(None))
        )
        index: dict[DriftKey, Payment] = {}
        for payment in result.scalars().all():
            key = drift_key(payment.operation_date, payment.amount, payment.direction)
            index.setdefault(key, payment)
        return index

    async def upsert_records(
        self,
        db: AsyncSession,
        records: Iterable[StatementRecord],
        *,
        import_id: UUID | None = None,
    ) -> UpsertResult:
        """Write a parsed batch.

        - same hash as a soft-deleted payment: skipped, never resurrected
        - new hash but same (date, amount, direction) as a live payment: skipped
          as a re-export with a drifted line, the live payment stays untouched
        - same hash as a live payment: only empty parse-derived fields are filled
        """
        unique, duplicates = self.dedupe_batch(records)
        result = UpsertResult(skipped_duplicates=duplicates)

        existing = await self._existing_by_hash(db, [r.content_hash for r in unique])
        new_records = [r for r in unique if r.content_hash not in existing]
        drift_index = await self._drift_index(db, new_records)

        for record in unique:
            payment = existing.get(record.content_hash)
            if payment is not None:
                if payment.deleted_at is not None:
                    result.skipped_deleted += 1
                    logger.info(
                        "Skipping re-import of deleted payment",
                        payment_id=str(payment.id),
                        content_hash=record.content_hash,
                    )
                    continue
                self._fill_missing(payment, record)
                result.updated += 1
                result.payments.append(payment)
                continue

            drifted = drift_index.get(
                drift_key(record.operation_date, record.amount, record.direction)
            )
            if drifted is not None:
                result.skipped_drift += 1
                logger.info(
                    "Skipping payment matching an existing record by date and amount",
                    existing_payment_id=str(drifted.id),
                    operation_date=record.operation_date.isoformat(),
                    amount=str(record.amount),
                    direction=record.direction.value,
                )
                continue

            payment = self._new_payment(record, import_id)
            db.add(payment)
            result.created += 1
            result.payments.append(payment)

        await db.flush()
        logger.info(
            "Ledger upsert completed",
            import_id=str(import_id) if import_id else None,
            created=result.created,
            updated=result.updated,
            skipped_deleted=result.skipped_deleted,
            skipped_drift=result.skipped_drift,
            skipped_duplicates=result.skipped_duplicates,
        )
        return result


def effective_status(payment: Payment) -> MatchStatus:
    if payment.manual_status == ManualStatus.APPROVED:
        return MatchStatus.MATCHED
    if payment.manual_status == ManualStatus.REJECTED:
        return MatchStatus.UNMATCHED
    return payment.match_status or MatchStatus.UNMATCHED


def refresh_status(payment: Payment) -> MatchStatus:
    """Re-derive the stored display status from auto and manual fields."""
    payment.status = effective_status(payment)
    return payment.status


def resolve_payment(payment: Payment) -> ResolvedPayment:
    if payment.manual_status == ManualStatus.APPROVED:
        return ResolvedPayment(
            status=MatchStatus.MATCHED,
            origin=MatchOrigin.MANUAL,
            proforma_id=payment.manual_proforma_id,
            proforma_fullnumber=payment.manual_proforma_fullnumber,
            confidence=100,
            reason=MANUAL_REASON,
        )
    if payment.manual_status == ManualStatus.REJECTED:
        return ResolvedPayment(
            status=MatchStatus.UNMATCHED,
            origin=MatchOrigin.MANUAL,
            proforma_id=None,
            proforma_fullnumber=None,
            confidence=0,
            reason=MANUAL_REJECTED_REASON,
        )
    return ResolvedPayment(
        status=payment.match_status or MatchStatus.UNMATCHED,
        origin=MatchOrigin.AUTO,
        proforma_id=payment.proforma_id,
        proforma_fullnumber=payment.proforma_fullnumber,
        confidence=payment.match_confidence or 0,
        reason=payment.match_reason,
    )


def apply_outcome(payment: Payment, outcome: MatchOutcome) -> None:
    """Write automatic match fields; manual fields are left alone."""
    payment.match_status = outcome.status
    payment.match_confidence = outcome.confidence
    payment.match_reason = outcome.reason
    payment.proforma_id = outcome.candidate_invoice_id
    payment.proforma_fullnumber = outcome.candidate_fullnumber
    payment.match_metadata = build_match_metadata(outcome)
    refresh_status(payment)


def clear_auto_match(payment: Payment, reason: str | None = None) -> None:
    payment.match_status = MatchStatus.UNMATCHED
    payment.match_confidence = 0
    payment.match_reason = reason
    payment.proforma_id = None
    payment.proforma_fullnumber = None
    payment.match_metadata = None
    refresh_status(payment)


async def get_payment(
    db: AsyncSession,
    payment_id: UUID,
    *,
    include_deleted: bool = False,
    for_update: bool = False,
) -> Payment:
    query = select(Payment).where(Payment.id == payment_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    payment = result.scalar_one_or_none()
    if payment is None or (payment.deleted_at is not None and not include_deleted):
        raise PaymentNotFoundError(f"Payment {payment_id} not found")
    return payment


async def soft_delete_payment(db: AsyncSession, payment_id: UUID) -> Payment:
    """Hide a payment; it will not come back on re-import of the same line."""
    payment = await get_payment(db, payment_id, for_update=True)
    payment.deleted_at = utcnow()
    await db.flush()
    logger.info("Payment soft-deleted", payment_id=str(payment.id))

    if payment.manual_status == ManualStatus.APPROVED:
        await safe_recompute_many(db, [payment.manual_proforma_id])
    return payment
