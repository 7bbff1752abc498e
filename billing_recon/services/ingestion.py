"""Statement ingestion: parse, back up, store, then auto-match pending payments."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billing_recon.database import storage_disabled
from billing_recon.logger import async_log_timing, get_logger, log_exception
from billing_recon.models import MatchStatus, Payment, PaymentDirection, PaymentImport
from billing_recon.services.backup import create_pre_import_backup
from billing_recon.services.ledger import PaymentLedger, apply_outcome
from billing_recon.services.matching import apply_matching, load_reconciliation_config
from billing_recon.services.matching_context import (
    InvoiceLookup,
    InvoiceLookupError,
    build_matching_context,
)
from billing_recon.services.proformas import ProformaRepository
from billing_recon.services.statement_parser import StatementRecord, parse_statement

logger = get_logger(__name__)


class IngestionError(Exception):
    """Ingestion could not complete; nothing from the batch should be committed."""


@dataclass
class IngestResult:
    processed: int = 0
    matched: int = 0
    needs_review: int = 0
    unmatched: int = 0
    skipped: int = 0
    ignored: int = 0
    import_id: UUID | None = None
    backup_id: UUID | None = None
    disabled: bool = False


def _pending(payments: Sequence[Payment]) -> list[Payment]:
    """Incoming payments the engine may still (re)match."""
    return [
        p
        for p in payments
        if p.direction == PaymentDirection.IN and not p.has_manual_decision
    ]


async def ingest_transactions(
    db: AsyncSession | None,
    records: Sequence[StatementRecord],
    *,
    filename: str | None = None,
    uploaded_by: str | None = None,
    lookup: InvoiceLookup | None = None,
) -> IngestResult:
    """Store parsed records and run automatic matching over the batch.

    Payments with a manual decision keep their matching fields untouched; the
    automatic fields of all other incoming payments are rewritten.

    Raises:
        IngestionError: the invoice source failed while building the matching context
    """
    if db is None:
        storage_disabled("ingest_transactions")
        return IngestResult(disabled=True)
    async with async_log_timing(
        "ingest_transactions", logger=logger, filename=filename, records=len(records)
    ) as timing:
        payment_import = PaymentImport(
            filename=filename,
            user_name=uploaded_by,
            total_records=len(records),
        )
        db.add(payment_import)
        await db.flush()
        result = IngestResult(import_id=payment_import.id)

        try:
            backup = await create_pre_import_backup(
                db,
                import_id=payment_import.id,
                operation_dates=[record.operation_date for record in records],
            )
        except Exception as e:
            # A failed snapshot never blocks the import itself
            log_exception(
                logger,
                e,
                "Pre-import backup failed",
                level="warning",
                import_id=str(payment_import.id),
            )
            backup = None
        if backup is not None:
            result.backup_id = backup.id

        upsert = await PaymentLedger().upsert_records(db, records, import_id=payment_import.id)
        result.processed = len(upsert.payments)
        result.skipped = upsert.skipped

        pending = _pending(upsert.payments)
        config = load_reconciliation_config()
        try:
            context = await build_matching_context(
                pending,
                lookup or ProformaRepository(db),
                window_days=config.window_days,
                open_limit=config.open_limit,
                paid_epsilon=config.paid_epsilon,
            )
        except InvoiceLookupError as e:
            raise IngestionError(f"Invoice lookup failed: {e}") from e

        for payment, outcome in apply_matching(pending, context, config):
            apply_outcome(payment, outcome)

        for payment in upsert.payments:
            if payment.direction != PaymentDirection.IN:
                result.ignored += 1
            elif payment.status == MatchStatus.MATCHED:
                result.matched += 1
            elif payment.status == MatchStatus.NEEDS_REVIEW:
                result.needs_review += 1
            else:
                result.unmatched += 1

        payment_import.processed = result.processed
        payment_import.matched = result.matched
        payment_import.needs_review = result.needs_review
        payment_import.unmatched = result.unmatched
        payment_import.skipped = result.skipped
        await db.flush()

        timing.update(
            processed=result.processed,
            matched=result.matched,
            needs_review=result.needs_review,
            unmatched=result.unmatched,
            skipped=result.skipped,
            ignored=result.ignored,
            lookup_calls=context.lookup_calls,
        )
    return result


async def ingest_statement(
    db: AsyncSession | None,
    content: bytes,
    *,
    filename: str | None = None,
    uploaded_by: str | None = None,
) -> IngestResult:
    """Parse raw statement bytes and ingest them.

    Without a storage backend nothing is parsed and a disabled result is returned.
    """
    if db is None:
        storage_disabled("ingest_statement")
        return IngestResult(disabled=True)

    records = parse_statement(content)
    if not records:
        logger.info("Statement contained no usable records", filename=filename)

    return await ingest_transactions(db, records, filename=filename, uploaded_by=uploaded_by)
