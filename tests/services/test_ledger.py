"""Tests for idempotent payment ingestion into the ledger.

GIVEN: parsed statement records, possibly already ingested
WHEN: upserting them again
THEN: operator-owned state survives and nothing is duplicated or resurrected
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from billing_recon.models import (
    ManualStatus,
    MatchOrigin,
    MatchStatus,
    Payment,
    PaymentDirection,
)
from billing_recon.services.ledger import (
    PaymentLedger,
    PaymentNotFoundError,
    effective_status,
    get_payment,
    resolve_payment,
    soft_delete_payment,
)
from billing_recon.services.statement_parser import (
    DirectionSource,
    StatementDialect,
    StatementRecord,
    calculate_content_hash,
)
from tests.factories import PaymentFactory, ProformaFactory


def make_record(
    description: str = "JAN KOWALSKI CO-PROF 1/2025",
    amount: str = "100.00",
    operation_date: date = date(2025, 10, 30),
    direction: PaymentDirection = PaymentDirection.IN,
    **overrides,
) -> StatementRecord:
    raw_line = f"{operation_date.isoformat()};{description};Acct;;{amount} PLN;"
    fields = {
        "operation_date": operation_date,
        "description": description,
        "account": "Acct",
        "category": None,
        "amount": Decimal(amount),
        "currency": "PLN",
        "direction": direction,
        "direction_source": DirectionSource.AMOUNT,
        "amount_raw": f"{amount} PLN",
        "payer_name": "JAN KOWALSKI",
        "payer_normalized_name": "jan kowalski",
        "invoice_number_hint": "CO-PROF 1/2025",
        "content_hash": calculate_content_hash(raw_line),
        "raw_line": raw_line,
        "dialect": StatementDialect.BANK,
    }
    fields.update(overrides)
    return StatementRecord(**fields)


async def count_payments(db) -> int:
    return (await db.execute(select(func.count()).select_from(Payment))).scalar_one()


@pytest.mark.asyncio
async def test_first_import_creates_payments(db):
    ledger = PaymentLedger()

    result = await ledger.upsert_records(db, [make_record(), make_record("Other", "50.00")])

    assert result.created == 2
    assert result.skipped == 0
    assert await count_payments(db) == 2
    payment = result.payments[0]
    assert payment.status == MatchStatus.UNMATCHED
    assert payment.invoice_number_hint == "CO-PROF 1/2025"


@pytest.mark.asyncio
async def test_reimport_is_idempotent(db):
    ledger = PaymentLedger()
    records = [make_record(), make_record("Other", "50.00")]
    await ledger.upsert_records(db, records)

    result = await ledger.upsert_records(db, records)

    assert result.created == 0
    assert result.updated == 2
    assert await count_payments(db) == 2


@pytest.mark.asyncio
async def test_duplicate_lines_inside_batch_are_collapsed(db):
    record = make_record()

    result = await PaymentLedger().upsert_records(db, [record, record])

    assert result.created == 1
    assert result.skipped_duplicates == 1


@pytest.mark.asyncio
async def test_reimport_preserves_manual_decision(db):
    ledger = PaymentLedger()
    proforma = await ProformaFactory.create_async(db)
    [payment] = (await ledger.upsert_records(db, [make_record()])).payments
    payment.manual_status = ManualStatus.APPROVED
    payment.manual_proforma_id = proforma.id
    payment.manual_comment = "checked"
    payment.income_category = "subscription"
    await db.flush()

    [again] = (await ledger.upsert_records(db, [make_record()])).payments

    assert again.id == payment.id
    assert again.manual_status == ManualStatus.APPROVED
    assert again.manual_proforma_id == proforma.id
    assert again.manual_comment == "checked"
    assert again.income_category == "subscription"


@pytest.mark.asyncio
async def test_reimport_fills_only_missing_fields(db):
    ledger = PaymentLedger()
    [payment] = (await ledger.upsert_records(db, [make_record(category=None)])).payments
    payment.account = "Renamed"
    await db.flush()

    await ledger.upsert_records(db, [make_record(category="Wpływy", account="Acct")])

    assert payment.category == "Wpływy"
    assert payment.account == "Renamed"


@pytest.mark.asyncio
async def test_deleted_payment_is_not_resurrected(db):
    ledger = PaymentLedger()
    [payment] = (await ledger.upsert_records(db, [make_record()])).payments
    await soft_delete_payment(db, payment.id)

    result = await ledger.upsert_records(db, [make_record()])

    assert result.skipped_deleted == 1
    assert result.payments == []
    assert payment.deleted_at is not None
    assert await count_payments(db) == 1


@pytest.mark.asyncio
async def test_drifted_line_with_same_date_and_amount_is_skipped(db):
    ledger = PaymentLedger()
    await ledger.upsert_records(db, [make_record("Payment for CO-PROF 1/2025")])

    result = await ledger.upsert_records(db, [make_record("Payment for CO-PROF 1/2025 (edited)")])

    assert result.skipped_drift == 1
    assert result.created == 0
    assert await count_payments(db) == 1


@pytest.mark.asyncio
async def test_same_amount_other_direction_is_not_drift(db):
    ledger = PaymentLedger()
    await ledger.upsert_records(db, [make_record("Incoming")])

    result = await ledger.upsert_records(
        db, [make_record("Outgoing", direction=PaymentDirection.OUT)]
    )

    assert result.created == 1


@pytest.mark.asyncio
async def test_get_payment_hides_deleted(db):
    payment = await PaymentFactory.create_async(db)
    await soft_delete_payment(db, payment.id)

    with pytest.raises(PaymentNotFoundError):
        await get_payment(db, payment.id)
    assert (await get_payment(db, payment.id, include_deleted=True)).id == payment.id

    with pytest.raises(PaymentNotFoundError):
        await get_payment(db, uuid.uuid4())


@pytest.mark.asyncio
async def test_deleting_approved_payment_recomputes_totals(db):
    proforma = await ProformaFactory.create_async(db, payments_total=Decimal("100.00"))
    payment = await PaymentFactory.create_async(
        db, manual_status=ManualStatus.APPROVED, manual_proforma_id=proforma.id
    )

    await soft_delete_payment(db, payment.id)

    assert proforma.payments_total == Decimal("0.00")
    assert proforma.payments_count == 0


class TestResolvePayment:
    def test_manual_approval_wins(self):
        proforma_id = uuid.uuid4()
        payment = PaymentFactory.build(
            match_status=MatchStatus.NEEDS_REVIEW,
            proforma_id=uuid.uuid4(),
            match_confidence=60,
            manual_status=ManualStatus.APPROVED,
            manual_proforma_id=proforma_id,
            manual_proforma_fullnumber="CO-PROF 5/2025",
        )

        resolved = resolve_payment(payment)

        assert resolved.status == MatchStatus.MATCHED
        assert resolved.origin == MatchOrigin.MANUAL
        assert resolved.proforma_id == proforma_id
        assert resolved.confidence == 100

    def test_manual_rejection_hides_auto_candidate(self):
        payment = PaymentFactory.build(
            match_status=MatchStatus.NEEDS_REVIEW,
            proforma_id=uuid.uuid4(),
            manual_status=ManualStatus.REJECTED,
        )

        resolved = resolve_payment(payment)

        assert resolved.status == MatchStatus.UNMATCHED
        assert resolved.proforma_id is None
        assert effective_status(payment) == MatchStatus.UNMATCHED

    def test_auto_match_without_decision(self):
        proforma_id = uuid.uuid4()
        payment = PaymentFactory.build(
            match_status=MatchStatus.NEEDS_REVIEW,
            proforma_id=proforma_id,
            match_confidence=80,
            match_reason="Payer name matches buyer",
        )

        resolved = resolve_payment(payment)

        assert resolved.status == MatchStatus.NEEDS_REVIEW
        assert resolved.origin == MatchOrigin.AUTO
        assert resolved.proforma_id == proforma_id
        assert resolved.confidence == 80
