"""Tests for proforma paid-total aggregation."""

import uuid
from decimal import Decimal

import pytest

from billing_recon.database import StorageDisabled
from billing_recon.models import ManualStatus
from billing_recon.models.base import utcnow
from billing_recon.services.aggregates import (
    compute_totals,
    recompute_aggregates,
    safe_recompute_many,
)
from billing_recon.services.proformas import ProformaNotFoundError
from tests.factories import PaymentFactory, ProformaFactory


class TestComputeTotals:
    def test_invoice_currency_bucket_converted_with_rate(self):
        totals = compute_totals(
            invoice_currency="EUR",
            exchange_rate=Decimal("4.30"),
            links=[(Decimal("100.00"), "EUR"), (Decimal("50.00"), "eur")],
        )

        assert totals.payments_total == Decimal("150.00")
        assert totals.payments_total_base == Decimal("645.00")
        assert totals.payments_count == 2
        assert totals.exchange_rate == Decimal("4.30")

    def test_base_currency_bucket_converted_back(self):
        totals = compute_totals(
            invoice_currency="EUR",
            exchange_rate=Decimal("4.00"),
            links=[(Decimal("430.00"), "PLN")],
        )

        assert totals.payments_total == Decimal("107.50")
        assert totals.payments_total_base == Decimal("430.00")

    def test_base_currency_invoice_uses_rate_one(self):
        totals = compute_totals(
            invoice_currency="PLN",
            exchange_rate=Decimal("4.00"),
            links=[(Decimal("10.00"), "PLN")],
        )

        assert totals.exchange_rate == Decimal("1")
        assert totals.payments_total == totals.payments_total_base == Decimal("10.00")

    def test_missing_rate_falls_back_to_one(self):
        totals = compute_totals(
            invoice_currency="USD", exchange_rate=None, links=[(Decimal("20.00"), "USD")]
        )
        assert totals.payments_total_base == Decimal("20.00")

    def test_foreign_currency_is_ignored_but_counted(self):
        totals = compute_totals(
            invoice_currency="PLN",
            exchange_rate=None,
            links=[(Decimal("10.00"), "PLN"), (Decimal("5.00"), "USD")],
        )

        assert totals.payments_total == Decimal("10.00")
        assert totals.payments_count == 2
        assert totals.ignored_currencies == {"USD": Decimal("5.00")}

    def test_no_links_is_zero(self):
        totals = compute_totals(invoice_currency="PLN", exchange_rate=None, links=[])
        assert totals.payments_total == Decimal("0.00")
        assert totals.payments_count == 0


@pytest.mark.asyncio
async def test_recompute_counts_only_approved_live_links(db):
    proforma = await ProformaFactory.create_async(db, total=Decimal("2000.00"))
    await PaymentFactory.create_async(
        db,
        amount=Decimal("1000.00"),
        manual_status=ManualStatus.APPROVED,
        manual_proforma_id=proforma.id,
    )
    await PaymentFactory.create_async(
        db,
        amount=Decimal("300.00"),
        manual_status=ManualStatus.REJECTED,
        manual_proforma_id=proforma.id,
    )
    deleted = await PaymentFactory.create_async(
        db,
        amount=Decimal("500.00"),
        manual_status=ManualStatus.APPROVED,
        manual_proforma_id=proforma.id,
    )
    deleted.deleted_at = utcnow()
    await db.flush()

    updated = await recompute_aggregates(db, proforma.id)

    assert updated.payments_total == Decimal("1000.00")
    assert updated.payments_count == 1
    assert updated.remaining == Decimal("1000.00")


@pytest.mark.asyncio
async def test_recompute_is_idempotent(db):
    proforma = await ProformaFactory.create_async(db)
    await PaymentFactory.create_async(
        db, manual_status=ManualStatus.APPROVED, manual_proforma_id=proforma.id
    )

    first = await recompute_aggregates(db, proforma.id)
    first_total = first.payments_total
    second = await recompute_aggregates(db, proforma.id)

    assert second.payments_total == first_total == Decimal("100.00")
    assert second.payments_count == 1


@pytest.mark.asyncio
async def test_recompute_unknown_proforma_raises(db):
    with pytest.raises(ProformaNotFoundError):
        await recompute_aggregates(db, uuid.uuid4())


@pytest.mark.asyncio
async def test_safe_recompute_reports_failures_without_raising(db):
    proforma = await ProformaFactory.create_async(db)
    missing = uuid.uuid4()

    failed = await safe_recompute_many(db, [proforma.id, None, missing, proforma.id])

    assert failed == [missing]


@pytest.mark.asyncio
async def test_recompute_without_storage_returns_disabled():
    result = await recompute_aggregates(None, uuid.uuid4())

    assert isinstance(result, StorageDisabled)
    assert result.status == "disabled"
    assert result.operation == "recompute_aggregates"
