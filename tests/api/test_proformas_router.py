"""API tests for proforma sync and recompute endpoints."""

from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient

from billing_recon.models import ManualStatus
from tests.factories import PaymentFactory, ProformaFactory


@pytest.mark.asyncio
async def test_sync_creates_then_updates_by_number(client: AsyncClient):
    payload = {
        "fullnumber": "CO-PROF 12/2025",
        "currency": "eur",
        "total": "250.00",
        "issued_at": "2025-10-01",
        "buyer_name": "Łukasz Żółć",
        "exchange_rate": "4.25",
    }
    created = (await client.post("/proformas", json=payload)).json()

    assert created["currency"] == "EUR"
    assert created["status"] == "active"
    assert Decimal(created["payments_total"]) == Decimal("0")
    assert Decimal(created["remaining"]) == Decimal("250")

    updated = await client.post("/proformas", json={**payload, "total": "300.00"})

    assert updated.status_code == 200
    assert updated.json()["id"] == created["id"]
    assert Decimal(updated.json()["total"]) == Decimal("300")


@pytest.mark.asyncio
async def test_sync_rejects_invalid_payload(client: AsyncClient):
    response = await client.post(
        "/proformas",
        json={"fullnumber": "X", "currency": "PLNX", "total": "-1", "issued_at": "2025-10-01"},
    )
    assert response.status_code == 422

    response = await client.post(
        "/proformas",
        json={"fullnumber": "   ", "currency": "PLN", "total": "1", "issued_at": "2025-10-01"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_get_unknown_proforma(client: AsyncClient):
    assert (await client.get(f"/proformas/{uuid4()}")).status_code == 404
    assert (await client.post(f"/proformas/{uuid4()}/recompute")).status_code == 404


@pytest.mark.asyncio
async def test_recompute_repairs_drifted_totals(client: AsyncClient, db):
    proforma = await ProformaFactory.create_async(
        db, total=Decimal("500.00"), payments_total=Decimal("999.00"), payments_count=7
    )
    await PaymentFactory.create_async(
        db,
        amount=Decimal("200.00"),
        manual_status=ManualStatus.APPROVED,
        manual_proforma_id=proforma.id,
    )
    await db.commit()

    response = await client.post(f"/proformas/{proforma.id}/recompute")

    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["payments_total"]) == Decimal("200")
    assert body["payments_count"] == 1
    assert Decimal(body["remaining"]) == Decimal("300")
