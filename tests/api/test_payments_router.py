"""API tests for statement import and manual review endpoints."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from httpx import AsyncClient

from billing_recon.config import settings
from billing_recon.database import get_db
from billing_recon.models import MatchStatus
from billing_recon.services.ingestion import IngestionError
from billing_recon.services.statement_parser import BANK_HEADER_MARKER
from tests.factories import PaymentFactory, ProformaFactory

INCOMING = (
    "2025-10-31;JAN KOWALSKI UL. POLNA 5 CO-PROF 143/2025;Acct;Wpływy - PRZYCHODZĄCY;"
    "1 000,00 PLN;"
)
REFUND = "2025-10-30;ZWROT CO-PROF 31/2025;Acct;;-425,00 PLN;"
UNKNOWN = "2025-10-29;Oplata za cos;Acct;Wpływy - PRZYCHODZĄCY;12,34 PLN;"


def statement_upload(*rows: str) -> dict:
    content = "\n".join(["Lista operacji", BANK_HEADER_MARKER, *rows]).encode("utf-8")
    return {"file": ("statement.csv", content, "text/csv")}


async def sync_invoice(client: AsyncClient) -> dict:
    response = await client.post(
        "/proformas",
        json={
            "fullnumber": "co-prof 143/2025",
            "currency": "pln",
            "total": "1000.00",
            "issued_at": "2025-10-01",
            "buyer_name": "Jan Kowalski",
        },
    )
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_import_review_and_approve_flow(client: AsyncClient):
    """GIVEN: one open invoice
    WHEN: a statement is imported and the operator approves the proposed match
    THEN: the invoice is paid and the payment leaves the open list"""
    invoice = await sync_invoice(client)
    assert invoice["fullnumber"] == "CO-PROF 143/2025"

    response = await client.post(
        "/payments/import",
        files=statement_upload(INCOMING, REFUND, UNKNOWN),
        data={"uploaded_by": "anna"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["processed"] == 3
    assert body["needs_review"] == 1
    assert body["unmatched"] == 1
    assert body["ignored"] == 1
    assert body["matched"] == 0

    review = (await client.get("/payments/review")).json()
    assert review["total"] == 1
    pending = review["items"][0]
    assert pending["status"] == MatchStatus.NEEDS_REVIEW.value
    assert pending["confidence"] == 100
    assert pending["proforma_fullnumber"] == "CO-PROF 143/2025"

    details = (await client.get(f"/payments/{pending['id']}")).json()
    assert details["candidates"][0]["proforma_id"] == invoice["id"]
    assert details["candidates"][0]["score"] == 100

    response = await client.post(f"/payments/{pending['id']}/approve-auto")
    assert response.status_code == 200
    approved = response.json()
    assert approved["status"] == "matched"
    assert approved["origin"] == "manual"
    assert approved["proforma_id"] == invoice["id"]

    paid = (await client.get(f"/proformas/{invoice['id']}")).json()
    assert Decimal(paid["payments_total"]) == Decimal("1000")
    assert Decimal(paid["remaining"]) == Decimal("0")
    assert paid["payments_count"] == 1

    listing = (await client.get("/payments")).json()
    assert listing["total"] == 2
    assert pending["id"] not in {item["id"] for item in listing["items"]}
    assert listing["imports"][0]["user_name"] == "anna"


@pytest.mark.asyncio
async def test_reimport_is_idempotent_and_backed_up(client: AsyncClient):
    await sync_invoice(client)
    upload = statement_upload(INCOMING, UNKNOWN)
    first = (await client.post("/payments/import", files=upload)).json()

    second = (await client.post("/payments/import", files=upload)).json()

    assert first["backup_id"] is None
    assert second["backup_id"] is not None
    assert second["processed"] == 2
    listing = (await client.get("/payments")).json()
    assert listing["total"] == 2

    backups = (await client.get("/payments/backups")).json()
    assert [b["id"] for b in backups] == [second["backup_id"]]
    assert backups[0]["payments_count"] == 2


@pytest.mark.asyncio
async def test_restore_backup_once(client: AsyncClient):
    upload = statement_upload(UNKNOWN)
    await client.post("/payments/import", files=upload)
    backup_id = (await client.post("/payments/import", files=upload)).json()["backup_id"]

    response = await client.post(f"/payments/backups/{backup_id}/restore")
    assert response.status_code == 200
    assert response.json()["restored"] == 1

    response = await client.post(f"/payments/backups/{backup_id}/restore")
    assert response.status_code == 409

    response = await client.post(f"/payments/backups/{uuid4()}/restore")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_backup_cleanup_keeps_fresh_backups(client: AsyncClient):
    response = await client.post("/payments/backups/cleanup")
    assert response.status_code == 200
    assert response.json() == {"removed": 0}


@pytest.mark.asyncio
async def test_manual_approve_by_number(client: AsyncClient, db):
    invoice = await ProformaFactory.create_async(db, fullnumber="CO-PROF 7/2025")
    payment = await PaymentFactory.create_async(db)
    await db.commit()

    response = await client.post(
        f"/payments/{payment.id}/approve",
        json={"fullnumber": "co-prof 7/2025", "user": "anna", "comment": "phone call"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["proforma_id"] == str(invoice.id)
    assert body["manual_user"] == "anna"
    assert body["manual_comment"] == "phone call"


@pytest.mark.asyncio
async def test_approve_errors(client: AsyncClient, db):
    payment = await PaymentFactory.create_async(db)
    await db.commit()

    response = await client.post(
        f"/payments/{payment.id}/approve", json={"fullnumber": "CO-PROF 404/2025"}
    )
    assert response.status_code == 400
    assert "not found" in response.json()["detail"]

    response = await client.post(f"/payments/{payment.id}/approve-auto")
    assert response.status_code == 400

    response = await client.post(f"/payments/{uuid4()}/reject", json={})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_reject_clear_and_refund(client: AsyncClient, db):
    invoice = await ProformaFactory.create_async(db)
    payment = await PaymentFactory.create_async(
        db,
        match_status=MatchStatus.NEEDS_REVIEW,
        status=MatchStatus.NEEDS_REVIEW,
        match_confidence=60,
        proforma_id=invoice.id,
        proforma_fullnumber=invoice.fullnumber,
    )
    await db.commit()

    rejected = (await client.post(f"/payments/{payment.id}/reject", json={"comment": "no"})).json()
    assert rejected["status"] == "unmatched"
    assert rejected["manual_status"] == "rejected"

    cleared = (await client.post(f"/payments/{payment.id}/clear", json={})).json()
    assert cleared["status"] == "needs_review"
    assert cleared["manual_status"] is None

    refunded = (await client.post(f"/payments/{payment.id}/refund", json={})).json()
    assert refunded["direction"] == "out"
    assert refunded["is_refund"] is True
    assert refunded["proforma_id"] is None


@pytest.mark.asyncio
async def test_bulk_approve_and_reset(client: AsyncClient, db):
    invoice = await ProformaFactory.create_async(db, total=Decimal("5000.00"))
    for confidence in (100, 60):
        await PaymentFactory.create_async(
            db,
            match_status=MatchStatus.NEEDS_REVIEW,
            status=MatchStatus.NEEDS_REVIEW,
            match_confidence=confidence,
            proforma_id=invoice.id,
            proforma_fullnumber=invoice.fullnumber,
        )
    await db.commit()

    response = await client.post("/payments/approve-auto/bulk", json={"min_confidence": 80})
    assert response.status_code == 200
    assert response.json()["approved"] == 1

    response = await client.post("/payments/reset-matches")
    assert response.json() == {"reset": 1}

    assert (await client.get("/payments/review")).json()["total"] == 0


@pytest.mark.asyncio
async def test_delete_hides_payment(client: AsyncClient, db):
    payment = await PaymentFactory.create_async(db)
    await db.commit()

    response = await client.delete(f"/payments/{payment.id}")
    assert response.status_code == 204

    assert (await client.get(f"/payments/{payment.id}")).status_code == 404
    assert (await client.delete(f"/payments/{payment.id}")).status_code == 404


@pytest.mark.asyncio
async def test_export_csv(client: AsyncClient, db):
    await PaymentFactory.create_async(db, description="Payment, with comma", payer_name="ACME")
    await db.commit()

    response = await client.get("/payments/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.splitlines()
    assert lines[0] == "date,description,amount,currency,payer,proforma,status"
    assert lines[1] == '2025-10-15,"Payment, with comma",100.00,PLN,ACME,,unmatched'


@pytest.mark.asyncio
async def test_import_too_large(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 10)

    response = await client.post("/payments/import", files=statement_upload(INCOMING))

    assert response.status_code == 413


@pytest.mark.asyncio
async def test_import_lookup_failure_returns_503(client: AsyncClient):
    with patch(
        "billing_recon.routers.payments.ingest_statement", new_callable=AsyncMock
    ) as mock_ingest:
        mock_ingest.side_effect = IngestionError("Invoice lookup failed: timeout")
        response = await client.post("/payments/import", files=statement_upload(INCOMING))

    assert response.status_code == 503
    assert "timeout" in response.json()["detail"]


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["database"] is True
    assert "X-Request-ID" in response.headers


class TestStorageDisabled:
    @pytest.fixture
    def disabled_client(self, client: AsyncClient):
        from billing_recon.main import app

        async def no_db():
            yield None

        app.dependency_overrides[get_db] = no_db
        yield client
        app.dependency_overrides.pop(get_db, None)

    @pytest.mark.asyncio
    async def test_import_reports_disabled(self, disabled_client: AsyncClient):
        response = await disabled_client.post(
            "/payments/import", files=statement_upload(INCOMING)
        )

        assert response.status_code == 503
        assert response.json() == {"status": "disabled"}

    @pytest.mark.asyncio
    async def test_other_endpoints_report_disabled(self, disabled_client: AsyncClient):
        response = await disabled_client.get("/payments")

        assert response.status_code == 503
        assert response.json() == {"status": "disabled"}

    @pytest.mark.asyncio
    async def test_health_reports_disabled(self, disabled_client: AsyncClient):
        response = await disabled_client.get("/health")

        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "disabled"
