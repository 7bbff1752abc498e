"""Proforma sync API router."""

from uuid import UUID

from fastapi import APIRouter

from billing_recon.deps import DbSession
from billing_recon.schemas import ProformaResponse, ProformaSyncRequest
from billing_recon.services.aggregates import recompute_aggregates
from billing_recon.services.proformas import ProformaNotFoundError, ProformaRepository
from billing_recon.utils import raise_bad_request, raise_not_found

router = APIRouter(prefix="/proformas", tags=["proformas"])


@router.post("", response_model=ProformaResponse)
async def sync_proforma(payload: ProformaSyncRequest, db: DbSession) -> ProformaResponse:
    """Create or update a proforma by its number; paid totals are not accepted here."""
    try:
        proforma = await ProformaRepository(db).upsert(
            fullnumber=payload.fullnumber,
            currency=payload.currency,
            total=payload.total,
            issued_at=payload.issued_at,
            buyer_name=payload.buyer_name,
            exchange_rate=payload.exchange_rate,
            status=payload.status,
        )
    except ValueError as exc:
        raise_bad_request(str(exc), cause=exc)
    await db.commit()
    return ProformaResponse.model_validate(proforma)


@router.get("/{proforma_id}", response_model=ProformaResponse)
async def get_proforma(proforma_id: UUID, db: DbSession) -> ProformaResponse:
    try:
        proforma = await ProformaRepository(db).get(proforma_id)
    except ProformaNotFoundError as exc:
        raise_not_found("Proforma", cause=exc)
    return ProformaResponse.model_validate(proforma)


@router.post("/{proforma_id}/recompute", response_model=ProformaResponse)
async def recompute_proforma(proforma_id: UUID, db: DbSession) -> ProformaResponse:
    try:
        proforma = await recompute_aggregates(db, proforma_id)
    except ProformaNotFoundError as exc:
        raise_not_found("Proforma", cause=exc)
    await db.commit()
    return ProformaResponse.model_validate(proforma)
