"""Payment reconciliation API router."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from billing_recon.config import settings
from billing_recon.database import get_db
from billing_recon.deps import DbSession
from billing_recon.logger import get_logger
from billing_recon.models import Payment
from billing_recon.schemas import (
    ApproveMatchRequest,
    BackupResponse,
    BulkApproveRequest,
    BulkApproveResponse,
    CandidateResponse,
    CleanupResponse,
    DisabledResponse,
    IngestResponse,
    ListResponse,
    ManualActionRequest,
    PaymentDetailsResponse,
    PaymentImportResponse,
    PaymentListResponse,
    PaymentResponse,
    ResetMatchesResponse,
    RestoreResponse,
)
from billing_recon.services import review_queue
from billing_recon.services.backup import (
    BackupNotFoundError,
    BackupStateError,
    cleanup_expired_backups,
    list_backups,
    restore_from_backup,
)
from billing_recon.services.ingestion import IngestionError, ingest_statement
from billing_recon.services.ledger import (
    PaymentNotFoundError,
    ResolvedPayment,
    resolve_payment,
    soft_delete_payment,
)
from billing_recon.services.listing import export_csv, list_payments
from billing_recon.services.matching import MatchCandidate
from billing_recon.services.review_queue import ReviewValidationError
from billing_recon.utils import (
    raise_bad_request,
    raise_conflict,
    raise_not_found,
    raise_service_unavailable,
    raise_too_large,
)

router = APIRouter(prefix="/payments", tags=["payments"])
logger = get_logger(__name__)


def _build_payment_response(
    payment: Payment, resolved: ResolvedPayment | None = None
) -> PaymentResponse:
    resolved = resolved or resolve_payment(payment)
    return PaymentResponse(
        id=payment.id,
        operation_date=payment.operation_date,
        description=payment.description,
        account=payment.account,
        category=payment.category,
        amount=payment.amount,
        currency=payment.currency,
        direction=payment.direction,
        payer_name=payment.payer_name,
        invoice_number_hint=payment.invoice_number_hint,
        income_category=payment.income_category,
        is_refund=payment.is_refund,
        status=resolved.status,
        origin=resolved.origin,
        proforma_id=resolved.proforma_id,
        proforma_fullnumber=resolved.proforma_fullnumber,
        confidence=resolved.confidence,
        reason=resolved.reason,
        match_status=payment.match_status,
        manual_status=payment.manual_status,
        manual_comment=payment.manual_comment,
        manual_user=payment.manual_user,
        manual_updated_at=payment.manual_updated_at,
        match_metadata=payment.match_metadata,
        created_at=payment.created_at,
    )


def _build_candidate_response(candidate: MatchCandidate) -> CandidateResponse:
    return CandidateResponse(
        proforma_id=candidate.invoice_id,
        fullnumber=candidate.fullnumber,
        score=candidate.score,
        reason=candidate.reason,
        amount_diff=candidate.amount_diff,
        remaining=candidate.remaining,
        currency=candidate.currency,
    )


async def _commit_payment_action(db: AsyncSession, action) -> PaymentResponse:
    """Await a manual review action, translating service errors to HTTP errors."""
    try:
        payment = await action
    except PaymentNotFoundError as exc:
        raise_not_found("Payment", cause=exc)
    except ReviewValidationError as exc:
        raise_bad_request(str(exc), cause=exc)
    await db.commit()
    return _build_payment_response(payment)


# --- Import & listing ---


@router.post(
    "/import",
    response_model=IngestResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": DisabledResponse}},
)
async def import_statement(
    db: Annotated[AsyncSession | None, Depends(get_db)],
    file: UploadFile = File(...),
    uploaded_by: str | None = Form(default=None),
) -> IngestResponse | JSONResponse:
    """Upload a bank or card statement export and run automatic matching."""
    content = await file.read()
    if len(content) > settings.max_upload_bytes:
        raise_too_large(settings.max_upload_bytes)

    try:
        result = await ingest_statement(
            db, content, filename=file.filename, uploaded_by=uploaded_by
        )
    except IngestionError as exc:
        await db.rollback()
        raise_service_unavailable(str(exc), cause=exc)

    if result.disabled:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=DisabledResponse().model_dump(),
        )
    await db.commit()
    return IngestResponse(
        processed=result.processed,
        matched=result.matched,
        needs_review=result.needs_review,
        unmatched=result.unmatched,
        skipped=result.skipped,
        ignored=result.ignored,
        import_id=result.import_id,
        backup_id=result.backup_id,
    )


@router.get("", response_model=PaymentListResponse)
async def get_payments(
    db: DbSession,
    limit: int = Query(default=500, ge=1, le=5000),
) -> PaymentListResponse:
    listing = await list_payments(db, limit=limit)
    return PaymentListResponse(
        items=[_build_payment_response(p, resolved) for p, resolved in listing.payments],
        total=listing.total,
        imports=[PaymentImportResponse.model_validate(i) for i in listing.imports],
    )


@router.get("/review", response_model=ListResponse[PaymentResponse])
async def get_review_queue(
    db: DbSession,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> ListResponse[PaymentResponse]:
    payments = await review_queue.get_pending_items(db, limit=limit, offset=offset)
    items = [_build_payment_response(p) for p in payments]
    return ListResponse[PaymentResponse](items=items, total=len(items))


@router.get("/export")
async def export_payments(db: DbSession) -> Response:
    content = await export_csv(db)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="payments.csv"'},
    )


# --- Batch operations ---


@router.post("/reset-matches", response_model=ResetMatchesResponse)
async def reset_matches(db: DbSession) -> ResetMatchesResponse:
    reset = await review_queue.reset_matches(db)
    await db.commit()
    return ResetMatchesResponse(reset=reset)


@router.post("/approve-auto/bulk", response_model=BulkApproveResponse)
async def bulk_approve(
    db: DbSession,
    payload: BulkApproveRequest | None = None,
) -> BulkApproveResponse:
    payload = payload or BulkApproveRequest()
    result = await review_queue.bulk_approve_auto_matches(
        db, user=payload.user, min_confidence=payload.min_confidence
    )
    await db.commit()
    return BulkApproveResponse(
        approved=len(result.approved),
        skipped=result.skipped,
        payment_ids=[p.id for p in result.approved],
    )


# --- Backups ---


@router.get("/backups", response_model=list[BackupResponse])
async def get_backups(
    db: DbSession,
    limit: int = Query(default=10, ge=1, le=100),
) -> list[BackupResponse]:
    backups = await list_backups(db, limit=limit)
    return [BackupResponse.model_validate(b) for b in backups]


@router.post("/backups/cleanup", response_model=CleanupResponse)
async def cleanup_backups(db: DbSession) -> CleanupResponse:
    removed = await cleanup_expired_backups(db)
    await db.commit()
    return CleanupResponse(removed=removed)


@router.post("/backups/{backup_id}/restore", response_model=RestoreResponse)
async def restore_backup(backup_id: UUID, db: DbSession) -> RestoreResponse:
    try:
        result = await restore_from_backup(db, backup_id)
    except BackupNotFoundError as exc:
        raise_not_found("Backup", cause=exc)
    except BackupStateError as exc:
        raise_conflict(str(exc), cause=exc)
    await db.commit()
    return RestoreResponse(
        backup_id=result.backup.id,
        restored=result.restored,
        recreated=result.recreated,
    )


# --- Single payment ---


@router.get("/{payment_id}", response_model=PaymentDetailsResponse)
async def get_payment_details(payment_id: UUID, db: DbSession) -> PaymentDetailsResponse:
    try:
        details = await review_queue.get_payment_details(db, payment_id)
    except PaymentNotFoundError as exc:
        raise_not_found("Payment", cause=exc)
    return PaymentDetailsResponse(
        payment=_build_payment_response(details.payment, details.resolved),
        candidates=[_build_candidate_response(c) for c in details.candidates],
    )


@router.post("/{payment_id}/approve", response_model=PaymentResponse)
async def approve_payment(
    payment_id: UUID,
    payload: ApproveMatchRequest,
    db: DbSession,
) -> PaymentResponse:
    return await _commit_payment_action(
        db,
        review_queue.approve_match(
            db,
            payment_id,
            proforma_id=payload.proforma_id,
            fullnumber=payload.fullnumber,
            user=payload.user,
            comment=payload.comment,
        ),
    )


@router.post("/{payment_id}/approve-auto", response_model=PaymentResponse)
async def approve_auto_payment(
    payment_id: UUID,
    db: DbSession,
    payload: ManualActionRequest | None = None,
) -> PaymentResponse:
    user = payload.user if payload else None
    return await _commit_payment_action(
        db, review_queue.approve_auto_match(db, payment_id, user=user)
    )


@router.post("/{payment_id}/reject", response_model=PaymentResponse)
async def reject_payment(
    payment_id: UUID,
    payload: ManualActionRequest,
    db: DbSession,
) -> PaymentResponse:
    return await _commit_payment_action(
        db,
        review_queue.reject_match(db, payment_id, user=payload.user, comment=payload.comment),
    )


@router.post("/{payment_id}/clear", response_model=PaymentResponse)
async def clear_payment(
    payment_id: UUID,
    payload: ManualActionRequest,
    db: DbSession,
) -> PaymentResponse:
    return await _commit_payment_action(
        db,
        review_queue.clear_match(db, payment_id, user=payload.user, comment=payload.comment),
    )


@router.post("/{payment_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    payment_id: UUID,
    payload: ManualActionRequest,
    db: DbSession,
) -> PaymentResponse:
    return await _commit_payment_action(
        db,
        review_queue.mark_refund(db, payment_id, user=payload.user, comment=payload.comment),
    )


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payment(payment_id: UUID, db: DbSession) -> Response:
    try:
        await soft_delete_payment(db, payment_id)
    except PaymentNotFoundError as exc:
        raise_not_found("Payment", cause=exc)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
