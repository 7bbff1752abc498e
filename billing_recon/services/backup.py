"""Pre-import payment snapshots.

Before an import touches payments on a set of dates, the current rows are
copied into a payment_backups record so an operator can roll a bad import back.
Snapshots expire after settings.backup_retention_hours.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_recon.config import settings
from billing_recon.logger import get_logger
from billing_recon.models import BackupType, ManualStatus, Payment, PaymentBackup
from billing_recon.models.base import utcnow
from billing_recon.schemas.payments import PaymentSnapshot
from billing_recon.services.aggregates import safe_recompute_many

logger = get_logger(__name__)

RESTORABLE_FIELDS = tuple(name for name in PaymentSnapshot.model_fields if name != "id")


class BackupNotFoundError(Exception):
    """Backup does not exist or has been cleaned up."""


class BackupStateError(ValueError):
    """Backup cannot be restored in its current state."""


@dataclass
class RestoreResult:
    backup: PaymentBackup
    restored: int
    recreated: int


async def create_pre_import_backup(
    db: AsyncSession,
    *,
    import_id: UUID | None,
    operation_dates: Iterable[date],
) -> PaymentBackup | None:
    """Snapshot live payments on the given dates; returns None when there are none."""
    dates = sorted(set(operation_dates))
    if not dates:
        return None

    result = await db.execute(
        select(Payment)
        .where(Payment.operation_date.in_(dates))
        .where(Payment.deleted_at.is_(None))
    )
    payments = list(result.scalars().all())
    if not payments:
        return None

    backup = PaymentBackup(
        import_id=import_id,
        backup_type=BackupType.PRE_IMPORT,
        payments_count=len(payments),
        payments_data=[
            PaymentSnapshot.model_validate(payment).model_dump(mode="json") for payment in payments
        ],
        expires_at=utcnow() + timedelta(hours=settings.backup_retention_hours),
    )
    db.add(backup)
    await db.flush()
    logger.info(
        "Pre-import backup created",
        backup_id=str(backup.id),
        import_id=str(import_id) if import_id else None,
        payments=len(payments),
        dates=len(dates),
    )
    return backup


async def _get_backup(db: AsyncSession, backup_id: UUID) -> PaymentBackup:
    backup = await db.get(PaymentBackup, backup_id)
    if backup is None or backup.deleted_at is not None:
        raise BackupNotFoundError(f"Backup {backup_id} not found")
    return backup


async def restore_from_backup(db: AsyncSession, backup_id: UUID) -> RestoreResult:
    """Put every snapshotted payment back to its backed-up state.

    Proformas linked before or after the restore get their totals recomputed.
    """
    backup = await _get_backup(db, backup_id)
    if backup.backup_type == BackupType.RESTORED:
        raise BackupStateError(f"Backup {backup_id} was already restored")

    snapshots = [PaymentSnapshot.model_validate(row) for row in backup.payments_data or []]
    existing_result = await db.execute(
        select(Payment).where(Payment.id.in_([snapshot.id for snapshot in snapshots]))
    )
    existing = {payment.id: payment for payment in existing_result.scalars().all()}

    affected: list[UUID | None] = []
    restored = 0
    recreated = 0
    for snapshot in snapshots:
        payment = existing.get(snapshot.id)
        if payment is None:
            payment = Payment(id=snapshot.id)
            db.add(payment)
            recreated += 1
        elif payment.manual_status == ManualStatus.APPROVED:
            affected.append(payment.manual_proforma_id)

        for name in RESTORABLE_FIELDS:
            setattr(payment, name, getattr(snapshot, name))
        if snapshot.manual_status == ManualStatus.APPROVED:
            affected.append(snapshot.manual_proforma_id)
        restored += 1

    backup.backup_type = BackupType.RESTORED
    backup.restored_at = utcnow()
    await db.flush()
    logger.info(
        "Payments restored from backup",
        backup_id=str(backup.id),
        restored=restored,
        recreated=recreated,
    )

    await safe_recompute_many(db, affected)
    return RestoreResult(backup=backup, restored=restored, recreated=recreated)


async def cleanup_expired_backups(db: AsyncSession, *, now: datetime | None = None) -> int:
    """Soft-delete expired backups and drop their snapshot data."""
    now = now or utcnow()
    result = await db.execute(
        select(PaymentBackup)
        .where(PaymentBackup.deleted_at.is_(None))
        .where(PaymentBackup.expires_at < now)
    )
    backups = list(result.scalars().all())
    for backup in backups:
        backup.deleted_at = now
        backup.payments_data = None
    await db.flush()
    if backups:
        logger.info("Expired payment backups cleaned up", removed=len(backups))
    return len(backups)


async def list_backups(db: AsyncSession, *, limit: int = 10) -> list[PaymentBackup]:
    result = await db.execute(
        select(PaymentBackup)
        .where(PaymentBackup.deleted_at.is_(None))
        .order_by(PaymentBackup.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
