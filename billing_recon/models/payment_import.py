"""Statement import history and pre-import backup models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from billing_recon.database import Base, JSONType
from billing_recon.models.base import SoftDeleteMixin, TimestampMixin, UUIDMixin, utcnow


class PaymentImport(UUIDMixin, TimestampMixin, Base):
    """One uploaded statement file and its ingestion counters."""

    __tablename__ = "payment_imports"

    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    user_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    matched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    needs_review: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unmatched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class BackupType(str, Enum):
    PRE_IMPORT = "pre_import"
    RESTORED = "restored"


class PaymentBackup(UUIDMixin, TimestampMixin, SoftDeleteMixin, Base):
    """Snapshot of payments taken before an import touched them."""

    __tablename__ = "payment_backups"

    import_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payment_imports.id", ondelete="SET NULL"),
        nullable=True,
    )
    backup_type: Mapped[BackupType] = mapped_column(
        SQLEnum(BackupType, name="payment_backup_type"),
        nullable=False,
        default=BackupType.PRE_IMPORT,
    )
    payments_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payments_data: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    restored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
