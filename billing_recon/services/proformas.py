"""Proforma storage and lookup."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_recon.logger import get_logger
from billing_recon.models import Proforma, ProformaStatus
from billing_recon.services.normalize import normalize_invoice_number, normalize_name

logger = get_logger(__name__)


class ProformaNotFoundError(Exception):
    """Requested proforma does not exist."""


class ProformaRepository:
    """SQLAlchemy-backed invoice lookup used by the matching context builder.

    Only ACTIVE proformas are offered as match candidates.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_by_fullnumbers(self, fullnumbers: Sequence[str]) -> list[Proforma]:
        if not fullnumbers:
            return []
        result = await self.db.execute(
            select(Proforma)
            .where(Proforma.fullnumber.in_(list(fullnumbers)))
            .where(Proforma.status == ProformaStatus.ACTIVE)
        )
        return list(result.scalars().all())

    async def find_by_buyer_names(self, names: Sequence[str]) -> list[Proforma]:
        if not names:
            return []
        result = await self.db.execute(
            select(Proforma)
            .where(Proforma.buyer_normalized_name.in_(list(names)))
            .where(Proforma.status == ProformaStatus.ACTIVE)
        )
        return list(result.scalars().all())

    async def find_open(self, *, since: date, limit: int) -> list[Proforma]:
        result = await self.db.execute(
            select(Proforma)
            .where(Proforma.status == ProformaStatus.ACTIVE)
            .where(Proforma.issued_at >= since)
            .where(Proforma.payments_total < Proforma.total)
            .order_by(Proforma.issued_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get(self, proforma_id: UUID) -> Proforma:
        proforma = await self.db.get(Proforma, proforma_id)
        if proforma is None:
            raise ProformaNotFoundError(f"Proforma {proforma_id} not found")
        return proforma

    async def get_by_fullnumber(self, fullnumber: str) -> Proforma | None:
        canonical = normalize_invoice_number(fullnumber)
        if not canonical:
            return None
        result = await self.db.execute(select(Proforma).where(Proforma.fullnumber == canonical))
        return result.scalar_one_or_none()

    async def upsert(
        self,
        *,
        fullnumber: str,
        currency: str,
        total: Decimal,
        issued_at: date,
        buyer_name: str | None = None,
        exchange_rate: Decimal | None = None,
        status: ProformaStatus = ProformaStatus.ACTIVE,
    ) -> Proforma:
        """Create or update a proforma synced from the accounting system.

        Derived payment totals are left untouched; they belong to the
        aggregate calculator.
        """
        canonical = normalize_invoice_number(fullnumber)
        if not canonical:
            raise ValueError("Proforma number is required")

        proforma = await self.get_by_fullnumber(canonical)
        created = proforma is None
        if proforma is None:
            proforma = Proforma(
                fullnumber=canonical,
                payments_total=Decimal("0"),
                payments_total_base=Decimal("0"),
                payments_count=0,
            )
            self.db.add(proforma)

        proforma.currency = currency.upper()
        proforma.total = total
        proforma.issued_at = issued_at
        proforma.buyer_name = buyer_name
        proforma.buyer_normalized_name = normalize_name(buyer_name)
        proforma.exchange_rate = exchange_rate
        proforma.status = status
        await self.db.flush()

        logger.info(
            "Proforma synced",
            proforma_id=str(proforma.id),
            fullnumber=canonical,
            created=created,
            status=status.value,
        )
        return proforma
