"""Derived paid totals for proformas.

Totals are always recomputed from scratch out of the approved manual links;
they are never adjusted incrementally, so any two recomputes that see the same
links produce the same numbers.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_recon.config import settings
from billing_recon.database import StorageDisabled, storage_disabled
from billing_recon.logger import get_logger, log_exception
from billing_recon.models import ManualStatus, Payment, Proforma
from billing_recon.services.proformas import ProformaNotFoundError

logger = get_logger(__name__)

CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class AggregateTotals:
    payments_total: Decimal
    payments_total_base: Decimal
    payments_count: int
    exchange_rate: Decimal
    ignored_currencies: dict[str, Decimal] = field(default_factory=dict)


def compute_totals(
    *,
    invoice_currency: str,
    exchange_rate: Decimal | None,
    links: Iterable[tuple[Decimal, str | None]],
    base_currency: str | None = None,
) -> AggregateTotals:
    """Sum approved payment amounts per currency and derive both totals.

    If any payment is in the invoice currency, that bucket is the paid total and
    the base total is converted with the invoice exchange rate. Otherwise a
    base-currency bucket is used and converted back. Other currencies are
    reported as ignored.
    """
    invoice_currency = invoice_currency.upper()
    base_currency = (base_currency or settings.base_currency).upper()
    if invoice_currency == base_currency or not exchange_rate:
        rate = Decimal("1")
    else:
        rate = exchange_rate

    buckets: dict[str, Decimal] = defaultdict(Decimal)
    count = 0
    for amount, currency in links:
        count += 1
        buckets[(currency or "").upper()] += amount

    if invoice_currency in buckets:
        paid = buckets.pop(invoice_currency)
        paid_base = paid * rate
    elif base_currency in buckets:
        paid_base = buckets.pop(base_currency)
        paid = paid_base / rate
    else:
        paid = Decimal("0")
        paid_base = Decimal("0")

    ignored = {currency or "unknown": total for currency, total in buckets.items() if total}
    return AggregateTotals(
        payments_total=_money(paid),
        payments_total_base=_money(paid_base),
        payments_count=count,
        exchange_rate=rate,
        ignored_currencies=ignored,
    )


async def recompute_aggregates(
    db: AsyncSession | None, proforma_id: UUID
) -> Proforma | StorageDisabled:
    """Replace the derived totals of one proforma from a fresh read of its links."""
    if db is None:
        return storage_disabled("recompute_aggregates")
    result = await db.execute(
        select(Proforma)
        .where(Proforma.id == proforma_id)
        .execution_options(populate_existing=True)
    )
    proforma = result.scalar_one_or_none()
    if proforma is None:
        raise ProformaNotFoundError(f"Proforma {proforma_id} not found")

    links = await db.execute(
        select(Payment.amount, Payment.currency)
        .where(Payment.manual_proforma_id == proforma_id)
        .where(Payment.manual_status == ManualStatus.APPROVED)
        .where(Payment.deleted_at.is_(None))
    )
    if not proforma.exchange_rate and proforma.currency.upper() != settings.base_currency.upper():
        logger.warning(
            "Proforma has no exchange rate - using 1",
            proforma_id=str(proforma.id),
            currency=proforma.currency,
        )

    totals = compute_totals(
        invoice_currency=proforma.currency,
        exchange_rate=proforma.exchange_rate,
        links=links.all(),
    )
    if totals.ignored_currencies:
        logger.warning(
            "Approved payments in foreign currency ignored in totals",
            proforma_id=str(proforma.id),
            ignored={k: str(v) for k, v in totals.ignored_currencies.items()},
        )

    proforma.payments_total = totals.payments_total
    proforma.payments_total_base = totals.payments_total_base
    proforma.payments_count = totals.payments_count
    proforma.payments_currency_exchange = totals.exchange_rate
    await db.flush()

    if proforma.payments_total > proforma.total:
        logger.warning(
            "Proforma overpaid",
            proforma_id=str(proforma.id),
            total=str(proforma.total),
            payments_total=str(proforma.payments_total),
        )
    logger.info(
        "Proforma totals recomputed",
        proforma_id=str(proforma.id),
        payments_total=str(proforma.payments_total),
        payments_total_base=str(proforma.payments_total_base),
        payments_count=proforma.payments_count,
    )
    return proforma


async def safe_recompute_many(db: AsyncSession, proforma_ids: Iterable[UUID | None]) -> list[UUID]:
    """Recompute every distinct proforma; failures are logged, never raised.

    Returns the ids whose recompute failed. The manual change that triggered the
    recompute stays in place either way: each recompute runs in its own
    savepoint, so a failed flush rolls back only that proforma's totals and the
    session can still commit.
    """
    failed: list[UUID] = []
    seen: set[UUID] = set()
    for proforma_id in proforma_ids:
        if proforma_id is None or proforma_id in seen:
            continue
        seen.add(proforma_id)
        try:
            async with db.begin_nested():
                await recompute_aggregates(db, proforma_id)
        except Exception as e:
            log_exception(
                logger,
                e,
                "Aggregate recompute failed",
                proforma_id=str(proforma_id),
            )
            failed.append(proforma_id)
    return failed
