"""Batch lookup structures for the matching engine.

The context is built once per ingestion batch with a bounded number of lookup
calls (by invoice number, by buyer name, open invoices in a time window), so
matching cost does not grow into one query per transaction.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Protocol

from billing_recon.logger import get_logger
from billing_recon.models import Payment, Proforma
from billing_recon.services.normalize import extract_invoice_number, normalize_invoice_number

logger = get_logger(__name__)

DEFAULT_WINDOW_DAYS = 183
DEFAULT_OPEN_LIMIT = 1000
PAID_EPSILON = Decimal("0.01")


class InvoiceLookup(Protocol):
    """Read access to invoices used to build a matching context."""

    async def find_by_fullnumbers(self, fullnumbers: Sequence[str]) -> list[Proforma]: ...

    async def find_by_buyer_names(self, names: Sequence[str]) -> list[Proforma]: ...

    async def find_open(self, *, since: date, limit: int) -> list[Proforma]: ...


class InvoiceLookupError(Exception):
    """Invoice source failed while building a matching context."""


@dataclass
class MatchingContext:
    """Read-only lookup tables shared by every match() call in a batch."""

    by_number: dict[str, Proforma] = field(default_factory=dict)
    by_buyer: dict[str, list[Proforma]] = field(default_factory=dict)
    open_invoices: list[Proforma] = field(default_factory=list)
    lookup_calls: int = 0

    @classmethod
    def empty(cls) -> MatchingContext:
        return cls()


def payment_invoice_hint(payment: Payment) -> str | None:
    """Invoice number for a payment: the stored hint, or re-extracted from its title."""
    if payment.invoice_number_hint:
        return normalize_invoice_number(payment.invoice_number_hint)
    return extract_invoice_number(payment.description)


def is_settled(invoice: Proforma, epsilon: Decimal = PAID_EPSILON) -> bool:
    return invoice.remaining <= epsilon


def _open_only(invoices: Iterable[Proforma], epsilon: Decimal) -> list[Proforma]:
    return [invoice for invoice in invoices if not is_settled(invoice, epsilon)]


async def build_matching_context(
    payments: Sequence[Payment],
    lookup: InvoiceLookup,
    *,
    reference_date: date | None = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
    open_limit: int = DEFAULT_OPEN_LIMIT,
    paid_epsilon: Decimal = PAID_EPSILON,
) -> MatchingContext:
    """Collect candidate invoices for a batch of pending payments.

    At most three lookup calls are made, independent of batch size. Invoices
    already paid (remaining within epsilon) are left out of every structure.
    Lookup failures propagate as InvoiceLookupError.
    """
    context = MatchingContext()
    if not payments:
        return context

    numbers = sorted({hint for p in payments if (hint := payment_invoice_hint(p))})
    names = sorted({p.payer_normalized_name for p in payments if p.payer_normalized_name})
    reference = reference_date or max(p.operation_date for p in payments)
    since = reference - timedelta(days=window_days)

    try:
        if numbers:
            context.lookup_calls += 1
            for invoice in _open_only(await lookup.find_by_fullnumbers(numbers), paid_epsilon):
                context.by_number[normalize_invoice_number(invoice.fullnumber)] = invoice

        if names:
            context.lookup_calls += 1
            for invoice in _open_only(await lookup.find_by_buyer_names(names), paid_epsilon):
                if invoice.buyer_normalized_name:
                    context.by_buyer.setdefault(invoice.buyer_normalized_name, []).append(invoice)

        context.lookup_calls += 1
        context.open_invoices = _open_only(
            await lookup.find_open(since=since, limit=open_limit), paid_epsilon
        )
    except InvoiceLookupError:
        raise
    except Exception as e:
        logger.error(
            "Invoice lookup failed while building matching context",
            payments=len(payments),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise InvoiceLookupError(str(e)) from e

    logger.debug(
        "Matching context built",
        payments=len(payments),
        numbers=len(numbers),
        names=len(names),
        by_number=len(context.by_number),
        by_buyer=len(context.by_buyer),
        open_invoices=len(context.open_invoices),
        lookup_calls=context.lookup_calls,
    )
    return context
