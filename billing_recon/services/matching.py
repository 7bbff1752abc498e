"""Payment-to-invoice matching engine.

Matching is a pure function of a payment and a prebuilt MatchingContext. It
only proposes candidates: the best outcome it can produce is NEEDS_REVIEW,
confirmation is always a manual step.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any
from uuid import UUID

import yaml

from billing_recon.logger import get_logger
from billing_recon.models import MatchStatus, Payment, Proforma
from billing_recon.services.matching_context import (
    DEFAULT_OPEN_LIMIT,
    DEFAULT_WINDOW_DAYS,
    PAID_EPSILON,
    MatchingContext,
    payment_invoice_hint,
)

logger = get_logger(__name__)


class MatchRule(str, Enum):
    """Matching rule; the value is the reason code stored with the candidate."""

    NUMBER_EXACT = "by_number"
    NUMBER_AMOUNT_DIFFERS = "by_number_amount_differs"
    NUMBER_NOT_FOUND = "number_not_found"
    NAME_REMAINING = "by_name_remaining"
    NAME_INSTALLMENT = "by_name_installment"
    NAME_ONLY = "by_name"
    AMOUNT_REMAINING = "by_amount_remaining"
    AMOUNT_INSTALLMENT = "by_amount_installment"


SCORE_TABLE: Mapping[MatchRule, int] = MappingProxyType(
    {
        MatchRule.NUMBER_EXACT: 100,
        MatchRule.NUMBER_AMOUNT_DIFFERS: 80,
        MatchRule.NUMBER_NOT_FOUND: 30,
        MatchRule.NAME_REMAINING: 80,
        MatchRule.NAME_INSTALLMENT: 70,
        MatchRule.NAME_ONLY: 50,
        MatchRule.AMOUNT_REMAINING: 60,
        MatchRule.AMOUNT_INSTALLMENT: 55,
    }
)

REASON_TEXT: Mapping[MatchRule, str] = MappingProxyType(
    {
        MatchRule.NUMBER_EXACT: "Invoice number in title, amount matches remaining",
        MatchRule.NUMBER_AMOUNT_DIFFERS: "Invoice number in title, amount differs",
        MatchRule.NUMBER_NOT_FOUND: "Invoice number in title not found among open invoices",
        MatchRule.NAME_REMAINING: "Payer name matches buyer, amount matches remaining",
        MatchRule.NAME_INSTALLMENT: "Payer name matches buyer, amount matches half of total",
        MatchRule.NAME_ONLY: "Payer name matches buyer",
        MatchRule.AMOUNT_REMAINING: "Amount and currency match remaining",
        MatchRule.AMOUNT_INSTALLMENT: "Amount and currency match half of total",
    }
)

NO_CANDIDATES_REASON = "No matching invoice found"
MANUAL_REASON = "confirmed manually"


@dataclass(frozen=True)
class ReconciliationConfig:
    """Runtime configuration for payment matching."""

    amount_tolerance: Decimal
    paid_epsilon: Decimal
    window_days: int
    open_limit: int
    metadata_candidates: int
    scores: Mapping[MatchRule, int]

    def score(self, rule: MatchRule) -> int:
        return self.scores[rule]


DEFAULT_CONFIG = ReconciliationConfig(
    amount_tolerance=Decimal("5.00"),
    paid_epsilon=PAID_EPSILON,
    window_days=DEFAULT_WINDOW_DAYS,
    open_limit=DEFAULT_OPEN_LIMIT,
    metadata_candidates=5,
    scores=SCORE_TABLE,
)

_config_cache: ReconciliationConfig | None = None


def _config_from_yaml(config: ReconciliationConfig, raw: Mapping[str, Any]) -> ReconciliationConfig:
    matching = raw.get("matching", {}) or {}
    scores = dict(config.scores)
    for code, value in (raw.get("scores", {}) or {}).items():
        try:
            scores[MatchRule(code)] = int(value)
        except ValueError:
            logger.warning("Unknown score rule in reconciliation config", rule=code)

    return ReconciliationConfig(
        amount_tolerance=Decimal(str(matching.get("amount_tolerance", config.amount_tolerance))),
        paid_epsilon=Decimal(str(matching.get("paid_epsilon", config.paid_epsilon))),
        window_days=int(matching.get("window_days", config.window_days)),
        open_limit=int(matching.get("open_limit", config.open_limit)),
        metadata_candidates=int(matching.get("metadata_candidates", config.metadata_candidates)),
        scores=MappingProxyType(scores),
    )


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "reconciliation.yaml"


def _config_path() -> Path:
    # RECONCILIATION_CONFIG_PATH points installed (non-editable) copies at a file
    return Path(os.getenv("RECONCILIATION_CONFIG_PATH") or DEFAULT_CONFIG_PATH)


def load_reconciliation_config(force_reload: bool = False) -> ReconciliationConfig:
    """Load matching configuration from YAML if available, then env overrides.

    Caches the result to avoid repeated disk I/O.
    """
    global _config_cache
    if _config_cache is not None and not force_reload:
        return _config_cache

    config = DEFAULT_CONFIG
    config_path = _config_path()

    if not config_path.exists():
        logger.info(
            "Reconciliation config file not found - using defaults",
            config_path=str(config_path),
        )
    else:
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
            config = _config_from_yaml(config, raw)
        except (OSError, yaml.YAMLError, ValueError, TypeError, InvalidOperation) as e:
            logger.warning(
                "Failed to load reconciliation config - using defaults",
                config_path=str(config_path),
                error=str(e),
                error_type=type(e).__name__,
            )

    tolerance_env = os.getenv("RECONCILIATION_AMOUNT_TOLERANCE")
    window_env = os.getenv("RECONCILIATION_WINDOW_DAYS")
    if tolerance_env:
        config = replace(config, amount_tolerance=Decimal(tolerance_env))
    if window_env:
        config = replace(config, window_days=int(window_env))

    _config_cache = config
    return config


@dataclass
class MatchCandidate:
    """Candidate invoice for a payment."""

    rule: MatchRule | None
    score: int
    fullnumber: str
    invoice_id: UUID | None = None
    amount_diff: Decimal | None = None
    remaining: Decimal | None = None
    currency: str | None = None

    @property
    def reason(self) -> str:
        # rule is None for a link confirmed by an operator
        return REASON_TEXT[self.rule] if self.rule else MANUAL_REASON

    def sort_key(self) -> tuple[int, Decimal, str]:
        diff = self.amount_diff if self.amount_diff is not None else Decimal("Infinity")
        return (-self.score, diff, self.fullnumber)

    def as_metadata(self) -> dict[str, Any]:
        return {
            "proforma_id": str(self.invoice_id) if self.invoice_id else None,
            "fullnumber": self.fullnumber,
            "score": self.score,
            "reason": self.rule.value if self.rule else "manual",
            "amount_diff": str(self.amount_diff) if self.amount_diff is not None else None,
            "remaining": str(self.remaining) if self.remaining is not None else None,
            "currency": self.currency,
        }


@dataclass
class MatchOutcome:
    status: MatchStatus
    confidence: int
    reason: str
    candidate_invoice_id: UUID | None = None
    candidate_fullnumber: str | None = None
    candidates: list[MatchCandidate] = field(default_factory=list)

    @property
    def best(self) -> MatchCandidate | None:
        return self.candidates[0] if self.candidates else None


def _installment_amount(invoice: Proforma) -> Decimal:
    return invoice.total / 2


class _CandidateSet:
    """Keeps the best-scoring candidate per invoice (or per unresolved hint)."""

    def __init__(self, config: ReconciliationConfig) -> None:
        self.config = config
        self._items: dict[str, MatchCandidate] = {}

    def offer_invoice(
        self,
        invoice: Proforma,
        rule: MatchRule,
        amount_diff: Decimal,
    ) -> None:
        candidate = MatchCandidate(
            rule=rule,
            score=self.config.score(rule),
            fullnumber=invoice.fullnumber,
            invoice_id=invoice.id,
            amount_diff=amount_diff,
            remaining=invoice.remaining,
            currency=invoice.currency,
        )
        self._offer(f"invoice:{invoice.id}", candidate)

    def offer_missing_number(self, hint: str) -> None:
        candidate = MatchCandidate(
            rule=MatchRule.NUMBER_NOT_FOUND,
            score=self.config.score(MatchRule.NUMBER_NOT_FOUND),
            fullnumber=hint,
        )
        self._offer(f"hint:{hint}", candidate)

    def _offer(self, key: str, candidate: MatchCandidate) -> None:
        current = self._items.get(key)
        if current is None or candidate.sort_key() < current.sort_key():
            self._items[key] = candidate

    def ranked(self) -> list[MatchCandidate]:
        return sorted(self._items.values(), key=MatchCandidate.sort_key)


def _score_number(
    candidates: _CandidateSet,
    payment: Payment,
    context: MatchingContext,
    tolerance: Decimal,
) -> None:
    hint = payment_invoice_hint(payment)
    if not hint:
        return
    invoice = context.by_number.get(hint)
    if invoice is None:
        candidates.offer_missing_number(hint)
        return
    diff = abs(payment.amount - invoice.remaining)
    rule = MatchRule.NUMBER_EXACT if diff <= tolerance else MatchRule.NUMBER_AMOUNT_DIFFERS
    candidates.offer_invoice(invoice, rule, diff)


def _score_name(
    candidates: _CandidateSet,
    payment: Payment,
    context: MatchingContext,
    tolerance: Decimal,
) -> None:
    if not payment.payer_normalized_name:
        return
    for invoice in context.by_buyer.get(payment.payer_normalized_name, []):
        remaining_diff = abs(payment.amount - invoice.remaining)
        installment_diff = abs(payment.amount - _installment_amount(invoice))
        candidates.offer_invoice(invoice, MatchRule.NAME_ONLY, remaining_diff)
        if remaining_diff <= tolerance:
            candidates.offer_invoice(invoice, MatchRule.NAME_REMAINING, remaining_diff)
        if installment_diff <= tolerance:
            candidates.offer_invoice(invoice, MatchRule.NAME_INSTALLMENT, installment_diff)


def _score_amount(
    candidates: _CandidateSet,
    payment: Payment,
    context: MatchingContext,
    tolerance: Decimal,
) -> None:
    # Amount-only matching never crosses currencies; an unknown currency never matches.
    if not payment.currency:
        return
    currency = payment.currency.upper()
    for invoice in context.open_invoices:
        if (invoice.currency or "").upper() != currency:
            continue
        remaining_diff = abs(payment.amount - invoice.remaining)
        installment_diff = abs(payment.amount - _installment_amount(invoice))
        if remaining_diff <= tolerance:
            candidates.offer_invoice(invoice, MatchRule.AMOUNT_REMAINING, remaining_diff)
        if installment_diff <= tolerance:
            candidates.offer_invoice(invoice, MatchRule.AMOUNT_INSTALLMENT, installment_diff)


def match(
    payment: Payment,
    context: MatchingContext,
    config: ReconciliationConfig | None = None,
) -> list[MatchCandidate]:
    """Rank candidate invoices for a payment, best first.

    Number and name rules ignore currency; amount-only rules require the payment
    currency to equal the invoice currency. When several rules hit the same
    invoice the highest score is kept.
    """
    config = config or load_reconciliation_config()
    candidates = _CandidateSet(config)
    tolerance = config.amount_tolerance

    _score_number(candidates, payment, context, tolerance)
    _score_name(candidates, payment, context, tolerance)
    _score_amount(candidates, payment, context, tolerance)
    return candidates.ranked()


def decide_outcome(candidates: list[MatchCandidate]) -> MatchOutcome:
    """NEEDS_REVIEW when there is any candidate, otherwise UNMATCHED; never MATCHED."""
    if not candidates:
        return MatchOutcome(
            status=MatchStatus.UNMATCHED,
            confidence=0,
            reason=NO_CANDIDATES_REASON,
        )
    best = candidates[0]
    return MatchOutcome(
        status=MatchStatus.NEEDS_REVIEW,
        confidence=best.score,
        reason=best.reason,
        candidate_invoice_id=best.invoice_id,
        candidate_fullnumber=best.fullnumber,
        candidates=candidates,
    )


def apply_matching(
    payments: Iterable[Payment],
    context: MatchingContext,
    config: ReconciliationConfig | None = None,
) -> list[tuple[Payment, MatchOutcome]]:
    """Match every payment of a batch against one shared context."""
    config = config or load_reconciliation_config()
    return [(payment, decide_outcome(match(payment, context, config))) for payment in payments]


def build_match_metadata(
    outcome: MatchOutcome,
    config: ReconciliationConfig | None = None,
) -> dict[str, Any]:
    config = config or load_reconciliation_config()
    best = outcome.best
    return {
        "amount_diff": str(best.amount_diff) if best and best.amount_diff is not None else None,
        "remaining": str(best.remaining) if best and best.remaining is not None else None,
        "candidate_count": len(outcome.candidates),
        "candidates": [c.as_metadata() for c in outcome.candidates[: config.metadata_candidates]],
    }
