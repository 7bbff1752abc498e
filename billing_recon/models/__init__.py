"""SQLAlchemy models package."""

from billing_recon.models.payment import (
    PAYMENT_SOURCE_BANK_STATEMENT,
    ManualStatus,
    MatchOrigin,
    MatchStatus,
    Payment,
    PaymentDirection,
)
from billing_recon.models.payment_import import BackupType, PaymentBackup, PaymentImport
from billing_recon.models.proforma import Proforma, ProformaStatus

__all__ = [
    "PAYMENT_SOURCE_BANK_STATEMENT",
    "BackupType",
    "ManualStatus",
    "MatchOrigin",
    "MatchStatus",
    "Payment",
    "PaymentBackup",
    "PaymentDirection",
    "PaymentImport",
    "Proforma",
    "ProformaStatus",
]
