"""Services package."""

from billing_recon.services.aggregates import recompute_aggregates, safe_recompute_many
from billing_recon.services.backup import (
    BackupNotFoundError,
    BackupStateError,
    cleanup_expired_backups,
    create_pre_import_backup,
    restore_from_backup,
)
from billing_recon.services.ingestion import (
    IngestionError,
    IngestResult,
    ingest_statement,
    ingest_transactions,
)
from billing_recon.services.ledger import PaymentLedger, PaymentNotFoundError, resolve_payment
from billing_recon.services.matching import (
    MatchCandidate,
    MatchOutcome,
    MatchRule,
    ReconciliationConfig,
    load_reconciliation_config,
    match,
)
from billing_recon.services.matching_context import (
    InvoiceLookupError,
    MatchingContext,
    build_matching_context,
)
from billing_recon.services.proformas import ProformaNotFoundError, ProformaRepository
from billing_recon.services.review_queue import (
    ReviewValidationError,
    approve_match,
    clear_match,
    mark_refund,
)
from billing_recon.services.statement_parser import StatementRecord, parse_statement

__all__ = [
    "BackupNotFoundError",
    "BackupStateError",
    "IngestResult",
    "IngestionError",
    "InvoiceLookupError",
    "MatchCandidate",
    "MatchOutcome",
    "MatchRule",
    "MatchingContext",
    "PaymentLedger",
    "PaymentNotFoundError",
    "ProformaNotFoundError",
    "ProformaRepository",
    "ReconciliationConfig",
    "ReviewValidationError",
    "StatementRecord",
    "approve_match",
    "build_matching_context",
    "cleanup_expired_backups",
    "clear_match",
    "create_pre_import_backup",
    "ingest_statement",
    "ingest_transactions",
    "load_reconciliation_config",
    "mark_refund",
    "match",
    "parse_statement",
    "recompute_aggregates",
    "restore_from_backup",
    "resolve_payment",
    "safe_recompute_many",
]
