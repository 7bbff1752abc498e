"""Payment reconciliation service for proforma invoices."""

__version__ = "0.1.0"
