"""API routers package."""

from billing_recon.routers import payments, proformas

__all__ = ["payments", "proformas"]
