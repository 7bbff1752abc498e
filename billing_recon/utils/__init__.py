"""Utility functions and helpers."""

from .exceptions import (
    raise_bad_request,
    raise_conflict,
    raise_not_found,
    raise_service_unavailable,
    raise_too_large,
)

__all__ = [
    "raise_bad_request",
    "raise_conflict",
    "raise_not_found",
    "raise_service_unavailable",
    "raise_too_large",
]
