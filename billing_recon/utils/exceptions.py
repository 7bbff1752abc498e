"""HTTP error helpers used by the routers to translate service exceptions."""

from typing import NoReturn

from fastapi import HTTPException, status


def _http_error(status_code: int, detail: str, cause: Exception | None) -> NoReturn:
    raise HTTPException(status_code=status_code, detail=detail) from cause


def raise_not_found(resource_name: str, *, cause: Exception | None = None) -> NoReturn:
    _http_error(status.HTTP_404_NOT_FOUND, f"{resource_name} not found", cause)


def raise_bad_request(detail: str, *, cause: Exception | None = None) -> NoReturn:
    _http_error(status.HTTP_400_BAD_REQUEST, detail, cause)


def raise_conflict(detail: str, *, cause: Exception | None = None) -> NoReturn:
    _http_error(status.HTTP_409_CONFLICT, detail, cause)


def raise_too_large(limit_bytes: int, *, cause: Exception | None = None) -> NoReturn:
    """Statement upload over the configured size limit."""
    limit_mb = limit_bytes / (1024 * 1024)
    _http_error(
        status.HTTP_413_CONTENT_TOO_LARGE,
        f"Statement file exceeds the {limit_mb:g}MB upload limit",
        cause,
    )


def raise_service_unavailable(detail: str, *, cause: Exception | None = None) -> NoReturn:
    _http_error(status.HTTP_503_SERVICE_UNAVAILABLE, detail, cause)
