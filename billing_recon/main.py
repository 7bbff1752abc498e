"""ASGI entry point for the reconciliation API."""

import time
import traceback
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated
from uuid import uuid4

import structlog
from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_recon import __version__
from billing_recon.config import settings
from billing_recon.database import get_db, init_db
from billing_recon.deps import StorageDisabledError
from billing_recon.logger import configure_logging, get_logger, log_exception
from billing_recon.routers import payments, proformas
from billing_recon.schemas import DisabledResponse

REQUEST_ID_HEADER = "X-Request-ID"

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await init_db()
    logger.info(
        "Reconciliation API starting",
        version=__version__,
        storage_enabled=settings.storage_enabled,
    )
    yield
    logger.info("Reconciliation API stopped")


async def request_context(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Tag every log line of a request with its id and echo the id back."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id, method=request.method, path=request.url.path
    )

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Request crashed", duration_ms=_elapsed_ms(started))
        raise

    logger.info(
        "Request handled", status_code=response.status_code, duration_ms=_elapsed_ms(started)
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


async def storage_disabled_handler(request: Request, exc: StorageDisabledError) -> JSONResponse:
    logger.warning("Ledger endpoint called without storage")
    return JSONResponse(status_code=503, content=DisabledResponse().model_dump())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Answer with JSON; exception text and traceback only in debug mode."""
    body: dict[str, object] = {
        "detail": "An internal server error occurred. Please try again later.",
        "trace": None,
        "request_id": structlog.contextvars.get_contextvars().get("request_id"),
    }
    if settings.debug:
        body["detail"] = str(exc)
        body["trace"] = "".join(traceback.format_exception(exc))
    return JSONResponse(status_code=500, content=body)


async def health_check(db: Annotated[AsyncSession | None, Depends(get_db)]) -> JSONResponse:
    """Liveness plus a ledger round trip; 503 when the database is configured but down."""
    database: bool | str = "disabled"
    if db is not None:
        try:
            await db.execute(text("SELECT 1"))
            database = True
        except (SQLAlchemyError, OSError) as exc:
            log_exception(logger, exc, "Health check: ledger unreachable", include_traceback=False)
            database = False

    healthy = database is not False
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": {"database": database},
            "version": __version__,
        },
    )


def create_app() -> FastAPI:
    application = FastAPI(
        title="Billing Reconciliation API",
        description="Matches bank and card statement payments to proforma invoices",
        version=__version__,
        lifespan=lifespan,
    )
    application.middleware("http")(request_context)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", REQUEST_ID_HEADER],
    )
    application.add_exception_handler(StorageDisabledError, storage_disabled_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)

    application.include_router(payments.router)
    application.include_router(proformas.router)
    application.add_api_route("/health", health_check, methods=["GET"], tags=["health"])
    return application


app = create_app()


def run() -> None:
    """``billing-recon`` console script."""
    import uvicorn

    uvicorn.run("billing_recon.main:app", host="0.0.0.0", port=8000)
