"""structlog setup plus the timing and exception helpers used by the services.

Records go to stdout, rendered for humans when ``DEBUG`` is on and as JSON
lines otherwise. Setting ``OTEL_EXPORTER_OTLP_ENDPOINT`` also ships them to an
OTLP collector.
"""

import logging
import sys
import time
from collections.abc import AsyncIterator, Iterator, MutableMapping
from contextlib import asynccontextmanager, contextmanager
from typing import Any

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import Processor

from billing_recon.config import parse_key_value_pairs, settings

OTLP_LOGS_PATH = "/v1/logs"

# Request logging happens in the HTTP middleware
_QUIET_LOGGERS = ("uvicorn.access",)


def _add_service(
    _: Any, __: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", settings.otel_service_name)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]


def _select_renderer() -> Processor:
    if settings.debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _build_otlp_logs_endpoint(endpoint: str) -> str:
    base = endpoint.rstrip("/")
    return base if base.endswith(OTLP_LOGS_PATH) else base + OTLP_LOGS_PATH


def _configure_otel_logging() -> None:
    endpoint = settings.otel_exporter_otlp_endpoint
    if not endpoint:
        return

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
        from opentelemetry.sdk.resources import Resource
    except ImportError:
        logging.getLogger(__name__).warning(
            "OTLP log export requested but the 'otel' extra is missing", exc_info=True
        )
        return

    attributes = {
        "service.name": settings.otel_service_name,
        "deployment.environment": settings.environment,
        **parse_key_value_pairs(settings.otel_resource_attributes),
    }
    provider = LoggerProvider(resource=Resource.create(attributes))
    provider.add_log_record_processor(
        BatchLogRecordProcessor(OTLPLogExporter(endpoint=_build_otlp_logs_endpoint(endpoint)))
    )
    set_logger_provider(provider)
    logging.getLogger().addHandler(LoggingHandler(level=logging.INFO, logger_provider=provider))


def configure_logging() -> None:
    """Route stdlib and structlog records through one formatter."""
    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=_select_renderer(), foreign_pre_chain=shared)
    )
    logging.basicConfig(handlers=[stdout], level=logging.DEBUG if settings.debug else logging.INFO)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configure_otel_logging()


def get_logger(name: str | None = None) -> BoundLogger:
    return structlog.get_logger(name)


def _report_duration(
    log: BoundLogger,
    level: str,
    operation: str,
    started: float,
    context: dict[str, Any],
    timing: dict[str, Any],
) -> None:
    timing["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
    fields = {**context, **timing}
    getattr(log, level, log.info)(f"{operation} completed", operation=operation, **fields)


@contextmanager
def log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> Iterator[dict[str, Any]]:
    """Log how long the block took.

    The yielded dict collects result fields (row counts and so on) and gets
    ``duration_ms`` once the block exits, including when it raises::

        with log_timing("parse_statement", logger=logger, size=len(content)) as timing:
            records = parse(content)
            timing["records"] = len(records)
    """
    started = time.perf_counter()
    timing: dict[str, Any] = {}
    try:
        yield timing
    finally:
        _report_duration(logger or get_logger(__name__), level, operation, started, context, timing)


@asynccontextmanager
async def async_log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """``log_timing`` for ``async with`` blocks."""
    started = time.perf_counter()
    timing: dict[str, Any] = {}
    try:
        yield timing
    finally:
        _report_duration(logger or get_logger(__name__), level, operation, started, context, timing)


def log_exception(
    logger: BoundLogger,
    exc: BaseException,
    context: str,
    *,
    level: str = "error",
    include_traceback: bool = True,
    **extra: Any,
) -> None:
    """Log ``exc`` under the ``context`` message with its type and module attached."""
    fields: dict[str, Any] = {
        "error": str(exc),
        "error_type": type(exc).__name__,
        "error_module": type(exc).__module__,
        **extra,
    }
    if include_traceback:
        fields["exc_info"] = exc
    getattr(logger, level, logger.error)(context, **fields)
