"""Test fixtures and configuration."""

import logging
import os
import sys

# Settings are read at import time; point them at SQLite before importing the package.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["ENVIRONMENT"] = "testing"
os.environ.pop("RECONCILIATION_AMOUNT_TOLERANCE", None)
os.environ.pop("RECONCILIATION_WINDOW_DAYS", None)
os.environ.pop("RECONCILIATION_CONFIG_PATH", None)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
import structlog  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from billing_recon import database  # noqa: E402
from billing_recon import logger as app_logger  # noqa: E402
from billing_recon.database import Base  # noqa: E402
from billing_recon.services.matching import load_reconciliation_config  # noqa: E402


@pytest.fixture(autouse=True, scope="session")
def console_logging():
    """Human-readable structlog output on stdout so capsys and caplog see it."""
    shared = app_logger._shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False), foreign_pre_chain=shared
        )
    )

    root = logging.getLogger()
    root.addHandler(stdout)
    root.setLevel(logging.DEBUG)
    yield
    root.removeHandler(stdout)
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def reset_reconciliation_config():
    """Reload matching config around each test so env overrides never leak."""
    load_reconciliation_config(force_reload=True)
    yield
    load_reconciliation_config(force_reload=True)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh in-memory SQLite database per test.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(db_engine):
    """Database session for service-level tests; changes are flushed, not committed."""
    async with AsyncSession(db_engine, expire_on_commit=False) as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """Async test client whose requests run against the per-test database."""
    from billing_recon.main import app

    test_maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    previous = database.set_test_session_maker(test_maker)
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client_instance:
            yield client_instance
    finally:
        database.set_test_session_maker(previous)
