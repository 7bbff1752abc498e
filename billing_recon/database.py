"""Database configuration and session management."""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Any

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from billing_recon.config import settings

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


@dataclass(frozen=True)
class StorageDisabled:
    """Returned by ledger operations called without a session (no DATABASE_URL)."""

    operation: str
    status: str = "disabled"


def storage_disabled(operation: str) -> StorageDisabled:
    from billing_recon.logger import get_logger

    get_logger(__name__).warning("Ledger operation skipped - storage disabled", operation=operation)
    return StorageDisabled(operation)


POOL_OPTIONS: dict[str, Any] = {
    "pool_pre_ping": True,
    "pool_size": 10,
    "max_overflow": 20,
    "pool_recycle": 3600,
}


def _engine_options(url: str) -> dict[str, Any]:
    # SQLite (tests, local runs) does not take pool sizing arguments
    pool = {} if url.startswith("sqlite") else POOL_OPTIONS
    return {"echo": settings.sql_echo, **pool}


def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, **_engine_options(url))


engine: AsyncEngine | None = (
    build_engine(settings.database_url) if settings.storage_enabled else None
)

async_session_maker: async_sessionmaker[AsyncSession] | None = (
    async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    if engine is not None
    else None
)

_override_session_maker: async_sessionmaker[AsyncSession] | None = None


def set_test_session_maker(
    maker: async_sessionmaker[AsyncSession] | None,
) -> async_sessionmaker[AsyncSession] | None:
    """Point ``get_db`` at another session factory; returns the one replaced."""
    global _override_session_maker
    previous, _override_session_maker = _override_session_maker, maker
    return previous


async def get_db() -> AsyncGenerator[AsyncSession | None, None]:
    """Request-scoped ledger session, or ``None`` when storage is disabled."""
    maker = _override_session_maker or async_session_maker
    if maker is None:
        yield None
        return
    async with maker() as session:
        yield session


async def init_db() -> None:
    """Report whether a ledger is attached; tables come from Alembic."""
    from billing_recon.logger import get_logger

    log = get_logger(__name__)
    if engine is None:
        log.warning("Ledger storage disabled", reason="DATABASE_URL is empty")
    else:
        log.info("Ledger storage ready", dialect=engine.dialect.name)
