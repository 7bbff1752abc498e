"""Common FastAPI dependencies for consistent type annotations.

Usage:
    from billing_recon.deps import DbSession

    async def my_endpoint(db: DbSession):
        # db is an AsyncSession; requests fail with 503 when storage is disabled
        ...
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from billing_recon.database import get_db


class StorageDisabledError(Exception):
    """No persistence backend is configured."""


async def require_db(
    db: Annotated[AsyncSession | None, Depends(get_db)],
) -> AsyncSession:
    if db is None:
        raise StorageDisabledError("Storage is not configured")
    return db


DbSession = Annotated[AsyncSession, Depends(require_db)]

__all__ = ["DbSession", "StorageDisabledError"]
