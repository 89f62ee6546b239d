from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from pbms_ops.logging_utils import structured_log
from pbms_ops.settings import normalize_database_url, settings

logger = logging.getLogger(__name__)


def create_engine(database_url: str | None = None) -> AsyncEngine:
    # One run holds one connection; nothing is pooled between runs.
    return create_async_engine(
        normalize_database_url(database_url or settings.database_url),
        poolclass=NullPool,
    )


@asynccontextmanager
async def connect(engine: AsyncEngine) -> AsyncIterator[AsyncConnection]:
    """Yield a single AUTOCOMMIT connection, closed on every exit path.

    Autocommit leaves each mutation in charge of its own transaction
    boundary: ``ALTER TYPE ... ADD VALUE`` may have to run outside one.
    """
    async with engine.connect() as connection:
        connection = await connection.execution_options(isolation_level="AUTOCOMMIT")
        structured_log(logger, "debug", "db.connection_acquired")
        try:
            yield connection
        finally:
            structured_log(logger, "debug", "db.connection_released")


async def server_version_num(connection: AsyncConnection) -> int:
    result = await connection.execute(text("SHOW server_version_num"))
    return int(result.scalar_one())
