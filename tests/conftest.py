from __future__ import annotations

import asyncio
import os
import re
from collections.abc import AsyncIterator, Iterator

import pytest
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from pbms_ops.db.base import Base
from pbms_ops.db.session import connect, create_engine
from pbms_ops.settings import normalize_database_url

# Deliberately missing SCHEDULED and CANCELLED so both can be added by tests.
INITIAL_ORDER_STATUS_VALUES = ("PENDING", "PRINTING", "LIVE", "COMPLETED")

RESET_STATEMENTS = (
    text("DROP TABLE IF EXISTS orders"),
    text("DROP TYPE IF EXISTS order_status"),
    text(
        "CREATE TYPE order_status AS ENUM ("
        + ", ".join(f"'{value}'" for value in INITIAL_ORDER_STATUS_VALUES)
        + ")"
    ),
    text("CREATE TABLE orders (id SERIAL PRIMARY KEY, status order_status NOT NULL DEFAULT 'PENDING')"),
    text("TRUNCATE TABLE pricing_config RESTART IDENTITY"),
)

DB_NAME_SAFE_RE = re.compile(r"^[A-Za-z0-9_]+$")


def _resolve_test_database_url() -> str | None:
    explicit = (os.getenv("TEST_DATABASE_URL") or "").strip()
    if explicit:
        return normalize_database_url(explicit)

    base = (os.getenv("DATABASE_URL") or "").strip()
    if not base:
        return None

    parsed = make_url(normalize_database_url(base))
    if not parsed.database:
        return None
    derived_database = parsed.database if parsed.database.endswith("_test") else f"{parsed.database}_test"
    return parsed.set(database=derived_database).render_as_string(hide_password=False)


def pytest_runtest_setup(item: pytest.Item) -> None:
    if "integration" in item.keywords and not _resolve_test_database_url():
        pytest.skip("DATABASE_URL (or TEST_DATABASE_URL) is required for integration tests")


@pytest.fixture(scope="session")
def database_url() -> str:
    value = _resolve_test_database_url()
    if not value:
        pytest.skip("DATABASE_URL (or TEST_DATABASE_URL) is required for database tests")
    return value


@pytest.fixture(scope="session")
def ensure_test_database_exists(database_url: str) -> Iterator[None]:
    parsed = make_url(database_url)
    database_name = parsed.database
    if not database_name:
        raise RuntimeError("TEST_DATABASE_URL must include a database name.")
    if not DB_NAME_SAFE_RE.fullmatch(database_name):
        raise RuntimeError("TEST_DATABASE_URL database name must match [A-Za-z0-9_]+ for safe auto-provisioning.")

    admin_name = "postgres" if database_name != "postgres" else "template1"
    admin_url = parsed.set(database=admin_name).render_as_string(hide_password=False)

    async def _ensure_database() -> None:
        engine = create_async_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            async with engine.connect() as connection:
                exists_result = await connection.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :database_name"),
                    {"database_name": database_name},
                )
                if exists_result.scalar_one_or_none() == 1:
                    return
                try:
                    await connection.execute(text(f'CREATE DATABASE "{database_name}"'))
                except Exception as exc:
                    raise RuntimeError(
                        "Unable to auto-create test database. "
                        "Create it manually or grant CREATEDB to the database user."
                    ) from exc
        finally:
            await engine.dispose()

    asyncio.run(_ensure_database())
    yield


@pytest.fixture(scope="session")
def prepared_database(ensure_test_database_exists: None, database_url: str) -> str:
    async def _create_tables() -> None:
        engine = create_engine(database_url)
        try:
            async with engine.begin() as connection:
                await connection.run_sync(Base.metadata.create_all)
        finally:
            await engine.dispose()

    asyncio.run(_create_tables())
    return database_url


@pytest.fixture
async def db_connection(prepared_database: str) -> AsyncIterator[AsyncConnection]:
    engine = create_engine(prepared_database)
    try:
        async with connect(engine) as connection:
            for statement in RESET_STATEMENTS:
                await connection.execute(statement)
            yield connection
    finally:
        await engine.dispose()
