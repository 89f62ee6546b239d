from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from pbms_ops.db.session import server_version_num
from pbms_ops.logging_utils import structured_log
from pbms_ops.services.mutations.errors import (
    MutationError,
    StoreErrorKind,
    classify_store_error,
    describe_store_error,
)
from pbms_ops.services.mutations.types import AddEnumValue, StepOutcome, StepStatus

logger = logging.getLogger(__name__)

# ALTER TYPE ... ADD VALUE is accepted inside a transaction block from PostgreSQL 12.
TRANSACTIONAL_ENUM_MIN_SERVER_VERSION = 120000

ENUM_LABELS_SQL = text(
    """
    SELECT e.enumlabel
    FROM pg_enum e
    JOIN pg_type t ON t.oid = e.enumtypid
    JOIN pg_namespace n ON n.oid = t.typnamespace
    WHERE t.typname = :type_name
      AND (
        (CAST(:schema_name AS text) IS NULL AND pg_type_is_visible(t.oid))
        OR n.nspname = CAST(:schema_name AS text)
      )
    ORDER BY e.enumsortorder
    """
)


def split_type_name(type_name: str) -> tuple[str | None, str]:
    schema_name, _, name = type_name.rpartition(".")
    return (schema_name or None), name


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def quote_type_name(connection: AsyncConnection, type_name: str) -> str:
    preparer = connection.dialect.identifier_preparer
    return ".".join(preparer.quote(part) for part in type_name.split("."))


def build_add_value_sql(mutation: AddEnumValue, *, quoted_type_name: str) -> str:
    parts = [f"ALTER TYPE {quoted_type_name} ADD VALUE"]
    if mutation.if_not_exists:
        parts.append("IF NOT EXISTS")
    parts.append(quote_literal(mutation.value))
    if mutation.before is not None:
        parts.append(f"BEFORE {quote_literal(mutation.before)}")
    elif mutation.after is not None:
        parts.append(f"AFTER {quote_literal(mutation.after)}")
    return " ".join(parts)


async def list_enum_values(connection: AsyncConnection, type_name: str) -> list[str]:
    schema_name, name = split_type_name(type_name)
    result = await connection.execute(
        ENUM_LABELS_SQL,
        {"type_name": name, "schema_name": schema_name},
    )
    return [str(row[0]) for row in result.all()]


async def supports_transactional_enum_add(connection: AsyncConnection, *, mode: str = "auto") -> bool:
    normalized = (mode or "auto").strip().lower()
    if normalized in {"yes", "true", "1"}:
        return True
    if normalized in {"no", "false", "0"}:
        return False
    if normalized != "auto":
        structured_log(
            logger,
            "warning",
            "mutations.invalid_enum_transaction_mode",
            enum_transaction_support=mode,
            fallback_mode="auto",
        )
    version = await server_version_num(connection)
    supported = version >= TRANSACTIONAL_ENUM_MIN_SERVER_VERSION
    structured_log(
        logger,
        "debug",
        "mutations.enum_transaction_support_resolved",
        server_version_num=version,
        supported=supported,
    )
    return supported


@asynccontextmanager
async def explicit_transaction(connection: AsyncConnection) -> AsyncIterator[None]:
    """BEGIN/COMMIT on an autocommit connection, ROLLBACK when the body raises."""
    await connection.execute(text("BEGIN"))
    try:
        yield
    except BaseException:
        try:
            await connection.execute(text("ROLLBACK"))
        except Exception:
            logger.exception(
                "mutations.rollback_failed",
                extra={"event": "mutations.rollback_failed"},
            )
        raise
    await connection.execute(text("COMMIT"))


async def add_enum_value(
    connection: AsyncConnection,
    mutation: AddEnumValue,
    *,
    transactions_supported: bool,
) -> StepOutcome:
    existing = await list_enum_values(connection, mutation.type_name)
    if mutation.value in existing:
        return _already_present(mutation, source="catalog")

    in_transaction = mutation.transactional and transactions_supported
    if mutation.transactional and not transactions_supported:
        structured_log(
            logger,
            "warning",
            "mutations.enum_transaction_unsupported",
            type_name=mutation.type_name,
            value=mutation.value,
        )

    statement = text(build_add_value_sql(mutation, quoted_type_name=quote_type_name(connection, mutation.type_name)))
    try:
        if in_transaction:
            async with explicit_transaction(connection):
                await connection.execute(statement)
        else:
            await connection.execute(statement)
    except Exception as exc:
        kind = classify_store_error(exc)
        if kind is StoreErrorKind.DUPLICATE_VALUE:
            return _already_present(mutation, source="store")
        raise MutationError(kind, describe_store_error(exc)) from exc

    structured_log(
        logger,
        "info",
        "mutations.enum_value_added",
        type_name=mutation.type_name,
        value=mutation.value,
        in_transaction=in_transaction,
    )
    return StepOutcome(
        mutation=mutation,
        status=StepStatus.APPLIED,
        message=f"Added '{mutation.value}' to {mutation.type_name}.",
    )


def _already_present(mutation: AddEnumValue, *, source: str) -> StepOutcome:
    structured_log(
        logger,
        "info",
        "mutations.enum_value_already_present",
        type_name=mutation.type_name,
        value=mutation.value,
        detected_by=source,
    )
    return StepOutcome(
        mutation=mutation,
        status=StepStatus.ALREADY_PRESENT,
        message=f"'{mutation.value}' already exists in {mutation.type_name}.",
    )
