from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncConnection

from pbms_ops.db.models import PricingConfig
from pbms_ops.logging_utils import structured_log
from pbms_ops.services.mutations.errors import MutationError, classify_store_error, describe_store_error
from pbms_ops.services.mutations.types import StepOutcome, StepStatus, UpsertConfig

logger = logging.getLogger(__name__)


def build_upsert_statement(mutation: UpsertConfig):
    # Existing rows are never touched: first write wins.
    return (
        insert(PricingConfig)
        .values(key=mutation.key, value=mutation.value, unit=mutation.unit)
        .on_conflict_do_nothing(index_elements=[PricingConfig.key])
        .returning(PricingConfig.key)
    )


async def upsert_config(connection: AsyncConnection, mutation: UpsertConfig) -> StepOutcome:
    try:
        result = await connection.execute(build_upsert_statement(mutation))
        created = result.scalar_one_or_none() is not None
    except Exception as exc:
        raise MutationError(classify_store_error(exc), describe_store_error(exc)) from exc

    if created:
        structured_log(
            logger,
            "info",
            "mutations.config_created",
            key=mutation.key,
            value=str(mutation.value),
            unit=mutation.unit,
        )
        return StepOutcome(
            mutation=mutation,
            status=StepStatus.APPLIED,
            message=f"Created {mutation.key} = {mutation.value} {mutation.unit}.",
        )

    structured_log(logger, "info", "mutations.config_already_present", key=mutation.key)
    return StepOutcome(
        mutation=mutation,
        status=StepStatus.ALREADY_PRESENT,
        message=f"{mutation.key} already configured; left unchanged.",
    )


async def get_config_entries(
    connection: AsyncConnection,
    keys: list[str] | None = None,
) -> dict[str, dict[str, object]]:
    table = PricingConfig.__table__
    stmt = select(table.c.key, table.c.value, table.c.unit).order_by(table.c.key.asc())
    if keys:
        stmt = stmt.where(table.c.key.in_(keys))
    result = await connection.execute(stmt)
    return {row["key"]: dict(row) for row in result.mappings()}
