from __future__ import annotations

from collections.abc import Sequence
import logging
from secrets import token_hex

from sqlalchemy.ext.asyncio import AsyncConnection

from pbms_ops.db.session import connect, create_engine
from pbms_ops.logging_context import get_run_id, set_run_id
from pbms_ops.logging_utils import structured_log
from pbms_ops.services.mutations import config_seed, enum_values
from pbms_ops.services.mutations.errors import (
    MutationError,
    classify_store_error,
    describe_store_error,
)
from pbms_ops.services.mutations.types import (
    AddEnumValue,
    MutationResult,
    MutationSpec,
    StepOutcome,
    StepStatus,
    UpsertConfig,
)
from pbms_ops.settings import settings

logger = logging.getLogger(__name__)


class _TransactionSupport:
    """Asks the store at most once per run, and only if an enum step needs it."""

    def __init__(self, connection: AsyncConnection, mode: str) -> None:
        self._connection = connection
        self._mode = mode
        self._value: bool | None = None

    async def get(self) -> bool:
        if self._value is None:
            self._value = await enum_values.supports_transactional_enum_add(self._connection, mode=self._mode)
        return self._value


async def _apply_one(
    connection: AsyncConnection,
    mutation: MutationSpec,
    *,
    transaction_support: _TransactionSupport,
) -> StepOutcome:
    if isinstance(mutation, AddEnumValue):
        supported = await transaction_support.get() if mutation.transactional else False
        return await enum_values.add_enum_value(
            connection,
            mutation,
            transactions_supported=supported,
        )
    if isinstance(mutation, UpsertConfig):
        return await config_seed.upsert_config(connection, mutation)
    raise TypeError(f"Unsupported mutation type: {type(mutation).__name__}")


def _failed_outcome(mutation: MutationSpec, exc: Exception) -> StepOutcome:
    return StepOutcome(
        mutation=mutation,
        status=StepStatus.FAILED,
        message=describe_store_error(exc),
        error_kind=classify_store_error(exc),
    )


def _not_run(mutation: MutationSpec, *, reason: str = "an earlier step failed") -> StepOutcome:
    return StepOutcome(
        mutation=mutation,
        status=StepStatus.NOT_RUN,
        message=f"Not run: {reason}.",
    )


async def apply_mutations(
    connection: AsyncConnection,
    mutations: Sequence[MutationSpec],
    *,
    independent: bool = False,
    enum_transaction_support: str | None = None,
) -> MutationResult:
    """Apply ``mutations`` in order over one connection.

    Stops at the first failed step unless ``independent`` is set; later steps
    are then reported as ``not_run``. Duplicate enum values and existing
    config keys count as success.
    """
    transaction_support = _TransactionSupport(
        connection,
        enum_transaction_support or settings.enum_transaction_support,
    )
    steps: list[StepOutcome] = []
    halted = False

    for index, mutation in enumerate(mutations):
        if halted:
            steps.append(_not_run(mutation))
            continue
        try:
            outcome = await _apply_one(connection, mutation, transaction_support=transaction_support)
        except MutationError as exc:
            outcome = _failed_outcome(mutation, exc)
        except Exception as exc:
            logger.exception(
                "mutations.step_unexpected_error",
                extra={"event": "mutations.step_unexpected_error", "step_index": index},
            )
            outcome = _failed_outcome(mutation, exc)

        if outcome.status == StepStatus.FAILED:
            structured_log(
                logger,
                "error",
                "mutations.step_failed",
                step_index=index,
                mutation=mutation.label,
                error_kind=str(outcome.error_kind),
                error=outcome.message,
            )
            halted = not independent
        steps.append(outcome)

    return MutationResult(steps=steps)


async def run_mutations(
    mutations: Sequence[MutationSpec],
    *,
    database_url: str | None = None,
    independent: bool = False,
    enum_transaction_support: str | None = None,
) -> MutationResult:
    """Open one connection, apply ``mutations`` and always release it."""
    previous_run_id = get_run_id()
    set_run_id(token_hex(6))
    structured_log(
        logger,
        "info",
        "mutations.run_started",
        mutation_count=len(mutations),
        independent=independent,
    )
    engine = create_engine(database_url)
    result: MutationResult | None = None
    try:
        try:
            async with connect(engine) as connection:
                result = await apply_mutations(
                    connection,
                    mutations,
                    independent=independent,
                    enum_transaction_support=enum_transaction_support,
                )
        except Exception as exc:
            kind = classify_store_error(exc)
            message = describe_store_error(exc)
            if result is not None:
                structured_log(
                    logger,
                    "warning",
                    "mutations.connection_release_failed",
                    error_kind=str(kind),
                    error=message,
                )
            else:
                structured_log(
                    logger,
                    "error",
                    "mutations.run_connection_failed",
                    error_kind=str(kind),
                    error=message,
                )
                result = MutationResult(
                    steps=[_not_run(mutation, reason="no database connection") for mutation in mutations],
                    error=message,
                    error_kind=kind,
                )
        structured_log(
            logger,
            "info" if result.ok else "error",
            "mutations.run_completed" if result.ok else "mutations.run_failed",
            applied=result.count(StepStatus.APPLIED),
            already_present=result.count(StepStatus.ALREADY_PRESENT),
            failed=result.count(StepStatus.FAILED),
            not_run=result.count(StepStatus.NOT_RUN),
        )
        return result
    finally:
        await engine.dispose()
        set_run_id(previous_run_id)
