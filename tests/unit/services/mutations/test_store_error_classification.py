from __future__ import annotations

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError, ProgrammingError

from pbms_ops.services.mutations.errors import (
    MutationError,
    StoreErrorKind,
    classify_sqlstate,
    classify_store_error,
    describe_store_error,
    extract_sqlstate,
)


class FakeDriverError(Exception):
    def __init__(self, message: str, *, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


class FakePsycopgError(Exception):
    def __init__(self, message: str, *, pgcode: str) -> None:
        super().__init__(message)
        self.pgcode = pgcode


def _wrapped(orig: Exception, error_class: type[DBAPIError] = ProgrammingError) -> DBAPIError:
    return error_class("ALTER TYPE order_status ADD VALUE 'CANCELLED'", {}, orig)


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("42710", StoreErrorKind.DUPLICATE_VALUE),
        ("23505", StoreErrorKind.CONSTRAINT_VIOLATION),
        ("23502", StoreErrorKind.CONSTRAINT_VIOLATION),
        ("08006", StoreErrorKind.CONNECTION),
        ("57P01", StoreErrorKind.CONNECTION),
        ("42704", StoreErrorKind.UNKNOWN),
        ("42501", StoreErrorKind.UNKNOWN),
    ],
)
def test_classify_sqlstate(code: str, expected: StoreErrorKind) -> None:
    assert classify_sqlstate(code) is expected


def test_duplicate_enum_label_is_classified_by_sqlstate() -> None:
    orig = FakeDriverError('enum label "CANCELLED" already exists', sqlstate="42710")

    assert classify_store_error(_wrapped(orig)) is StoreErrorKind.DUPLICATE_VALUE


def test_sqlstate_wins_over_message_text() -> None:
    # Mentions "already exists" but is a different failure.
    orig = FakeDriverError('relation "pricing_config" already exists', sqlstate="42P07")

    assert classify_store_error(_wrapped(orig)) is StoreErrorKind.UNKNOWN


def test_pgcode_attribute_is_supported() -> None:
    orig = FakePsycopgError("duplicate key value violates unique constraint", pgcode="23505")

    assert extract_sqlstate(_wrapped(orig)) == "23505"
    assert classify_store_error(_wrapped(orig)) is StoreErrorKind.CONSTRAINT_VIOLATION


def test_sqlstate_is_found_through_cause_chain() -> None:
    orig = FakeDriverError("label exists", sqlstate="42710")
    try:
        try:
            raise orig
        except FakeDriverError as exc:
            raise RuntimeError("adapter failure") from exc
    except RuntimeError as outer:
        assert classify_store_error(outer) is StoreErrorKind.DUPLICATE_VALUE


def test_message_inspection_is_last_resort() -> None:
    exc = Exception('enum label "CANCELLED" already exists')

    assert extract_sqlstate(exc) is None
    assert classify_store_error(exc) is StoreErrorKind.DUPLICATE_VALUE


@pytest.mark.parametrize(
    "exc",
    [
        ConnectionRefusedError(111, "Connection refused"),
        TimeoutError("timed out"),
        OperationalError("SELECT 1", {}, Exception("server closed the connection unexpectedly")),
    ],
)
def test_connectivity_failures_are_connection_errors(exc: BaseException) -> None:
    assert classify_store_error(exc) is StoreErrorKind.CONNECTION


def test_invalidated_connection_is_connection_error() -> None:
    exc = DBAPIError("SELECT 1", {}, Exception("boom"), connection_invalidated=True)

    assert classify_store_error(exc) is StoreErrorKind.CONNECTION


def test_unexpected_errors_are_unknown() -> None:
    assert classify_store_error(ValueError("bad state")) is StoreErrorKind.UNKNOWN


def test_mutation_error_keeps_its_kind_and_message() -> None:
    exc = MutationError(StoreErrorKind.CONSTRAINT_VIOLATION, "null value in column")

    assert classify_store_error(exc) is StoreErrorKind.CONSTRAINT_VIOLATION
    assert describe_store_error(exc) == "null value in column"


def test_describe_store_error_prefers_driver_message() -> None:
    orig = FakeDriverError('type "order_stat" does not exist', sqlstate="42704")

    assert describe_store_error(_wrapped(orig)) == 'type "order_stat" does not exist'
    assert describe_store_error(RuntimeError()) == "RuntimeError"
