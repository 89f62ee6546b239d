from __future__ import annotations

from enum import StrEnum

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

SQLSTATE_DUPLICATE_OBJECT = "42710"
SQLSTATE_CONSTRAINT_CLASS = "23"
SQLSTATE_CONNECTION_CLASS = "08"
SQLSTATE_SHUTDOWN_CODES = frozenset({"57P01", "57P02", "57P03"})

# Last resort when the driver exposes no SQLSTATE.
DUPLICATE_MESSAGE_MARKER = "already exists"


class StoreErrorKind(StrEnum):
    DUPLICATE_VALUE = "duplicate_value"
    CONNECTION = "connection"
    CONSTRAINT_VIOLATION = "constraint_violation"
    UNKNOWN = "unknown"


class MutationError(Exception):
    """A mutation failed with a non-benign store error."""

    def __init__(self, kind: StoreErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


def extract_sqlstate(exc: BaseException) -> str | None:
    """Find the SQLSTATE on the exception, its DBAPI ``orig`` or its cause chain."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        for candidate in (current, getattr(current, "orig", None)):
            if candidate is None:
                continue
            for attribute in ("sqlstate", "pgcode"):
                code = getattr(candidate, attribute, None)
                if isinstance(code, str) and code:
                    return code.upper()
        current = getattr(current, "orig", None) or current.__cause__
    return None


def classify_sqlstate(code: str) -> StoreErrorKind:
    if code == SQLSTATE_DUPLICATE_OBJECT:
        return StoreErrorKind.DUPLICATE_VALUE
    if code.startswith(SQLSTATE_CONSTRAINT_CLASS):
        return StoreErrorKind.CONSTRAINT_VIOLATION
    if code.startswith(SQLSTATE_CONNECTION_CLASS) or code in SQLSTATE_SHUTDOWN_CODES:
        return StoreErrorKind.CONNECTION
    return StoreErrorKind.UNKNOWN


def classify_store_error(exc: BaseException) -> StoreErrorKind:
    if isinstance(exc, MutationError):
        return exc.kind

    code = extract_sqlstate(exc)
    if code is not None:
        return classify_sqlstate(code)

    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return StoreErrorKind.CONNECTION
    if isinstance(exc, (OperationalError, InterfaceError, ConnectionError, OSError, TimeoutError)):
        return StoreErrorKind.CONNECTION
    if DUPLICATE_MESSAGE_MARKER in str(exc).lower():
        return StoreErrorKind.DUPLICATE_VALUE
    return StoreErrorKind.UNKNOWN


def describe_store_error(exc: BaseException) -> str:
    if isinstance(exc, MutationError):
        return exc.message
    orig = getattr(exc, "orig", None)
    message = str(orig if orig is not None else exc).strip()
    return message or type(exc).__name__
