"""Structured logging helper shared by the mutation services."""

from __future__ import annotations

import logging
from typing import Any


def structured_log(
    logger: logging.Logger,
    level: str,
    event: str,
    /,
    **fields: Any,
) -> None:
    """Emit a structured log entry.

    The event name is passed as the log message. The JsonLogFormatter in
    logging_config.py picks it up via record.getMessage() when no explicit
    'event' key exists in extra, so it is not duplicated into the fields.

    Usage:
        structured_log(logger, "info", "mutations.enum_value_added", type_name="order_status", value="SCHEDULED")
    """
    log_method = getattr(logger, level.lower())
    log_method(event, extra=fields)
