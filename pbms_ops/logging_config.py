from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sys
from typing import Any, TextIO

from pbms_ops.logging_context import get_run_id

DEFAULT_REDACT_FIELDS = {
    "database_url",
    "dsn",
    "password",
    "pbms_password",
    "secret",
}
LOG_FORMATS = ("console", "json")

_STANDARD_RECORD_FIELDS = set(logging.makeLogRecord({}).__dict__.keys()) | {"message", "asctime", "run_id"}
_SHORT_LEVELS = {
    "debug": "DBG",
    "info": "INF",
    "warning": "WRN",
    "error": "ERR",
    "critical": "CRT",
}


def parse_redact_fields(raw: str | None) -> set[str]:
    fields = {field.strip().lower() for field in (raw or "").split(",") if field.strip()}
    return DEFAULT_REDACT_FIELDS | fields


def configure_logging(
    *,
    level: str,
    log_format: str,
    redact_fields: set[str],
    sql_echo: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Install one root handler on ``stream`` (stderr by default).

    Stdout is left to the CLI's JSON report. SQL statement logging goes
    through the same handler when ``sql_echo`` is set.
    """
    normalized_level = _normalize_level(level)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(normalized_level)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setLevel(normalized_level)
    handler.addFilter(RunContextFilter())

    normalized_format = log_format.strip().lower()
    if normalized_format == "json":
        handler.setFormatter(JsonLogFormatter(redact_fields=redact_fields))
    else:
        handler.setFormatter(ConsoleLogFormatter(redact_fields=redact_fields))

    root_logger.addHandler(handler)

    sql_logger = logging.getLogger("sqlalchemy.engine")
    sql_logger.handlers.clear()
    sql_logger.propagate = True
    sql_logger.setLevel(logging.INFO if sql_echo else max(normalized_level, logging.WARNING))
    if sql_echo:
        handler.setLevel(min(normalized_level, logging.INFO))


class RunContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "run_id", None):
            run_id = get_run_id()
            if run_id:
                record.run_id = run_id
        return True


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, redact_fields: set[str]) -> None:
        super().__init__()
        self._redact_fields = {field.lower() for field in redact_fields}

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _format_timestamp(record.created),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": getattr(record, "event", record.getMessage()),
        }
        run_id = getattr(record, "run_id", None)
        if run_id:
            payload["run_id"] = run_id
        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_FIELDS or key.startswith("_") or key == "event":
                continue
            payload[key] = self._redact_value(key, value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)

    def _redact_value(self, key: str, value: Any) -> Any:
        if key.lower() in self._redact_fields:
            return "[REDACTED]"
        if isinstance(value, dict):
            return {nested_key: self._redact_value(nested_key, nested_value) for nested_key, nested_value in value.items()}
        return value


class ConsoleLogFormatter(logging.Formatter):
    """One line per record: ``time | LVL | logger | event | run=... | key=value``."""

    def __init__(self, *, redact_fields: set[str]) -> None:
        super().__init__()
        self._json_formatter = JsonLogFormatter(redact_fields=redact_fields)

    def format(self, record: logging.LogRecord) -> str:
        payload = json.loads(self._json_formatter.format(record))
        level = str(payload.pop("level", "info"))
        parts = [
            payload.pop("timestamp", ""),
            _SHORT_LEVELS.get(level, level[:3].upper()),
            payload.pop("logger", "pbms_ops"),
            payload.pop("event", ""),
        ]
        run_id = payload.pop("run_id", None)
        if run_id:
            parts.append(f"run={run_id}")
        exception = payload.pop("exception", None)
        parts.extend(f"{key}={payload[key]}" for key in sorted(payload))
        if exception:
            parts.append(f"exception={exception}")
        return " | ".join(str(part) for part in parts if part)


def _normalize_level(level: str) -> int:
    mapping = logging.getLevelNamesMapping()
    return mapping.get(level.strip().upper(), logging.INFO)


def _format_timestamp(created_ts: float) -> str:
    dt = datetime.fromtimestamp(created_ts, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%SZ")
