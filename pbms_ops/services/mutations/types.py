from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import StrEnum
import re
from typing import Any

from pbms_ops.services.mutations.errors import StoreErrorKind

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*)?$")
MAX_ENUM_LABEL_BYTES = 63
MAX_CONFIG_KEY_LENGTH = 100
MAX_CONFIG_UNIT_LENGTH = 20
# pricing_config.value is numeric(12,2).
CONFIG_VALUE_SCALE = Decimal("0.01")
CONFIG_VALUE_LIMIT = Decimal("1e10")


def _validate_label(label: str, *, field_name: str) -> str:
    if not label:
        raise ValueError(f"{field_name} must not be empty.")
    if len(label.encode("utf-8")) > MAX_ENUM_LABEL_BYTES:
        raise ValueError(f"{field_name} must be at most {MAX_ENUM_LABEL_BYTES} bytes.")
    return label


@dataclass(frozen=True)
class AddEnumValue:
    type_name: str
    value: str
    transactional: bool = True
    if_not_exists: bool = True
    before: str | None = None
    after: str | None = None

    def __post_init__(self) -> None:
        if not IDENTIFIER_RE.fullmatch(self.type_name):
            raise ValueError(f"Invalid enum type name: {self.type_name!r}.")
        _validate_label(self.value, field_name="value")
        if self.before is not None and self.after is not None:
            raise ValueError("Only one of before/after may be given.")
        if self.before is not None:
            _validate_label(self.before, field_name="before")
        if self.after is not None:
            _validate_label(self.after, field_name="after")

    @property
    def label(self) -> str:
        return f"add_enum_value:{self.type_name}.{self.value}"


@dataclass(frozen=True)
class UpsertConfig:
    key: str
    value: Decimal
    unit: str = "TL"

    def __post_init__(self) -> None:
        key = (self.key or "").strip()
        unit = (self.unit or "").strip()
        if not key or len(key) > MAX_CONFIG_KEY_LENGTH:
            raise ValueError(f"Config key must be 1-{MAX_CONFIG_KEY_LENGTH} characters.")
        if not unit or len(unit) > MAX_CONFIG_UNIT_LENGTH:
            raise ValueError(f"Config unit must be 1-{MAX_CONFIG_UNIT_LENGTH} characters.")
        try:
            value = Decimal(str(self.value))
        except InvalidOperation as exc:
            raise ValueError(f"Config value is not numeric: {self.value!r}.") from exc
        if not value.is_finite():
            raise ValueError("Config value must be finite.")
        if abs(value) >= CONFIG_VALUE_LIMIT:
            raise ValueError("Config value must have at most 10 integer digits.")
        if value != value.quantize(CONFIG_VALUE_SCALE):
            raise ValueError("Config value must have at most 2 decimal places.")
        object.__setattr__(self, "key", key)
        object.__setattr__(self, "unit", unit)
        object.__setattr__(self, "value", value)

    @property
    def label(self) -> str:
        return f"upsert_config:{self.key}"


MutationSpec = AddEnumValue | UpsertConfig


class StepStatus(StrEnum):
    APPLIED = "applied"
    ALREADY_PRESENT = "already_present"
    FAILED = "failed"
    NOT_RUN = "not_run"


@dataclass(frozen=True)
class StepOutcome:
    mutation: MutationSpec
    status: StepStatus
    message: str
    error_kind: StoreErrorKind | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "mutation": self.mutation.label,
            "status": str(self.status),
            "message": self.message,
        }
        if self.error_kind is not None:
            payload["error_kind"] = str(self.error_kind)
        return payload


@dataclass(frozen=True)
class MutationResult:
    steps: list[StepOutcome] = field(default_factory=list)
    error: str | None = None
    error_kind: StoreErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and all(step.status != StepStatus.FAILED for step in self.steps)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    @property
    def failed_steps(self) -> list[StepOutcome]:
        return [step for step in self.steps if step.status == StepStatus.FAILED]

    def count(self, status: StepStatus) -> int:
        return sum(1 for step in self.steps if step.status == status)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": "ok" if self.ok else "failed",
            "applied": self.count(StepStatus.APPLIED),
            "already_present": self.count(StepStatus.ALREADY_PRESENT),
            "failed": self.count(StepStatus.FAILED),
            "not_run": self.count(StepStatus.NOT_RUN),
            "steps": [step.to_payload() for step in self.steps],
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.error_kind is not None:
            payload["error_kind"] = str(self.error_kind)
        return payload
