from __future__ import annotations

from decimal import Decimal
import json
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from pbms_ops.services.mutations.types import AddEnumValue, MutationSpec, UpsertConfig


class ChangesetFileError(ValueError):
    """A changeset file could not be read or failed validation."""


class AddEnumValueItem(BaseModel):
    kind: Literal["add_enum_value"]
    type_name: str = Field(min_length=1)
    value: str = Field(min_length=1)
    transactional: bool = True
    if_not_exists: bool = True
    before: str | None = None
    after: str | None = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _single_position(self) -> "AddEnumValueItem":
        if self.before is not None and self.after is not None:
            raise ValueError("Only one of before/after may be given.")
        return self

    def to_mutation(self) -> AddEnumValue:
        return AddEnumValue(
            type_name=self.type_name,
            value=self.value,
            transactional=self.transactional,
            if_not_exists=self.if_not_exists,
            before=self.before,
            after=self.after,
        )


class UpsertConfigItem(BaseModel):
    kind: Literal["upsert_config"]
    key: str = Field(min_length=1, max_length=100)
    value: Decimal = Field(max_digits=12, decimal_places=2, allow_inf_nan=False)
    unit: str = Field(default="TL", min_length=1, max_length=20)

    model_config = ConfigDict(extra="forbid")

    def to_mutation(self) -> UpsertConfig:
        return UpsertConfig(key=self.key, value=self.value, unit=self.unit)


MutationItem = Annotated[AddEnumValueItem | UpsertConfigItem, Field(discriminator="kind")]


class ChangesetFile(BaseModel):
    mutations: list[MutationItem] = Field(min_length=1)

    model_config = ConfigDict(extra="forbid")


def parse_changeset(payload: str | bytes) -> list[MutationSpec]:
    try:
        changeset = ChangesetFile.model_validate_json(payload)
        return [item.to_mutation() for item in changeset.mutations]
    except ValidationError as exc:
        raise ChangesetFileError(_format_validation_error(exc)) from exc
    except ValueError as exc:
        raise ChangesetFileError(str(exc)) from exc


def load_changeset_file(path: str | Path) -> list[MutationSpec]:
    file_path = Path(path)
    try:
        payload = file_path.read_bytes()
    except OSError as exc:
        raise ChangesetFileError(f"Unable to read changeset file {file_path}: {exc.strerror or exc}") from exc
    try:
        return parse_changeset(payload)
    except ChangesetFileError as exc:
        raise ChangesetFileError(f"{file_path}: {exc}") from exc


def _format_validation_error(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(messages)
