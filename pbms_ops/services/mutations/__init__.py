from pbms_ops.services.mutations.application import apply_mutations, run_mutations
from pbms_ops.services.mutations.changeset_files import ChangesetFileError, load_changeset_file
from pbms_ops.services.mutations.changesets import get_changeset, list_changesets, resolve_changesets
from pbms_ops.services.mutations.errors import MutationError, StoreErrorKind, classify_store_error
from pbms_ops.services.mutations.types import (
    AddEnumValue,
    MutationResult,
    MutationSpec,
    StepOutcome,
    StepStatus,
    UpsertConfig,
)

__all__ = [
    "AddEnumValue",
    "ChangesetFileError",
    "MutationError",
    "MutationResult",
    "MutationSpec",
    "StepOutcome",
    "StepStatus",
    "StoreErrorKind",
    "UpsertConfig",
    "apply_mutations",
    "classify_store_error",
    "get_changeset",
    "list_changesets",
    "load_changeset_file",
    "resolve_changesets",
    "run_mutations",
]
