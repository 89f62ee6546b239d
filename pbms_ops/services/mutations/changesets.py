"""Named changesets for the PBMS database.

Each entry reproduces one maintenance step that used to live in its own
script. Order inside a changeset is significant.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from pbms_ops.db.models import ORDER_STATUS_TYPE_NAME, OrderStatus
from pbms_ops.services.mutations.types import AddEnumValue, MutationSpec, UpsertConfig

PRICING_DEFAULTS: tuple[tuple[str, Decimal, str], ...] = (
    ("print_price_sqm", Decimal("500"), "TL"),
    ("mount_price", Decimal("200"), "TL"),
    ("dismount_price", Decimal("150"), "TL"),
)

CHANGESETS: dict[str, tuple[MutationSpec, ...]] = {
    "order-status-scheduled": (
        AddEnumValue(
            type_name=ORDER_STATUS_TYPE_NAME,
            value=OrderStatus.SCHEDULED.value,
            transactional=True,
            if_not_exists=True,
        ),
    ),
    # Runs outside a transaction without IF NOT EXISTS; a duplicate is tolerated.
    "order-status-cancelled": (
        AddEnumValue(
            type_name=ORDER_STATUS_TYPE_NAME,
            value=OrderStatus.CANCELLED.value,
            transactional=False,
            if_not_exists=False,
        ),
    ),
    "pricing-defaults": tuple(UpsertConfig(key=key, value=value, unit=unit) for key, value, unit in PRICING_DEFAULTS),
}


def list_changesets() -> list[str]:
    return sorted(CHANGESETS)


def get_changeset(name: str) -> tuple[MutationSpec, ...]:
    normalized = name.strip().lower()
    if normalized not in CHANGESETS:
        known = ", ".join(list_changesets())
        raise ValueError(f"Unknown changeset {name!r}. Known changesets: {known}.")
    return CHANGESETS[normalized]


def resolve_changesets(names: Iterable[str]) -> list[MutationSpec]:
    mutations: list[MutationSpec] = []
    for name in names:
        mutations.extend(get_changeset(name))
    return mutations
