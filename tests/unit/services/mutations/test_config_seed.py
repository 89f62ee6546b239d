from __future__ import annotations

from sqlalchemy.dialects import postgresql

from pbms_ops.services.mutations.config_seed import build_upsert_statement
from pbms_ops.services.mutations.types import UpsertConfig


def test_upsert_statement_inserts_if_absent_without_update() -> None:
    statement = build_upsert_statement(UpsertConfig(key="print_price_sqm", value=500, unit="TL"))

    sql = str(statement.compile(dialect=postgresql.dialect()))

    assert sql.startswith("INSERT INTO pricing_config (key, value, unit)")
    assert "ON CONFLICT (key) DO NOTHING" in sql
    assert "DO UPDATE" not in sql
    assert sql.endswith("RETURNING pricing_config.key")
