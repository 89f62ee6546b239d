from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence

from pbms_ops.logging_config import configure_logging, parse_redact_fields
from pbms_ops.services.mutations import (
    MutationResult,
    MutationSpec,
    list_changesets,
    load_changeset_file,
    resolve_changesets,
    run_mutations,
)
from pbms_ops.settings import ENUM_TRANSACTION_SUPPORT_MODES, settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Apply idempotent enum extensions and config seeds to the PBMS database.",
    )
    parser.add_argument(
        "--changeset",
        action="append",
        default=[],
        help="Named changeset to apply. Repeat for multiple values.",
    )
    parser.add_argument(
        "--file",
        action="append",
        default=[],
        help="JSON changeset file to apply after named changesets. Repeat for multiple values.",
    )
    parser.add_argument(
        "--independent",
        action="store_true",
        help="Keep applying later mutations after a failure.",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override DATABASE_URL for this run.",
    )
    parser.add_argument(
        "--enum-transaction-support",
        choices=ENUM_TRANSACTION_SUPPORT_MODES,
        default=None,
        help="Override ENUM_TRANSACTION_SUPPORT (auto probes the server version).",
    )
    parser.add_argument("--list", action="store_true", help="List named changesets and exit.")
    return parser


def collect_mutations(args: argparse.Namespace) -> list[MutationSpec]:
    mutations = resolve_changesets(args.changeset)
    for path in args.file:
        mutations.extend(load_changeset_file(path))
    return mutations


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2))


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list:
        _print_json({"changesets": list_changesets()})
        return 0
    if not args.changeset and not args.file:
        parser.error("select at least one --changeset or --file")

    configure_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        redact_fields=parse_redact_fields(settings.log_redact_fields),
        sql_echo=settings.database_echo,
    )

    try:
        mutations = collect_mutations(args)
    except ValueError as exc:
        _print_json({"status": "failed", "error": str(exc)})
        return 1

    try:
        result: MutationResult = asyncio.run(
            run_mutations(
                mutations,
                database_url=args.database_url,
                independent=args.independent,
                enum_transaction_support=args.enum_transaction_support,
            )
        )
    except Exception as exc:
        _print_json({"status": "failed", "error": str(exc)})
        return 1

    _print_json(result.to_payload())
    return result.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
