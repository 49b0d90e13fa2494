"""Command-line interface router for itemflow."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any

from itemflow.bootstrap import open_state_db
from itemflow.config import (
    ConfigLoadError,
    ConfigValidationError,
    load_config,
    redact_config,
)
from itemflow.domain.models import datetime_to_iso8601z
from itemflow.observability.logging import setup_logging, shutdown_logging
from itemflow.persistence.sqlite_store import SqliteAuditSink, SqliteItemStore
from itemflow.persistence.state_db import StateDB, StateDBError
from itemflow.ui.render import CLIRenderer, create_renderer


class ExitCode(IntEnum):
    SUCCESS = 0
    NOT_FOUND = 1
    CONFIG_ERROR = 2
    STORAGE_ERROR = 3
    INTERNAL_ERROR = 4


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = ExitCode.INTERNAL_ERROR

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI commands."""

    parser = argparse.ArgumentParser(
        prog="itemflow",
        description=(
            "itemflow — inspect items, snapshots and audit trails in the state DB.\n\n"
            "Common workflows:\n"
            "  itemflow migrate             Create or upgrade the state DB schema\n"
            "  itemflow show ITEM_ID        Print the current stored item\n"
            "  itemflow history ITEM_ID     List pre-mutation snapshots\n"
            "  itemflow audit ITEM_ID       List audit entries\n"
            "  itemflow config              Print the effective (redacted) config\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to itemflow TOML config (default: ./itemflow.toml if present).",
    )
    common.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a config value by dotted key, e.g. persistence.state_db=/tmp/x.sqlite.",
    )
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit machine-readable JSON instead of text.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also honoured via NO_COLOR).",
    )

    subparsers = parser.add_subparsers(dest="command")

    show_parser = subparsers.add_parser(
        "show", parents=[common], help="Print the current stored record of an item."
    )
    show_parser.add_argument("item_id", help="Item id (itm-...).")
    show_parser.set_defaults(handler=_cmd_show)

    history_parser = subparsers.add_parser(
        "history", parents=[common], help="List version snapshots captured for an item."
    )
    history_parser.add_argument("item_id", help="Item id (itm-...).")
    history_parser.add_argument(
        "--version",
        type=int,
        default=None,
        help="Print the full record captured for one version.",
    )
    history_parser.set_defaults(handler=_cmd_history)

    audit_parser = subparsers.add_parser(
        "audit", parents=[common], help="List audit entries recorded for an item."
    )
    audit_parser.add_argument("item_id", help="Item id (itm-...).")
    audit_parser.add_argument(
        "--active-only",
        action="store_true",
        default=False,
        help="Hide entries archived when the item was deleted.",
    )
    audit_parser.set_defaults(handler=_cmd_audit)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Print the effective configuration with secrets redacted."
    )
    config_parser.set_defaults(handler=_cmd_config)

    migrate_parser = subparsers.add_parser(
        "migrate", parents=[common], help="Apply state DB migrations and print the schema version."
    )
    migrate_parser.set_defaults(handler=_cmd_migrate)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return int(ExitCode.CONFIG_ERROR)

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return int(exc.exit_code)
    finally:
        shutdown_logging()
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


def cli_entrypoint() -> None:
    """Console-script entrypoint."""

    raise SystemExit(run_cli())


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_show(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    store = _storage_call(SqliteItemStore, _existing_state_db(config))
    item = _storage_call(store.get, args.item_id)
    if item is None:
        raise CLIError(f"item not found: {args.item_id}", exit_code=ExitCode.NOT_FOUND)

    record = item.to_dict()
    if args.json:
        _emit_json({"command": "show", "item": record})
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    renderer.heading(f"{item.name} ({item.id})")
    for key in sorted(record):
        if key in {"id", "name"}:
            continue
        value = record[key]
        if value in (None, [], {}):
            continue
        renderer.kv(key, _display_value(value))
    return ExitCode.SUCCESS


def _cmd_history(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    store = _storage_call(SqliteItemStore, _existing_state_db(config))

    if args.version is not None:
        snapshot = _storage_call(store.get_snapshot, args.item_id, args.version)
        if snapshot is None:
            raise CLIError(
                f"no snapshot for {args.item_id} at version {args.version}",
                exit_code=ExitCode.NOT_FOUND,
            )
        if args.json:
            _emit_json({"command": "history", "snapshot": snapshot.to_dict()})
        else:
            renderer = _get_renderer(args)
            renderer.heading(snapshot.ref)
            renderer.text(json.dumps(snapshot.record, indent=2, sort_keys=True, ensure_ascii=False))
        return ExitCode.SUCCESS

    snapshots = _storage_call(store.list_snapshots, args.item_id)
    if args.json:
        _emit_json(
            {"command": "history", "item_id": args.item_id, "snapshots": [s.to_dict() for s in snapshots]}
        )
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    if not snapshots:
        renderer.text(f"No snapshots recorded for {args.item_id}.")
        return ExitCode.SUCCESS
    renderer.table(
        ["VERSION", "CAPTURED AT", "CAPTURED BY", "STAGE"],
        [
            [
                str(snapshot.version),
                datetime_to_iso8601z(snapshot.captured_at),
                snapshot.captured_by,
                str(snapshot.record.get("workflow_stage") or "-"),
            ]
            for snapshot in snapshots
        ],
        title=f"Snapshots for {args.item_id}:",
    )
    return ExitCode.SUCCESS


def _cmd_audit(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    sink = _storage_call(SqliteAuditSink, _existing_state_db(config))
    entries = _storage_call(sink.list_entries, args.item_id, include_archived=not args.active_only)

    if args.json:
        _emit_json(
            {"command": "audit", "item_id": args.item_id, "entries": [e.to_dict() for e in entries]}
        )
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    if not entries:
        renderer.text(f"No audit entries recorded for {args.item_id}.")
        return ExitCode.SUCCESS
    renderer.table(
        ["TIMESTAMP", "ACTION", "ACTOR", "BEFORE", "AFTER VERSION"],
        [
            [
                datetime_to_iso8601z(entry.timestamp),
                entry.action.value,
                entry.actor_id,
                entry.before_snapshot_ref or "-",
                "-" if entry.after_state is None else str(entry.after_state.get("version", "-")),
            ]
            for entry in entries
        ],
        title=f"Audit trail for {args.item_id}:",
    )
    return ExitCode.SUCCESS


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    redacted = redact_config(config)

    if args.json:
        _emit_json({"command": "config", "config": redacted})
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    renderer.kv("Config file", args.config_path or "(default lookup)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return ExitCode.SUCCESS


def _cmd_migrate(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    _require_sqlite(config)
    state_db = open_state_db(config)
    version = _storage_call(state_db.migrate)
    history = _storage_call(state_db.schema_history)

    if args.json:
        _emit_json(
            {
                "command": "migrate",
                "state_db": state_db.path.as_posix(),
                "schema_version": version,
                "migrations": [
                    {"version": record.version, "name": record.name, "applied_at": record.applied_at}
                    for record in history
                ],
            }
        )
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    renderer.kv("State DB", state_db.path.as_posix())
    renderer.kv("Schema version", version)
    renderer.table(
        ["VERSION", "NAME", "APPLIED AT"],
        [[str(record.version), record.name, record.applied_at] for record in history],
        title="Applied migrations:",
    )
    return ExitCode.SUCCESS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=bool(getattr(args, "no_color", False)))


def _display_value(value: object) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, ensure_ascii=False)
    return str(value)


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    try:
        config = load_config(
            args.config_path, cli_overrides=_parse_overrides(getattr(args, "overrides", []))
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc
    # stdout is reserved for command output.
    setup_logging(config["observability"], log_to_stdout=False)
    return config


def _parse_overrides(raw_overrides: Sequence[str]) -> dict[str, object]:
    """Parse ``KEY=VALUE`` pairs; values are read as JSON when they parse, else as text."""

    overrides: dict[str, object] = {}
    for raw in raw_overrides:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise CLIError(
                f"invalid --set value {raw!r}: expected KEY=VALUE", exit_code=ExitCode.CONFIG_ERROR
            )
        try:
            overrides[key.strip()] = json.loads(value)
        except json.JSONDecodeError:
            overrides[key.strip()] = value
    return overrides


def _require_sqlite(config: Mapping[str, Any]) -> None:
    backend = config["persistence"]["backend"]
    if backend != "sqlite":
        raise CLIError(
            f"persistence.backend is {backend!r}; this command needs the sqlite backend",
            exit_code=ExitCode.CONFIG_ERROR,
        )


def _existing_state_db(config: Mapping[str, Any]) -> StateDB:
    _require_sqlite(config)
    path = Path(config["persistence"]["state_db"])
    if not path.exists():
        raise CLIError(
            f"state DB not found: {path.as_posix()} (run `itemflow migrate` first)",
            exit_code=ExitCode.CONFIG_ERROR,
        )
    try:
        return open_state_db(config)
    except (StateDBError, ValueError) as exc:
        raise CLIError(str(exc), exit_code=ExitCode.STORAGE_ERROR) from exc


def _storage_call(func: Any, *args: Any, **kwargs: Any) -> Any:
    try:
        return func(*args, **kwargs)
    except StateDBError as exc:
        raise CLIError(f"state DB error: {exc}", exit_code=ExitCode.STORAGE_ERROR) from exc


__all__ = ["CLIError", "ExitCode", "build_parser", "cli_entrypoint", "main", "run_cli"]
