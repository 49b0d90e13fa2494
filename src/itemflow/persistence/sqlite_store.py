"""
itemflow — SQLite item, snapshot, audit and backup storage

File: src/itemflow/persistence/sqlite_store.py

Purpose
- Durable item store, snapshot store, audit sink and backup sink on ``StateDB``.

Storage layout
- ``items``: one row per item; facets kept as ``*_json`` columns, full record in ``payload_json``.
- ``item_snapshots``: one row per ``(item_id, version)``; inserts are idempotent.
- ``audit_entries``: append-only; ``archived`` is the only column ever updated.
- ``item_backups``: one full record copy per ``(item_id, version)`` that was backed up.

Concurrency
- Updates are a single ``UPDATE ... WHERE id = ? AND version = ?``; zero affected rows means
  the compare-and-swap lost and the stored version is re-read to report the conflict.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Final

from itemflow.domain.models import (
    ITEM_FACETS,
    AuditEntry,
    Item,
    ItemSnapshot,
    canonical_json,
    datetime_to_iso8601z,
)
from itemflow.persistence.state_db import RowValue, StateDB, StateDBError
from itemflow.persistence.store import DuplicateItemError, VersionConflict

_MAX_PAGE_SIZE: Final[int] = 1_000

_ITEM_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "name",
    "category",
    "status",
    "assignee",
    "created_by",
    "workflow_stage",
    "version",
    *(f"{facet}_json" for facet in ITEM_FACETS),
    "payload_json",
    "created_at",
    "updated_at",
)


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.migrate()

    @staticmethod
    def _validate_limit(limit: int) -> None:
        if limit <= 0 or limit > _MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {_MAX_PAGE_SIZE}]")


class SqliteItemStore(_BaseRepo):
    """Item and snapshot storage with version compare-and-swap."""

    def get(self, item_id: str) -> Item | None:
        row = self._db.query_one("SELECT payload_json FROM items WHERE id = ?", (item_id,))
        if row is None:
            return None
        return Item.from_json(_row_text(row, "payload_json", "items.payload_json"))

    def insert_conditional(self, item: Item) -> Item:
        placeholders = ", ".join("?" for _ in _ITEM_COLUMNS)
        try:
            self._db.execute(
                f"INSERT INTO items ({', '.join(_ITEM_COLUMNS)}) VALUES ({placeholders})",
                _item_row(item),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateItemError(f"item {item.id!r} already exists") from exc
        return item

    def update_conditional(self, item: Item, expected_version: int) -> Item | VersionConflict:
        assignments = ", ".join(f"{column} = ?" for column in _ITEM_COLUMNS if column != "id")
        values = _item_row(item)[1:]
        with self._db.transaction() as conn:
            changed = self._db.execute(
                f"UPDATE items SET {assignments} WHERE id = ? AND version = ?",
                (*values, item.id, expected_version),
                conn=conn,
            )
            if changed == 1:
                return item
            row = self._db.query_one(
                "SELECT version FROM items WHERE id = ?", (item.id,), conn=conn
            )
        actual = None if row is None else _row_int(row, "version", "items.version")
        return VersionConflict(item.id, expected_version, actual)

    def delete(self, item_id: str) -> Item | None:
        with self._db.transaction() as conn:
            row = self._db.query_one(
                "SELECT payload_json FROM items WHERE id = ?", (item_id,), conn=conn
            )
            if row is None:
                return None
            self._db.execute("DELETE FROM items WHERE id = ?", (item_id,), conn=conn)
        return Item.from_json(_row_text(row, "payload_json", "items.payload_json"))

    def list_items(self, *, limit: int | None = None) -> list[Item]:
        page = _MAX_PAGE_SIZE if limit is None else limit
        self._validate_limit(page)
        rows = self._db.query_all(
            "SELECT payload_json FROM items ORDER BY created_at ASC, id ASC LIMIT ?", (page,)
        )
        return [Item.from_json(_row_text(row, "payload_json", "items.payload_json")) for row in rows]

    def put_snapshot(self, snapshot: ItemSnapshot) -> ItemSnapshot:
        with self._db.transaction() as conn:
            self._db.execute(
                """
                INSERT INTO item_snapshots (item_id, version, captured_at, captured_by, record_json)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(item_id, version) DO NOTHING
                """,
                (
                    snapshot.item_id,
                    snapshot.version,
                    datetime_to_iso8601z(snapshot.captured_at),
                    snapshot.captured_by,
                    canonical_json(snapshot.record),
                ),
                conn=conn,
            )
            stored = self._load_snapshot(snapshot.item_id, snapshot.version, conn=conn)
        if stored is None:
            raise StateDBError(f"snapshot {snapshot.ref} missing after insert")
        return stored

    def get_snapshot(self, item_id: str, version: int) -> ItemSnapshot | None:
        return self._load_snapshot(item_id, version)

    def list_snapshots(self, item_id: str) -> list[ItemSnapshot]:
        rows = self._db.query_all(
            """
            SELECT item_id, version, captured_at, captured_by, record_json
            FROM item_snapshots
            WHERE item_id = ?
            ORDER BY version ASC
            """,
            (item_id,),
        )
        return [_snapshot_from_row(row) for row in rows]

    def _load_snapshot(
        self, item_id: str, version: int, *, conn: sqlite3.Connection | None = None
    ) -> ItemSnapshot | None:
        row = self._db.query_one(
            """
            SELECT item_id, version, captured_at, captured_by, record_json
            FROM item_snapshots
            WHERE item_id = ? AND version = ?
            """,
            (item_id, version),
            conn=conn,
        )
        return None if row is None else _snapshot_from_row(row)


class SqliteAuditSink(_BaseRepo):
    """Append-only audit storage; archival flags entries of deleted items."""

    def append(self, entry: AuditEntry) -> AuditEntry:
        self._db.execute(
            """
            INSERT INTO audit_entries (
                id,
                item_id,
                action,
                actor_id,
                before_snapshot_ref,
                after_state_json,
                timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.item_id,
                entry.action.value,
                entry.actor_id,
                entry.before_snapshot_ref,
                None if entry.after_state is None else canonical_json(entry.after_state),
                datetime_to_iso8601z(entry.timestamp),
            ),
        )
        return entry

    def archive(self, item_id: str) -> int:
        return self._db.execute(
            "UPDATE audit_entries SET archived = 1 WHERE item_id = ? AND archived = 0", (item_id,)
        )

    def list_entries(self, item_id: str, *, include_archived: bool = True) -> list[AuditEntry]:
        sql = """
            SELECT id, item_id, action, actor_id, before_snapshot_ref, after_state_json, timestamp
            FROM audit_entries
            WHERE item_id = ?
        """
        if not include_archived:
            sql += " AND archived = 0"
        sql += " ORDER BY timestamp ASC, id ASC"
        rows = self._db.query_all(sql, (item_id,))
        return [_audit_entry_from_row(row) for row in rows]



class SqliteBackupSink(_BaseRepo):
    """Full item copies keyed by (item_id, version); rewriting a version is a no-op."""

    def save(self, item: Item) -> Item:
        self._db.execute(
            """
            INSERT OR IGNORE INTO item_backups (item_id, version, updated_at, record_json)
            VALUES (?, ?, ?, ?)
            """,
            (
                item.id,
                item.version,
                datetime_to_iso8601z(item.updated_at),
                canonical_json(item.to_dict()),
            ),
        )
        return item

    def list_backups(self, item_id: str) -> list[Item]:
        rows = self._db.query_all(
            "SELECT record_json FROM item_backups WHERE item_id = ? ORDER BY version ASC",
            (item_id,),
        )
        return [
            Item.from_json(_row_text(row, "record_json", "item_backups.record_json")) for row in rows
        ]


def _item_row(item: Item) -> tuple[RowValue, ...]:
    record = item.to_dict()
    values: dict[str, RowValue] = {
        "id": item.id,
        "name": item.name,
        "category": item.category,
        "status": item.status,
        "assignee": item.assignee,
        "created_by": item.created_by,
        "workflow_stage": None if item.workflow_stage is None else item.workflow_stage.value,
        "version": item.version,
        "payload_json": canonical_json(record),
        "created_at": datetime_to_iso8601z(item.created_at),
        "updated_at": datetime_to_iso8601z(item.updated_at),
    }
    for facet in ITEM_FACETS:
        values[f"{facet}_json"] = canonical_json(record[facet])
    return tuple(values[column] for column in _ITEM_COLUMNS)


def _snapshot_from_row(row: dict[str, RowValue]) -> ItemSnapshot:
    return ItemSnapshot(
        item_id=_row_text(row, "item_id", "item_snapshots.item_id"),
        version=_row_int(row, "version", "item_snapshots.version"),
        record=json.loads(_row_text(row, "record_json", "item_snapshots.record_json")),
        captured_at=_row_text(row, "captured_at", "item_snapshots.captured_at"),  # type: ignore[arg-type]
        captured_by=_row_text(row, "captured_by", "item_snapshots.captured_by"),
    )


def _audit_entry_from_row(row: dict[str, RowValue]) -> AuditEntry:
    raw_after = row.get("after_state_json")
    return AuditEntry.from_dict(
        {
            "id": _row_text(row, "id", "audit_entries.id"),
            "item_id": _row_text(row, "item_id", "audit_entries.item_id"),
            "action": _row_text(row, "action", "audit_entries.action"),
            "actor_id": _row_text(row, "actor_id", "audit_entries.actor_id"),
            "before_snapshot_ref": row.get("before_snapshot_ref"),
            "after_state": None if raw_after is None else json.loads(str(raw_after)),
            "timestamp": _row_text(row, "timestamp", "audit_entries.timestamp"),
        }
    )


def _row_text(row: dict[str, RowValue], key: str, path: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise StateDBError(f"{path} must be text, got {type(value).__name__}")
    return value


def _row_int(row: dict[str, RowValue], key: str, path: str) -> int:
    value = row.get(key)
    if not isinstance(value, int):
        raise StateDBError(f"{path} must be an integer, got {type(value).__name__}")
    return value


__all__ = ["SqliteAuditSink", "SqliteBackupSink", "SqliteItemStore"]
