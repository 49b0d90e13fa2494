"""
itemflow — SQLite state database

File: src/itemflow/persistence/state_db.py

Purpose
- Own the SQLite file behind the durable item store: schema, migrations, connections.

Behavior
- ``migrate`` applies each numbered migration once and records a SHA-256 of its SQL;
  a recorded migration whose SQL has since changed is refused.
- Every call opens a short-lived WAL connection; statements that hit a locked database are
  retried a bounded number of times with doubling waits.
- ``sqlite3.IntegrityError`` passes through unchanged so stores can map it to domain
  errors; any other SQLite failure becomes a ``StateDBError``.
"""

from __future__ import annotations

import hashlib
import sqlite3
import time
from collections.abc import Iterator, Sequence
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from itemflow.constants import STATE_DB_SCHEMA_VERSION
from itemflow.domain.models import AuditAction, WorkflowStage

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
_RETRY_BASE_DELAY_SECONDS: Final[float] = 0.025


def _one_of(values: Sequence[str]) -> str:
    return ", ".join(f"'{value}'" for value in sorted(values))


_VERSIONS_TABLE: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    name: str
    statements: tuple[str, ...]
    checksum: str = field(init=False)

    def __post_init__(self) -> None:
        digest = hashlib.sha256(f"{self.version}:{self.name}".encode())
        for statement in self.statements:
            # Whitespace-only edits do not change the checksum.
            digest.update(b"\x00")
            digest.update(" ".join(statement.split()).encode("utf-8"))
        object.__setattr__(self, "checksum", digest.hexdigest())


MIGRATIONS: Final[tuple[Migration, ...]] = (
    Migration(
        1,
        "initial_item_schema",
        (
            f"""
            CREATE TABLE items (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL CHECK (length(name) > 0),
                category TEXT,
                status TEXT,
                assignee TEXT,
                created_by TEXT NOT NULL,
                workflow_stage TEXT CHECK (
                    workflow_stage IS NULL
                    OR workflow_stage IN ({_one_of([stage.value for stage in WorkflowStage])})
                ),
                version INTEGER NOT NULL CHECK (version >= 1),
                tags_json TEXT NOT NULL,
                custom_fields_json TEXT NOT NULL,
                metadata_json TEXT NOT NULL,
                dependencies_json TEXT NOT NULL,
                linked_items_json TEXT NOT NULL,
                attachment_ids_json TEXT NOT NULL,
                reminder_settings_json TEXT NOT NULL,
                external_refs_json TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
            """
            CREATE TABLE item_snapshots (
                item_id TEXT NOT NULL,
                version INTEGER NOT NULL CHECK (version >= 1),
                captured_at TEXT NOT NULL,
                captured_by TEXT NOT NULL,
                record_json TEXT NOT NULL,
                PRIMARY KEY (item_id, version)
            )
            """,
            f"""
            CREATE TABLE audit_entries (
                id TEXT PRIMARY KEY,
                item_id TEXT NOT NULL,
                action TEXT NOT NULL CHECK (
                    action IN ({_one_of([action.value for action in AuditAction])})
                ),
                actor_id TEXT NOT NULL,
                before_snapshot_ref TEXT,
                after_state_json TEXT,
                timestamp TEXT NOT NULL,
                archived INTEGER NOT NULL DEFAULT 0 CHECK (archived IN (0, 1))
            )
            """,
            "CREATE INDEX idx_items_created ON items(created_at, id)",
            "CREATE INDEX idx_audit_entries_item ON audit_entries(item_id, timestamp)",
        ),
    ),
    Migration(
        2,
        "item_backups",
        (
            """
            CREATE TABLE item_backups (
                item_id TEXT NOT NULL,
                version INTEGER NOT NULL CHECK (version >= 1),
                updated_at TEXT NOT NULL,
                record_json TEXT NOT NULL,
                PRIMARY KEY (item_id, version)
            )
            """,
        ),
    ),
)


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


class StateDBError(RuntimeError):
    """A SQLite failure other than a constraint violation."""


class StateDBBusyError(StateDBError):
    """The database stayed locked through every retry."""


class StateDBMigrationError(StateDBError):
    """The on-disk schema cannot be brought to this build's version."""


class StateDBCorruptionError(StateDBError):
    """SQLite reported a damaged database file."""


_LOCKED_MARKERS: Final[tuple[str, ...]] = ("database is locked", "is locked", "database is busy")
_CORRUPT_MARKERS: Final[tuple[str, ...]] = ("malformed", "file is not a database")


def _is_locked(exc: sqlite3.Error) -> bool:
    if getattr(exc, "sqlite_errorcode", None) in (sqlite3.SQLITE_BUSY, sqlite3.SQLITE_LOCKED):
        return True
    return any(marker in str(exc).lower() for marker in _LOCKED_MARKERS)


class StateDB:
    """Connection factory and migration runner for one SQLite file."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit

    @property
    def path(self) -> Path:
        return self._path

    # -- connections ------------------------------------------------------

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            mode = conn.execute("PRAGMA journal_mode=WAL").fetchone()
            if mode is None or str(mode[0]).lower() != "wal":
                raise StateDBError(f"failed to enable WAL journal mode for {self._path}")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, *, conn: sqlite3.Connection | None = None) -> Iterator[sqlite3.Connection]:
        """``BEGIN IMMEDIATE`` ... ``COMMIT``; any exception rolls back and propagates."""
        if conn is None:
            with self.connection() as owned, self.transaction(conn=owned) as active:
                yield active
            return
        self._run(conn, "BEGIN IMMEDIATE", (), "begin transaction")
        try:
            yield conn
        except BaseException:
            self._run(conn, "ROLLBACK", (), "rollback transaction")
            raise
        self._run(conn, "COMMIT", (), "commit transaction")

    # -- statements -------------------------------------------------------

    def execute(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> int:
        """Run one write statement and return the affected row count."""
        if conn is not None:
            return self._run(conn, sql, params, "execute statement").rowcount
        with self.transaction() as active:
            return self._run(active, sql, params, "execute statement").rowcount

    def query_all(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> list[dict[str, RowValue]]:
        if conn is not None:
            return [dict(row) for row in self._run(conn, sql, params, "query all").fetchall()]
        with self.connection() as owned:
            return self.query_all(sql, params, conn=owned)

    def query_one(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> dict[str, RowValue] | None:
        if conn is not None:
            row = self._run(conn, sql, params, "query one").fetchone()
            return None if row is None else dict(row)
        with self.connection() as owned:
            return self.query_one(sql, params, conn=owned)

    # -- schema -----------------------------------------------------------

    def migrate(self) -> int:
        """Bring the file up to ``STATE_DB_SCHEMA_VERSION``; returns the resulting version."""
        with self.connection() as conn:
            self._run(conn, _VERSIONS_TABLE, (), "create schema_versions table")
            applied = {record.version: record for record in self._history(conn)}
            newest = max(applied, default=0)
            if newest > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    f"database schema is newer than supported by this build "
                    f"(db={newest}, code={STATE_DB_SCHEMA_VERSION})"
                )
            for migration in MIGRATIONS[:STATE_DB_SCHEMA_VERSION]:
                record = applied.get(migration.version)
                if record is None:
                    self._apply(conn, migration)
                elif record.checksum != migration.checksum:
                    raise StateDBMigrationError(
                        f"migration checksum mismatch for version {migration.version}: "
                        f"db={record.checksum} code={migration.checksum}"
                    )
            return self.schema_version(conn=conn)

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> int:
        row = self.query_one("SELECT COALESCE(MAX(version), 0) AS v FROM schema_versions", conn=conn)
        return 0 if row is None else int(row["v"] or 0)

    def schema_history(self) -> list[MigrationRecord]:
        with self.connection() as conn:
            return self._history(conn)

    # -- maintenance ------------------------------------------------------

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Problems reported by ``PRAGMA integrity_check``; empty when the file is sound."""
        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        found = tuple(
            str(next(iter(row.values())))
            for row in self.query_all(f"PRAGMA integrity_check({int(max_errors)})")
        )
        return () if found == ("ok",) else found

    def backup(self, destination: str | Path) -> Path:
        target_path = Path(destination).expanduser()
        target_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as source, closing(sqlite3.connect(target_path)) as target:
            source.backup(target)
        return target_path

    # -- internals --------------------------------------------------------

    def _apply(self, conn: sqlite3.Connection, migration: Migration) -> None:
        label = f"apply migration {migration.version}"
        with self.transaction(conn=conn):
            for statement in migration.statements:
                self._run(conn, statement, (), label)
            self._run(
                conn,
                "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                "VALUES (?, ?, ?, ?)",
                (migration.version, migration.name, migration.checksum, _now_iso()),
                label,
            )

    def _history(self, conn: sqlite3.Connection) -> list[MigrationRecord]:
        rows = self._run(
            conn,
            "SELECT version, name, checksum, applied_at FROM schema_versions ORDER BY version",
            (),
            "load schema_versions",
        ).fetchall()
        return [
            MigrationRecord(
                version=int(row["version"]),
                name=str(row["name"]),
                checksum=str(row["checksum"]),
                applied_at=str(row["applied_at"]),
            )
            for row in rows
        ]

    def _run(
        self, conn: sqlite3.Connection, sql: str, params: SQLParams, operation: str
    ) -> sqlite3.Cursor:
        attempt = 0
        while True:
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if _is_locked(exc) and attempt < self._busy_retry_limit:
                    time.sleep(_RETRY_BASE_DELAY_SECONDS * (2**attempt))
                    attempt += 1
                    continue
                raise self._wrap(exc, operation, attempts=attempt + 1) from exc

    def _wrap(self, exc: sqlite3.Error, operation: str, *, attempts: int) -> StateDBError:
        lowered = str(exc).lower()
        if any(marker in lowered for marker in _CORRUPT_MARKERS):
            return StateDBCorruptionError(
                f"{operation} failed for {self._path}: {exc}; "
                "run integrity_check() and restore from a backup()"
            )
        if _is_locked(exc):
            return StateDBBusyError(
                f"{operation} still locked after {attempts} attempt(s) on {self._path}: {exc}"
            )
        return StateDBError(f"{operation} failed for {self._path}: {exc}")


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MIGRATIONS",
    "Migration",
    "MigrationRecord",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
]
