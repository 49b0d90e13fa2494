"""Wire a ready-to-use orchestrator from an effective config mapping."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from itemflow.collaborators import (
    AttachmentStore,
    AuditSink,
    BackupSink,
    Clock,
    DependencyResolver,
    InMemoryAuditSink,
    InMemoryBackupSink,
    ItemCache,
    NotificationChannel,
    StoreDependencyResolver,
)
from itemflow.config.schema import default_config
from itemflow.domain.events import PipelineEvent, redact_sensitive
from itemflow.observability.events import EventBus
from itemflow.persistence.gateway import PersistenceGateway
from itemflow.persistence.sqlite_store import SqliteAuditSink, SqliteBackupSink, SqliteItemStore
from itemflow.persistence.state_db import StateDB
from itemflow.persistence.store import InMemoryItemStore, ItemStore
from itemflow.pipeline.conflicts import ConflictStrategy
from itemflow.pipeline.options import (
    AuditSettings,
    BackupSettings,
    MutationOptions,
    NotificationSettings,
)
from itemflow.pipeline.orchestrator import MutationOrchestrator
from itemflow.pipeline.side_effects import AuditLogger, BackupRecorder, NotificationDispatcher
from itemflow.pipeline.validation import load_rule_set

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Runtime:
    """Everything ``build_orchestrator`` created, for callers that need the parts."""

    orchestrator: MutationOrchestrator
    store: ItemStore
    audit_sink: AuditSink
    backup_sink: BackupSink
    events: EventBus
    state_db: StateDB | None


def default_options_from_config(config: Mapping[str, Any]) -> MutationOptions:
    pipeline = dict(config.get("pipeline", {}))
    rules_file = pipeline.get("rules_file")
    return MutationOptions(
        validation_rules=load_rule_set(rules_file) if rules_file else {},
        versioning_enabled=bool(pipeline.get("versioning_enabled", False)),
        conflict_strategy=ConflictStrategy.parse(pipeline.get("default_conflict_strategy", "fail")),
        notification=NotificationSettings(enabled=bool(pipeline.get("notifications_enabled", False))),
        audit=AuditSettings(enabled=bool(pipeline.get("audit_enabled", True))),
        backup=BackupSettings(enabled=bool(pipeline.get("backup_enabled", False))),
        blocking_cleanup=bool(pipeline.get("blocking_cleanup", False)),
        side_effect_timeout_seconds=float(
            pipeline.get("side_effect_timeout_seconds", 5.0)
        ),
    )


def log_critical_event(event: PipelineEvent) -> None:
    """Write committed and aborted mutations to the log with secrets masked."""
    redacted = redact_sensitive(event)
    logger.info(
        "mutation %s",
        redacted.event_type.value,
        extra={"event_id": redacted.event_id, "payload": redacted.payload},
    )


def open_state_db(config: Mapping[str, Any]) -> StateDB:
    persistence = config["persistence"]
    return StateDB(persistence["state_db"], busy_timeout_ms=persistence["busy_timeout_ms"])


def build_orchestrator(
    config: Mapping[str, Any] | None = None,
    *,
    channels: Sequence[NotificationChannel] = (),
    attachments: AttachmentStore | None = None,
    dependencies: DependencyResolver | None = None,
    cache: ItemCache | None = None,
    clock: Clock | None = None,
) -> Runtime:
    """Build stores, side-effect dispatchers and the orchestrator from ``config``.

    ``config`` is an effective config as returned by ``load_config``; built-in
    defaults are used when it is omitted.
    """
    effective: Mapping[str, Any] = config if config is not None else default_config()

    state_db: StateDB | None = None
    store: ItemStore
    audit_sink: AuditSink
    backup_sink: BackupSink
    if effective["persistence"]["backend"] == "sqlite":
        state_db = open_state_db(effective)
        store = SqliteItemStore(state_db)
        audit_sink = SqliteAuditSink(state_db)
        backup_sink = SqliteBackupSink(state_db)
    else:
        store = InMemoryItemStore()
        audit_sink = InMemoryAuditSink()
        backup_sink = InMemoryBackupSink()

    events = EventBus(
        buffer_size=effective["events"]["buffer_size"], persist_event=log_critical_event
    )
    orchestrator = MutationOrchestrator(
        PersistenceGateway(store),
        clock=clock,
        notifications=NotificationDispatcher(channels),
        audit=AuditLogger(audit_sink),
        backups=BackupRecorder(backup_sink),
        attachments=attachments,
        dependencies=dependencies or StoreDependencyResolver(store),
        cache=cache,
        events=events,
        default_options=default_options_from_config(effective),
    )
    logger.info(
        "orchestrator ready",
        extra={
            "backend": effective["persistence"]["backend"],
            "channels": [channel.name for channel in channels],
        },
    )
    return Runtime(
        orchestrator=orchestrator,
        store=store,
        audit_sink=audit_sink,
        backup_sink=backup_sink,
        events=events,
        state_db=state_db,
    )


__all__ = [
    "Runtime",
    "build_orchestrator",
    "default_options_from_config",
    "log_critical_event",
    "open_state_db",
]
