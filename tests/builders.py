"""Shared deterministic builders and fake collaborators for itemflow tests."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Final

from itemflow.collaborators import (
    DependencyResolution,
    InMemoryAuditSink,
    InMemoryBackupSink,
    RecordingChannel,
)
from itemflow.constants import CAPABILITY_ADMIN, CAPABILITY_APPROVE, CAPABILITY_WRITE
from itemflow.domain import ids
from itemflow.domain.models import Actor, Item, JSONValue
from itemflow.observability.events import EventBus
from itemflow.persistence.gateway import PersistenceGateway
from itemflow.persistence.store import InMemoryItemStore
from itemflow.pipeline.options import MutationOptions
from itemflow.pipeline.orchestrator import MutationOrchestrator
from itemflow.pipeline.side_effects import AuditLogger, BackupRecorder, NotificationDispatcher

BASE_TS: Final[datetime] = datetime(2026, 3, 1, 9, 0, 0, tzinfo=UTC)

OWNER: Final[Actor] = Actor("user-owner", frozenset({CAPABILITY_WRITE}))
OTHER_WRITER: Final[Actor] = Actor("user-other", frozenset({CAPABILITY_WRITE}))
ADMIN: Final[Actor] = Actor("user-admin", frozenset({CAPABILITY_ADMIN}))
APPROVER: Final[Actor] = Actor("user-approver", frozenset({CAPABILITY_WRITE, CAPABILITY_APPROVE}))
READER: Final[Actor] = Actor("user-reader", frozenset())


def fixed_now(seed: int = 0) -> datetime:
    return BASE_TS + timedelta(seconds=seed)


def item_id(seed: int) -> str:
    byte_value = (seed % 251) + 1
    return ids.generate_item_id(
        timestamp_ms=1_800_000_000_000 + seed,
        randbytes=lambda size: bytes([byte_value]) * size,
    )


def make_item(seed: int = 1, **overrides: object) -> Item:
    values: dict[str, object] = {
        "id": item_id(seed),
        "name": f"Item {seed}",
        "created_by": OWNER.actor_id,
        "category": "ops",
        "version": 1,
        "created_at": fixed_now(seed),
        "updated_at": fixed_now(seed),
    }
    values.update(overrides)
    return Item(**values)  # type: ignore[arg-type]


class TickingClock:
    """Clock that advances one second per reading, starting a day after ``BASE_TS``."""

    def __init__(self, start: datetime | None = None) -> None:
        self._current = start if start is not None else BASE_TS + timedelta(days=1)

    def now(self) -> datetime:
        self._current += timedelta(seconds=1)
        return self._current


@dataclass(slots=True)
class FailingChannel:
    name: str = "failing"
    calls: int = 0

    def send(self, settings: Mapping[str, JSONValue], payload: Mapping[str, JSONValue]) -> None:
        del settings, payload
        self.calls += 1
        raise ConnectionError("smtp relay unreachable")


@dataclass(slots=True)
class SlowChannel:
    name: str = "slow"
    delay_seconds: float = 5.0

    async def send(self, settings: Mapping[str, JSONValue], payload: Mapping[str, JSONValue]) -> None:
        del settings, payload
        await asyncio.sleep(self.delay_seconds)


@dataclass(slots=True)
class FailingAuditSink:
    appended: int = 0

    def append(self, entry: object) -> None:
        del entry
        self.appended += 1
        raise OSError("audit volume is read-only")

    def archive(self, item_id: str) -> None:
        del item_id
        raise OSError("audit volume is read-only")


@dataclass(slots=True)
class FailingBackupSink:
    saved: int = 0

    def save(self, item: Item) -> None:
        del item
        self.saved += 1
        raise OSError("backup bucket is full")


@dataclass(slots=True)
class RecordingAttachments:
    calls: list[tuple[str, tuple[str, ...]]] = field(default_factory=list)
    fail: bool = False

    def cleanup(self, item_id: str, attachment_ids: Sequence[str]) -> None:
        self.calls.append((item_id, tuple(attachment_ids)))
        if self.fail:
            raise OSError("blob store unavailable")


@dataclass(slots=True)
class RecordingDependencies:
    known: set[str] = field(default_factory=set)

    def resolve(self, item_ids: Sequence[str]) -> DependencyResolution:
        resolved = tuple(item for item in item_ids if item in self.known)
        missing = tuple(item for item in item_ids if item not in self.known)
        return DependencyResolution(resolved, missing)


@dataclass(slots=True)
class RecordingCache:
    invalidated: list[str] = field(default_factory=list)

    def invalidate(self, item_id: str) -> None:
        self.invalidated.append(item_id)


@dataclass(slots=True)
class Harness:
    orchestrator: MutationOrchestrator
    store: InMemoryItemStore
    audit_sink: InMemoryAuditSink
    backups: InMemoryBackupSink
    channel: RecordingChannel
    cache: RecordingCache
    events: EventBus


def build_harness(
    *,
    channels: Sequence[object] = (),
    audit_sink: object | None = None,
    backup_sink: object | None = None,
    attachments: object | None = None,
    dependencies: object | None = None,
    default_options: MutationOptions | None = None,
) -> Harness:
    store = InMemoryItemStore()
    sink = InMemoryAuditSink()
    backups = InMemoryBackupSink()
    channel = RecordingChannel()
    cache = RecordingCache()
    events = EventBus(buffer_size=2048)
    orchestrator = MutationOrchestrator(
        PersistenceGateway(store),
        clock=TickingClock(),
        notifications=NotificationDispatcher([channel, *channels]),  # type: ignore[list-item]
        audit=AuditLogger(audit_sink if audit_sink is not None else sink),  # type: ignore[arg-type]
        backups=BackupRecorder(backup_sink if backup_sink is not None else backups),  # type: ignore[arg-type]
        attachments=attachments,  # type: ignore[arg-type]
        dependencies=dependencies,  # type: ignore[arg-type]
        cache=cache,
        events=events,
        default_options=default_options,
    )
    return Harness(
        orchestrator=orchestrator,
        store=store,
        audit_sink=sink,
        backups=backups,
        channel=channel,
        cache=cache,
        events=events,
    )


def audited(**extra: object) -> dict[str, object]:
    """Options mapping with audit and notification switched on."""
    options: dict[str, object] = {"audit": {"enabled": True}, "notification": {"enabled": True}}
    options.update(extra)
    return options
