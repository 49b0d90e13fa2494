"""External collaborator boundaries and their in-process defaults.

Every method here may be implemented sync or async; the pipeline awaits
async implementations and runs sync ones on a worker thread.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from itemflow.domain.models import AuditEntry, Item, JSONValue
from itemflow.persistence.store import ItemStore


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC)


@runtime_checkable
class NotificationChannel(Protocol):
    name: str

    def send(self, settings: Mapping[str, JSONValue], payload: Mapping[str, JSONValue]) -> object: ...


@runtime_checkable
class AuditSink(Protocol):
    def append(self, entry: AuditEntry) -> object: ...

    def archive(self, item_id: str) -> object: ...


@runtime_checkable
class BackupSink(Protocol):
    def save(self, item: Item) -> object: ...


@runtime_checkable
class AttachmentStore(Protocol):
    def cleanup(self, item_id: str, attachment_ids: Sequence[str]) -> object: ...


@dataclass(frozen=True, slots=True)
class DependencyResolution:
    resolved: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()


@runtime_checkable
class DependencyResolver(Protocol):
    def resolve(self, item_ids: Sequence[str]) -> DependencyResolution: ...


@runtime_checkable
class ItemCache(Protocol):
    def invalidate(self, item_id: str) -> object: ...


class NullItemCache:
    def invalidate(self, item_id: str) -> None:
        del item_id


class NullAttachmentStore:
    def cleanup(self, item_id: str, attachment_ids: Sequence[str]) -> None:
        del item_id, attachment_ids


class StoreDependencyResolver:
    """Resolves dependency ids against the item store."""

    def __init__(self, store: ItemStore) -> None:
        self._store = store

    def resolve(self, item_ids: Sequence[str]) -> DependencyResolution:
        resolved: list[str] = []
        missing: list[str] = []
        for item_id in item_ids:
            (resolved if self._store.get(item_id) is not None else missing).append(item_id)
        return DependencyResolution(tuple(resolved), tuple(missing))


@dataclass(slots=True)
class InMemoryAuditSink:
    """Append-only audit list kept in memory."""

    entries: list[AuditEntry] = field(default_factory=list)
    archived_item_ids: set[str] = field(default_factory=set)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def append(self, entry: AuditEntry) -> AuditEntry:
        with self._lock:
            self.entries.append(entry)
        return entry

    def archive(self, item_id: str) -> int:
        with self._lock:
            self.archived_item_ids.add(item_id)
            return sum(1 for entry in self.entries if entry.item_id == item_id)

    def list_entries(self, item_id: str, *, include_archived: bool = True) -> list[AuditEntry]:
        with self._lock:
            if not include_archived and item_id in self.archived_item_ids:
                return []
            return [entry for entry in self.entries if entry.item_id == item_id]


@dataclass(slots=True)
class InMemoryBackupSink:
    """Backup copies kept in memory, one per (item_id, version)."""

    copies: dict[tuple[str, int], Item] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def save(self, item: Item) -> Item:
        with self._lock:
            return self.copies.setdefault((item.id, item.version), item)

    def list_backups(self, item_id: str) -> list[Item]:
        with self._lock:
            return [
                item for (stored_id, _), item in sorted(self.copies.items()) if stored_id == item_id
            ]


@dataclass(slots=True)
class RecordingChannel:
    """Notification channel that keeps every payload it receives."""

    name: str = "recording"
    sent: list[dict[str, JSONValue]] = field(default_factory=list)

    def send(self, settings: Mapping[str, JSONValue], payload: Mapping[str, JSONValue]) -> None:
        del settings
        self.sent.append(dict(payload))


def channel_names(channels: Iterable[NotificationChannel]) -> tuple[str, ...]:
    names = tuple(channel.name for channel in channels)
    if len(set(names)) != len(names):
        raise ValueError(f"notification channel names must be unique: {names}")
    return names


__all__ = [
    "AttachmentStore",
    "AuditSink",
    "BackupSink",
    "Clock",
    "DependencyResolution",
    "DependencyResolver",
    "InMemoryAuditSink",
    "InMemoryBackupSink",
    "ItemCache",
    "NotificationChannel",
    "NullAttachmentStore",
    "NullItemCache",
    "RecordingChannel",
    "StoreDependencyResolver",
    "SystemClock",
    "channel_names",
]
