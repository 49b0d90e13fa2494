"""Store protocols and the reference in-memory store.

The pipeline treats storage as an opaque keyed store that supports three
conditional writes: insert-if-absent, update-if-version, and delete. Stores
are synchronous; the gateway moves calls off the event loop.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, replace
from typing import Protocol, runtime_checkable

from itemflow.domain.models import Item, ItemSnapshot


@dataclass(frozen=True, slots=True)
class VersionConflict:
    """A compare-and-swap lost: the stored version was not the expected one.

    ``actual_version`` is ``None`` when the item vanished between read and write.
    """

    item_id: str
    expected_version: int
    actual_version: int | None


class DuplicateItemError(ValueError):
    """Raised by ``insert_conditional`` when the id is already taken."""


@runtime_checkable
class ItemStore(Protocol):
    def get(self, item_id: str) -> Item | None: ...

    def insert_conditional(self, item: Item) -> Item: ...

    def update_conditional(self, item: Item, expected_version: int) -> Item | VersionConflict: ...

    def delete(self, item_id: str) -> Item | None: ...

    def list_items(self, *, limit: int | None = None) -> list[Item]: ...


@runtime_checkable
class SnapshotStore(Protocol):
    def put_snapshot(self, snapshot: ItemSnapshot) -> ItemSnapshot: ...

    def get_snapshot(self, item_id: str, version: int) -> ItemSnapshot | None: ...

    def list_snapshots(self, item_id: str) -> list[ItemSnapshot]: ...


class InMemoryItemStore:
    """Thread-safe dict-backed store; every conditional write holds one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, Item] = {}
        self._snapshots: dict[tuple[str, int], ItemSnapshot] = {}

    def get(self, item_id: str) -> Item | None:
        with self._lock:
            item = self._items.get(item_id)
            return None if item is None else _copy_item(item)

    def insert_conditional(self, item: Item) -> Item:
        with self._lock:
            if item.id in self._items:
                raise DuplicateItemError(f"item {item.id!r} already exists")
            self._items[item.id] = _copy_item(item)
            return _copy_item(item)

    def update_conditional(self, item: Item, expected_version: int) -> Item | VersionConflict:
        with self._lock:
            stored = self._items.get(item.id)
            if stored is None:
                return VersionConflict(item.id, expected_version, None)
            if stored.version != expected_version:
                return VersionConflict(item.id, expected_version, stored.version)
            self._items[item.id] = _copy_item(item)
            return _copy_item(item)

    def delete(self, item_id: str) -> Item | None:
        with self._lock:
            return self._items.pop(item_id, None)

    def list_items(self, *, limit: int | None = None) -> list[Item]:
        with self._lock:
            items = sorted(self._items.values(), key=lambda item: (item.created_at, item.id))
        if limit is not None:
            items = items[:limit]
        return [_copy_item(item) for item in items]

    def put_snapshot(self, snapshot: ItemSnapshot) -> ItemSnapshot:
        with self._lock:
            key = (snapshot.item_id, snapshot.version)
            existing = self._snapshots.get(key)
            if existing is not None:
                return existing
            self._snapshots[key] = snapshot
            return snapshot

    def get_snapshot(self, item_id: str, version: int) -> ItemSnapshot | None:
        with self._lock:
            return self._snapshots.get((item_id, version))

    def list_snapshots(self, item_id: str) -> list[ItemSnapshot]:
        with self._lock:
            found = [snap for (key, _), snap in self._snapshots.items() if key == item_id]
        return sorted(found, key=lambda snap: snap.version)


def _copy_item(item: Item) -> Item:
    # Mapping facets are mutable dicts; callers must never alias stored state.
    return replace(
        item,
        custom_fields=copy.deepcopy(item.custom_fields),
        metadata=copy.deepcopy(item.metadata),
        reminder_settings=copy.deepcopy(item.reminder_settings),
        external_refs=copy.deepcopy(item.external_refs),
    )


__all__ = [
    "DuplicateItemError",
    "InMemoryItemStore",
    "ItemStore",
    "SnapshotStore",
    "VersionConflict",
]
