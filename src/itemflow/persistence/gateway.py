"""The single path from the pipeline to storage.

No business logic lives here: the gateway moves store calls off the event
loop and turns any store exception into :class:`PersistenceFailure`. Faults
are never retried at this layer.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import TypeVar

from itemflow.domain.errors import PersistenceFailure
from itemflow.domain.models import Item, ItemSnapshot
from itemflow.persistence.store import ItemStore, SnapshotStore, VersionConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PersistenceGateway:
    def __init__(self, items: ItemStore, snapshots: SnapshotStore | None = None) -> None:
        self._items = items
        if snapshots is None:
            if not isinstance(items, SnapshotStore):
                raise TypeError("items store does not keep snapshots; pass a SnapshotStore")
            snapshots = items
        self._snapshots = snapshots

    async def get(self, item_id: str) -> Item | None:
        return await self._call("get", item_id, self._items.get, item_id)

    async def insert(self, item: Item) -> Item:
        if item.version != 1:
            raise ValueError(f"new items start at version 1, got {item.version}")
        return await self._call("insert", item.id, self._items.insert_conditional, item)

    async def update_if_version(self, item: Item, expected_version: int) -> Item | VersionConflict:
        """Write ``item`` only if the stored version is still ``expected_version``."""
        if item.version != expected_version + 1:
            raise ValueError(
                f"replacement version must be {expected_version + 1}, got {item.version}"
            )
        return await self._call(
            "update", item.id, self._items.update_conditional, item, expected_version
        )

    async def delete(self, item_id: str) -> Item | None:
        return await self._call("delete", item_id, self._items.delete, item_id)

    async def save_snapshot(self, snapshot: ItemSnapshot) -> ItemSnapshot:
        return await self._call(
            "save_snapshot", snapshot.item_id, self._snapshots.put_snapshot, snapshot
        )

    async def get_snapshot(self, item_id: str, version: int) -> ItemSnapshot | None:
        return await self._call(
            "get_snapshot", item_id, self._snapshots.get_snapshot, item_id, version
        )

    async def list_snapshots(self, item_id: str) -> list[ItemSnapshot]:
        return await self._call("list_snapshots", item_id, self._snapshots.list_snapshots, item_id)

    async def _call(
        self, operation: str, item_id: str | None, func: Callable[..., T], *args: object
    ) -> T:
        try:
            return await asyncio.to_thread(functools.partial(func, *args))
        except Exception as exc:
            logger.error(
                "store operation failed",
                extra={"operation": operation, "item_id": item_id, "error_type": type(exc).__name__},
            )
            raise PersistenceFailure(operation, item_id, exc) from exc


__all__ = ["PersistenceGateway"]
