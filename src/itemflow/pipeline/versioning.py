"""Immutable snapshot capture ahead of destructive updates."""

from __future__ import annotations

from datetime import datetime

from itemflow.domain.models import Item, ItemSnapshot


class VersioningService:
    def snapshot(self, current_item: Item, captured_by: str, captured_at: datetime) -> ItemSnapshot:
        """Capture ``current_item`` as stored; the item itself is left untouched.

        ``ItemSnapshot`` validates and copies the serialized record, so later
        edits to ``current_item`` cannot leak into the snapshot.
        """
        return ItemSnapshot(
            item_id=current_item.id,
            version=current_item.version,
            record=current_item.to_dict(),
            captured_at=captured_at,
            captured_by=captured_by,
        )


__all__ = ["VersioningService"]
