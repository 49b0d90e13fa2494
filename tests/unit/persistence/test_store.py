from __future__ import annotations

from dataclasses import replace

import pytest

from itemflow.persistence.store import DuplicateItemError, InMemoryItemStore, VersionConflict
from itemflow.pipeline.versioning import VersioningService
from tests.builders import BASE_TS, fixed_now, make_item


def test_insert_then_get_returns_an_equal_copy() -> None:
    store = InMemoryItemStore()
    item = make_item(1, custom_fields={"k": [1]})

    store.insert_conditional(item)
    loaded = store.get(item.id)

    assert loaded == item
    assert loaded is not item
    loaded.custom_fields["k"].append(2)  # type: ignore[union-attr]
    assert store.get(item.id).custom_fields == {"k": [1]}  # type: ignore[union-attr]


def test_insert_rejects_duplicate_ids() -> None:
    store = InMemoryItemStore()
    store.insert_conditional(make_item(1))

    with pytest.raises(DuplicateItemError):
        store.insert_conditional(make_item(1))


def test_update_is_a_compare_and_swap_on_version() -> None:
    store = InMemoryItemStore()
    item = store.insert_conditional(make_item(2))

    stale = store.update_conditional(replace(item, version=3, status="x"), 2)
    written = store.update_conditional(replace(item, version=2, status="y"), 1)
    missing = store.update_conditional(replace(make_item(3), version=2), 1)

    assert stale == VersionConflict(item.id, 2, 1)
    assert written.status == "y"  # type: ignore[union-attr]
    assert missing == VersionConflict(make_item(3).id, 1, None)


def test_delete_returns_the_removed_item_once() -> None:
    store = InMemoryItemStore()
    item = store.insert_conditional(make_item(4))

    assert store.delete(item.id) == item
    assert store.delete(item.id) is None
    assert store.get(item.id) is None


def test_list_items_orders_by_creation_time() -> None:
    store = InMemoryItemStore()
    later = make_item(6)
    earlier = make_item(5)
    store.insert_conditional(later)
    store.insert_conditional(earlier)

    assert [item.id for item in store.list_items()] == [earlier.id, later.id]
    assert len(store.list_items(limit=1)) == 1


def test_snapshot_writes_are_idempotent_and_listed_by_version() -> None:
    store = InMemoryItemStore()
    item = make_item(7)
    versioning = VersioningService()
    v2 = replace(item, version=2, updated_at=fixed_now(60))

    first = store.put_snapshot(versioning.snapshot(v2, "user-a", BASE_TS))
    again = store.put_snapshot(versioning.snapshot(v2, "user-b", BASE_TS))
    store.put_snapshot(versioning.snapshot(item, "user-a", BASE_TS))

    assert again == first
    assert again.captured_by == "user-a"
    assert [snap.version for snap in store.list_snapshots(item.id)] == [1, 2]
    assert store.get_snapshot(item.id, 3) is None
