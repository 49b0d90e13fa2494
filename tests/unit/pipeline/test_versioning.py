from __future__ import annotations

from itemflow.pipeline.versioning import VersioningService
from tests.builders import BASE_TS, make_item


def test_snapshot_captures_the_item_as_stored() -> None:
    item = make_item(1, version=3, custom_fields={"cost": 5})

    snapshot = VersioningService().snapshot(item, "user-owner", BASE_TS)

    assert (snapshot.item_id, snapshot.version) == (item.id, 3)
    assert snapshot.captured_by == "user-owner"
    assert snapshot.to_item() == item


def test_later_edits_do_not_leak_into_the_snapshot() -> None:
    item = make_item(2, custom_fields={"cost": 5})

    snapshot = VersioningService().snapshot(item, "user-owner", BASE_TS)
    item.custom_fields["cost"] = 99

    assert snapshot.record["custom_fields"] == {"cost": 5}
    assert item.version == 1
