"""End-to-end delete pipeline behaviour: cleanup ordering, blocking cleanup, audit archival."""

from __future__ import annotations

from collections.abc import Sequence

import pytest

from itemflow.domain.errors import ErrorKind
from itemflow.domain.events import EventType
from itemflow.domain.models import AuditAction
from itemflow.persistence.store import InMemoryItemStore
from tests.builders import (
    ADMIN,
    OTHER_WRITER,
    OWNER,
    RecordingAttachments,
    FailingChannel,
    audited,
    build_harness,
    item_id,
    make_item,
)


@pytest.mark.asyncio
async def test_delete_runs_cleanup_then_removes_the_item() -> None:
    attachments = RecordingAttachments()
    harness = build_harness(attachments=attachments)
    stored = harness.store.insert_conditional(
        make_item(
            1,
            attachment_ids=("att-1", "att-2"),
            linked_items=(item_id(90),),
            dependencies=(item_id(91),),
        )
    )

    outcome = await harness.orchestrator.delete_item(stored.id, OWNER, audited())

    confirmation = outcome.unwrap()
    assert (confirmation.item_id, confirmation.deleted_version) == (stored.id, 1)
    assert harness.store.get(stored.id) is None
    assert attachments.calls == [(stored.id, ("att-1", "att-2"))]
    assert harness.channel.sent[0] == {
        "action": "delete",
        "event": "dependents_affected",
        "item_id": stored.id,
        "version": 1,
        "dependent_ids": [item_id(90), item_id(91)],
    }
    assert [payload.get("event") for payload in harness.channel.sent] == ["dependents_affected", None]
    assert harness.cache.invalidated == [stored.id]
    assert outcome.warnings == ()


@pytest.mark.asyncio
async def test_cleanup_sees_the_item_still_stored() -> None:
    harness = build_harness()
    observed: list[bool] = []

    class StoreObserver:
        def __init__(self, store: InMemoryItemStore) -> None:
            self._store = store

        def cleanup(self, target_id: str, attachment_ids: Sequence[str]) -> None:
            del attachment_ids
            observed.append(self._store.get(target_id) is not None)

    harness.orchestrator._attachments = StoreObserver(harness.store)  # noqa: SLF001
    stored = harness.store.insert_conditional(make_item(2))

    await harness.orchestrator.delete_item(stored.id, OWNER)

    assert observed == [True]


@pytest.mark.asyncio
async def test_deleting_a_missing_item_is_not_found() -> None:
    harness = build_harness()

    outcome = await harness.orchestrator.delete_item(item_id(3), OWNER)

    assert outcome.error is not None
    assert outcome.error.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_second_delete_of_the_same_item_is_not_found() -> None:
    harness = build_harness()
    stored = harness.store.insert_conditional(make_item(4))

    first = await harness.orchestrator.delete_item(stored.id, OWNER)
    second = await harness.orchestrator.delete_item(stored.id, OWNER)

    assert first.ok
    assert second.error is not None
    assert second.error.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_only_owner_or_admin_may_delete() -> None:
    harness = build_harness()
    stored = harness.store.insert_conditional(make_item(5))

    denied = await harness.orchestrator.delete_item(stored.id, OTHER_WRITER)

    assert denied.error is not None
    assert denied.error.kind is ErrorKind.PERMISSION_DENIED
    assert harness.store.get(stored.id) == stored

    allowed = await harness.orchestrator.delete_item(stored.id, ADMIN)
    assert allowed.ok


@pytest.mark.asyncio
async def test_cleanup_failure_is_a_warning_by_default() -> None:
    harness = build_harness(attachments=RecordingAttachments(fail=True))
    stored = harness.store.insert_conditional(make_item(6, attachment_ids=("att-9",)))

    outcome = await harness.orchestrator.delete_item(stored.id, OWNER)

    assert outcome.ok
    assert [(w.stage, w.target, w.error_type) for w in outcome.warnings] == [
        ("cleanup", "attachments", "OSError")
    ]
    assert harness.store.get(stored.id) is None


@pytest.mark.asyncio
async def test_blocking_cleanup_aborts_and_keeps_the_item() -> None:
    harness = build_harness(attachments=RecordingAttachments(fail=True))
    stored = harness.store.insert_conditional(make_item(7, attachment_ids=("att-9",)))

    outcome = await harness.orchestrator.delete_item(
        stored.id, OWNER, {"blockingCleanup": True}
    )

    assert outcome.error is not None
    assert outcome.error.kind is ErrorKind.CLEANUP_FAILED
    assert "attachments" in outcome.error.message
    assert harness.store.get(stored.id) == stored


@pytest.mark.asyncio
async def test_delete_archives_the_trail_and_records_a_deleted_entry() -> None:
    harness = build_harness()
    created = await harness.orchestrator.create_item({"name": "Short lived"}, OWNER, audited())
    item = created.unwrap()

    outcome = await harness.orchestrator.delete_item(
        item.id, OWNER, audited(versioning={"enabled": True})
    )

    assert outcome.ok
    entries = harness.audit_sink.list_entries(item.id)
    assert [entry.action for entry in entries] == [AuditAction.CREATED, AuditAction.DELETED]
    assert entries[-1].after_state is None
    assert entries[-1].before_snapshot_ref == f"{item.id}@1"
    assert harness.audit_sink.list_entries(item.id, include_archived=False) == []
    assert harness.store.get_snapshot(item.id, 1) is not None
    assert harness.channel.sent[-1]["action"] == "delete"


@pytest.mark.asyncio
async def test_delete_stage_sequence_cleans_up_before_persisting() -> None:
    harness = build_harness()
    stored = harness.store.insert_conditional(make_item(8))

    outcome = await harness.orchestrator.delete_item(stored.id, OWNER)

    stages = [
        event.payload["stage"]
        for event in harness.events.replay(
            event_type=EventType.STAGE_ENTERED, correlation_id=outcome.mutation_id
        )
    ]
    assert stages == ["authorizing", "cleaning_up", "persisting", "notifying", "auditing"]


@pytest.mark.asyncio
async def test_items_without_links_send_no_dependent_notice() -> None:
    harness = build_harness()
    stored = harness.store.insert_conditional(make_item(11))

    await harness.orchestrator.delete_item(stored.id, OWNER, audited())

    assert [payload["action"] for payload in harness.channel.sent] == ["delete"]
    assert "event" not in harness.channel.sent[0]


@pytest.mark.asyncio
async def test_dependent_notice_failure_is_a_cleanup_warning() -> None:
    harness = build_harness(channels=[FailingChannel()])
    stored = harness.store.insert_conditional(make_item(12, dependencies=(item_id(92),)))

    outcome = await harness.orchestrator.delete_item(
        stored.id, OWNER, audited(notification={"enabled": True, "channels": ["failing"]})
    )

    assert outcome.ok
    assert [(w.stage, w.target, w.error_type) for w in outcome.warnings] == [
        ("dependents", "failing", "ConnectionError"),
        ("notification", "failing", "ConnectionError"),
    ]
    assert harness.store.get(stored.id) is None
