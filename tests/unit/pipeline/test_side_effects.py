from __future__ import annotations

import pytest

from itemflow.collaborators import InMemoryAuditSink, InMemoryBackupSink, RecordingChannel
from itemflow.domain.models import AuditAction, AuditEntry, MutationAction
from itemflow.pipeline.options import AuditSettings, BackupSettings, NotificationSettings
from itemflow.pipeline.side_effects import (
    AuditLogger,
    BackupRecorder,
    NotificationDispatcher,
    changed_fields,
)
from tests.builders import (
    BASE_TS,
    FailingAuditSink,
    FailingBackupSink,
    FailingChannel,
    SlowChannel,
    item_id,
    make_item,
)

ENABLED = NotificationSettings(enabled=True)


def _entry(item) -> AuditEntry:
    return AuditEntry(
        id="aud-01ARZ3NDEKTSV4RRFFQ69G5FAV",
        item_id=item.id,
        action=AuditAction.CREATED,
        actor_id="user-owner",
        timestamp=BASE_TS,
        after_state=item.to_dict(),
    )


def test_changed_fields_ignore_version_bookkeeping() -> None:
    prior = make_item(1, status="open")
    current = make_item(1, status="closed", assignee="dana", version=2)

    assert changed_fields(current, prior) == ["assignee", "status"]
    assert changed_fields(current, None) == []


def test_duplicate_channel_names_are_rejected() -> None:
    with pytest.raises(ValueError, match="must be unique"):
        NotificationDispatcher([RecordingChannel(), RecordingChannel()])


@pytest.mark.asyncio
async def test_disabled_notifications_send_nothing() -> None:
    channel = RecordingChannel()
    dispatcher = NotificationDispatcher([channel])

    warnings = await dispatcher.dispatch(
        NotificationSettings(), make_item(1), None, MutationAction.CREATE, timeout_seconds=1.0
    )

    assert warnings == ()
    assert channel.sent == []


@pytest.mark.asyncio
async def test_each_channel_gets_the_payload_and_params() -> None:
    received: list[tuple[dict, dict]] = []

    class Capturing:
        name = "capturing"

        def send(self, settings, payload) -> None:
            received.append((dict(settings), dict(payload)))

    dispatcher = NotificationDispatcher([Capturing()])
    item = make_item(2)

    await dispatcher.dispatch(
        NotificationSettings(enabled=True, params={"recipients": ["ops@example.com"]}),
        item,
        None,
        MutationAction.CREATE,
        timeout_seconds=1.0,
    )

    settings, payload = received[0]
    assert settings == {"recipients": ["ops@example.com"]}
    assert payload["action"] == "create"
    assert payload["item_id"] == item.id
    assert payload["item"] == item.to_dict()


@pytest.mark.asyncio
async def test_channel_failures_and_unknown_channels_become_warnings() -> None:
    healthy = RecordingChannel()
    failing = FailingChannel()
    dispatcher = NotificationDispatcher([healthy, failing])

    warnings = await dispatcher.dispatch(
        NotificationSettings(enabled=True, channels=("recording", "failing", "pager")),
        make_item(3),
        None,
        MutationAction.CREATE,
        timeout_seconds=1.0,
    )

    assert [(w.target, w.error_type) for w in warnings] == [
        ("pager", "UnknownChannel"),
        ("failing", "ConnectionError"),
    ]
    assert len(healthy.sent) == 1


@pytest.mark.asyncio
async def test_slow_channels_time_out() -> None:
    dispatcher = NotificationDispatcher([SlowChannel(delay_seconds=5.0)])

    warnings = await dispatcher.dispatch(
        ENABLED, make_item(4), None, MutationAction.UPDATE, timeout_seconds=0.05
    )

    assert [(w.stage, w.target, w.error_type) for w in warnings] == [
        ("notification", "slow", "TimeoutError")
    ]


@pytest.mark.asyncio
async def test_audit_logger_appends_when_enabled() -> None:
    sink = InMemoryAuditSink()
    audit = AuditLogger(sink)
    item = make_item(5)

    skipped = await audit.record(AuditSettings(), _entry(item), timeout_seconds=1.0)
    written = await audit.record(AuditSettings(enabled=True), _entry(item), timeout_seconds=1.0)

    assert skipped == written == ()
    assert len(sink.entries) == 1


@pytest.mark.asyncio
async def test_audit_sink_failures_become_warnings() -> None:
    audit = AuditLogger(FailingAuditSink())
    item = make_item(6)

    recorded = await audit.record(AuditSettings(enabled=True), _entry(item), timeout_seconds=1.0)
    archived = await audit.archive(item.id, timeout_seconds=1.0)

    assert [(w.stage, w.target) for w in recorded] == [("audit", "audit_sink")]
    assert [(w.stage, w.target) for w in archived] == [("audit_archive", "audit_sink")]


@pytest.mark.asyncio
async def test_audit_logger_without_sink_is_a_no_op() -> None:
    audit = AuditLogger()

    assert await audit.archive("itm-x", timeout_seconds=1.0) == ()


@pytest.mark.asyncio
async def test_dependents_notice_names_every_affected_item() -> None:
    channel = RecordingChannel()
    dispatcher = NotificationDispatcher([channel])
    item = make_item(7, version=4)

    warnings = await dispatcher.notify_dependents(
        ENABLED, item, (item_id(70), item_id(71)), timeout_seconds=1.0
    )
    silent = await dispatcher.notify_dependents(ENABLED, item, (), timeout_seconds=1.0)
    disabled = await dispatcher.notify_dependents(
        NotificationSettings(), item, (item_id(70),), timeout_seconds=1.0
    )

    assert warnings == silent == disabled == ()
    assert channel.sent == [
        {
            "action": "delete",
            "event": "dependents_affected",
            "item_id": item.id,
            "version": 4,
            "dependent_ids": [item_id(70), item_id(71)],
        }
    ]


@pytest.mark.asyncio
async def test_dependents_notice_failures_carry_their_own_stage() -> None:
    dispatcher = NotificationDispatcher([FailingChannel()])

    warnings = await dispatcher.notify_dependents(
        ENABLED, make_item(8), (item_id(80),), timeout_seconds=1.0
    )

    assert [(w.stage, w.target, w.error_type) for w in warnings] == [
        ("dependents", "failing", "ConnectionError")
    ]


@pytest.mark.asyncio
async def test_backup_recorder_copies_items_when_enabled() -> None:
    sink = InMemoryBackupSink()
    backups = BackupRecorder(sink)
    item = make_item(9)

    skipped = await backups.backup(BackupSettings(), item, timeout_seconds=1.0)
    written = await backups.backup(BackupSettings(enabled=True), item, timeout_seconds=1.0)

    assert skipped == written == ()
    assert sink.list_backups(item.id) == [item]


@pytest.mark.asyncio
async def test_backup_failures_and_a_missing_sink_become_warnings() -> None:
    failing = BackupRecorder(FailingBackupSink())
    unconfigured = BackupRecorder()
    item = make_item(10)

    failed = await failing.backup(BackupSettings(enabled=True), item, timeout_seconds=1.0)
    missing = await unconfigured.backup(BackupSettings(enabled=True), item, timeout_seconds=1.0)

    assert [(w.stage, w.target, w.error_type) for w in failed] == [
        ("backup", "backup_sink", "OSError")
    ]
    assert [(w.stage, w.target, w.error_type) for w in missing] == [
        ("backup", "backup_sink", "NoBackupSink")
    ]
