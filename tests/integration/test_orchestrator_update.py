"""End-to-end update pipeline behaviour: versions, conflicts, snapshots and gates."""

from __future__ import annotations

from dataclasses import replace

import pytest

from itemflow.domain.errors import ErrorKind, ViolationCode
from itemflow.domain.models import AuditAction, Item, WorkflowStage
from itemflow.persistence.store import InMemoryItemStore
from itemflow.pipeline.conflicts import MergeResult
from itemflow.pipeline.options import MutationOptions
from itemflow.pipeline.processors import ProcessorStep
from tests.builders import (
    ADMIN,
    APPROVER,
    OTHER_WRITER,
    OWNER,
    FailingChannel,
    audited,
    build_harness,
    make_item,
)


def concurrent_edit(store: InMemoryItemStore, item_id: str, **changes: object) -> ProcessorStep:
    """A step that lands a competing write after the pipeline has read its base."""

    def _apply(record: dict, options: object) -> dict:
        del options
        current = store.get(item_id)
        assert current is not None
        competing = replace(current, version=current.version + 1, **changes)
        store.update_conditional(competing, current.version)
        return record

    return ProcessorStep("concurrent_edit", _apply)


def seed(store: InMemoryItemStore, item: Item) -> Item:
    return store.insert_conditional(item)


@pytest.mark.asyncio
async def test_stale_expected_version_under_fail_leaves_the_item_untouched() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(1, version=3))

    outcome = await harness.orchestrator.update_item(
        stored.id, {"description": "late edit"}, 2, {"conflict_strategy": "fail"}, OWNER
    )

    assert outcome.error is not None
    assert outcome.error.kind is ErrorKind.CONFLICT_VERSION_MISMATCH
    assert (outcome.error.expected_version, outcome.error.actual_version) == (2, 3)
    assert harness.store.get(stored.id) == stored


@pytest.mark.asyncio
async def test_successful_update_bumps_version_by_exactly_one() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(2))

    outcome = await harness.orchestrator.update_item(
        stored.id, {"description": "now with details"}, 1, None, OWNER
    )

    updated = outcome.unwrap()
    assert updated.version == 2
    assert updated.description == "now with details"
    assert updated.created_at == stored.created_at
    assert updated.updated_at > stored.updated_at
    assert harness.store.get(stored.id) == updated
    assert harness.store.list_snapshots(stored.id) == []


@pytest.mark.asyncio
async def test_versioning_captures_the_prior_version_before_writing() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(3, description="v1 text"))

    outcome = await harness.orchestrator.update_item(
        stored.id,
        {"description": "v2 text"},
        1,
        audited(versioning={"enabled": True}),
        OWNER,
    )

    assert outcome.ok
    snapshots = harness.store.list_snapshots(stored.id)
    assert [snapshot.version for snapshot in snapshots] == [1]
    assert snapshots[0].to_item() == stored
    entry = harness.audit_sink.list_entries(stored.id)[0]
    assert entry.action is AuditAction.UPDATED
    assert entry.before_snapshot_ref == f"{stored.id}@1"


@pytest.mark.asyncio
async def test_omitted_expected_version_uses_the_version_read_at_start() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(4, version=5))

    outcome = await harness.orchestrator.update_item(stored.id, {"status": "open"}, None, None, OWNER)

    assert outcome.unwrap().version == 6


@pytest.mark.asyncio
async def test_missing_item_is_not_found() -> None:
    harness = build_harness()

    outcome = await harness.orchestrator.update_item(
        make_item(5).id, {"status": "x"}, 1, None, OWNER
    )

    assert outcome.error is not None
    assert outcome.error.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_non_owner_without_admin_is_denied_but_admin_may_edit() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(6))

    denied = await harness.orchestrator.update_item(stored.id, {"status": "x"}, 1, None, OTHER_WRITER)
    allowed = await harness.orchestrator.update_item(stored.id, {"status": "x"}, 1, None, ADMIN)

    assert denied.error is not None
    assert denied.error.kind is ErrorKind.PERMISSION_DENIED
    assert allowed.unwrap().version == 2


@pytest.mark.asyncio
async def test_identity_fields_and_unknown_fields_are_rejected() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(7))

    outcome = await harness.orchestrator.update_item(
        stored.id, {"created_by": "someone-else", "colour": "red"}, 1, None, OWNER
    )

    assert outcome.error is not None
    codes = {(violation.field, violation.code) for violation in outcome.error.violations}
    assert codes == {
        ("created_by", ViolationCode.IMMUTABLE_FIELD),
        ("colour", ViolationCode.SHAPE),
    }
    assert harness.store.get(stored.id) == stored


@pytest.mark.asyncio
async def test_workflow_stage_moves_only_along_allowed_edges() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(8, workflow_stage=WorkflowStage.BACKLOG))

    skipped = await harness.orchestrator.update_item(
        stored.id, {"workflowStage": "done"}, 1, None, OWNER
    )
    moved = await harness.orchestrator.update_item(
        stored.id, {"workflowStage": "in_review"}, 1, None, OWNER
    )

    assert skipped.error is not None
    assert skipped.error.violations[0].code is ViolationCode.WORKFLOW_TRANSITION
    assert moved.unwrap().workflow_stage is WorkflowStage.IN_REVIEW


@pytest.mark.asyncio
async def test_approval_gated_items_need_an_approver_to_enter_approved() -> None:
    harness = build_harness()
    plain = seed(
        harness.store,
        make_item(9, workflow_stage=WorkflowStage.IN_REVIEW, approval_required=True),
    )
    by_approver = seed(
        harness.store,
        make_item(
            10,
            workflow_stage=WorkflowStage.IN_REVIEW,
            approval_required=True,
            created_by=APPROVER.actor_id,
        ),
    )

    denied = await harness.orchestrator.update_item(
        plain.id, {"workflow_stage": "approved"}, 1, None, OWNER
    )
    approved = await harness.orchestrator.update_item(
        by_approver.id, {"workflow_stage": "approved"}, 1, None, APPROVER
    )

    assert denied.error is not None
    assert denied.error.kind is ErrorKind.PERMISSION_DENIED
    assert approved.unwrap().workflow_stage is WorkflowStage.APPROVED


@pytest.mark.asyncio
async def test_turning_on_approval_in_the_same_edit_still_requires_an_approver() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(11, workflow_stage=WorkflowStage.IN_REVIEW))

    outcome = await harness.orchestrator.update_item(
        stored.id, {"workflow_stage": "approved", "approval_required": True}, 1, None, OWNER
    )

    assert outcome.error is not None
    assert outcome.error.kind is ErrorKind.PERMISSION_DENIED


@pytest.mark.asyncio
async def test_last_write_wins_overrides_a_stale_expected_version() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(12, version=3, category="ops"))

    outcome = await harness.orchestrator.update_item(
        stored.id, {"category": "sales"}, 2, {"conflictStrategy": "lastWriteWins"}, OWNER
    )

    updated = outcome.unwrap()
    assert updated.version == 4
    assert updated.category == "sales"


@pytest.mark.asyncio
async def test_fail_strategy_detects_a_write_that_landed_mid_pipeline() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(13))
    step = concurrent_edit(harness.store, stored.id, category="sales")

    outcome = await harness.orchestrator.update_item(
        stored.id, {"description": "mine"}, None, MutationOptions(pre_processors=(step,)), OWNER
    )

    assert outcome.error is not None
    assert (outcome.error.expected_version, outcome.error.actual_version) == (1, 2)
    current = harness.store.get(stored.id)
    assert current is not None
    assert current.version == 2
    assert current.description is None


@pytest.mark.asyncio
async def test_merge_combines_disjoint_concurrent_edits() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(14))
    step = concurrent_edit(harness.store, stored.id, category="sales")

    outcome = await harness.orchestrator.update_item(
        stored.id,
        {"description": "mine"},
        None,
        MutationOptions(pre_processors=(step,), conflict_strategy="merge", versioning_enabled=True),
        OWNER,
    )

    merged = outcome.unwrap()
    assert merged.version == 3
    assert merged.description == "mine"
    assert merged.category == "sales"
    assert [s.version for s in harness.store.list_snapshots(stored.id)] == [1, 2]


@pytest.mark.asyncio
async def test_merge_reports_fields_both_editors_changed() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(15, description="original"))
    step = concurrent_edit(harness.store, stored.id, description="theirs")

    outcome = await harness.orchestrator.update_item(
        stored.id,
        {"description": "ours"},
        None,
        MutationOptions(pre_processors=(step,), conflict_strategy="merge"),
        OWNER,
    )

    assert outcome.error is not None
    assert outcome.error.kind is ErrorKind.CONFLICT_VERSION_MISMATCH
    assert [(v.field, v.code) for v in outcome.error.violations] == [
        ("description", ViolationCode.MERGE_CONFLICT)
    ]
    assert harness.store.get(stored.id).description == "theirs"


@pytest.mark.asyncio
async def test_custom_merge_function_failure_is_a_processor_failure() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(16))
    step = concurrent_edit(harness.store, stored.id, category="sales")

    def broken_merge(base: dict, ours: dict, theirs: dict) -> MergeResult:
        raise LookupError("no strategy for custom_fields")

    outcome = await harness.orchestrator.update_item(
        stored.id,
        {"description": "mine"},
        None,
        MutationOptions(
            pre_processors=(step,), conflict_strategy="merge", merge_function=broken_merge
        ),
        OWNER,
    )

    assert outcome.error is not None
    assert outcome.error.kind is ErrorKind.PROCESSOR_FAILURE
    assert outcome.error.step_name == "merge_function"


@pytest.mark.asyncio
async def test_update_notification_lists_changed_fields_and_survives_channel_failure() -> None:
    failing = FailingChannel()
    harness = build_harness(channels=[failing])
    stored = seed(harness.store, make_item(17, status="open"))

    outcome = await harness.orchestrator.update_item(
        stored.id, {"status": "closed", "assignee": "dana"}, 1, audited(), OWNER
    )

    assert outcome.unwrap().version == 2
    payload = harness.channel.sent[0]
    assert payload["action"] == "update"
    assert payload["prior_version"] == 1
    assert payload["version"] == 2
    assert payload["changed_fields"] == ["assignee", "status"]
    assert [warning.target for warning in outcome.warnings] == ["failing"]


@pytest.mark.asyncio
async def test_validation_rules_apply_to_the_merged_record() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(18, custom_fields={"cost": 10}))

    outcome = await harness.orchestrator.update_item(
        stored.id,
        {"custom_fields": {"cost": -1}},
        1,
        {"validation_rules": {"custom_fields.cost": {"type": "number", "min": 0}}},
        OWNER,
    )

    assert outcome.error is not None
    assert outcome.error.violations[0].field == "custom_fields.cost"
    assert harness.store.get(stored.id) == stored


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", ["merge", "last_write_wins"])
async def test_approval_gate_turned_on_mid_pipeline_blocks_the_stage_change(strategy: str) -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(21, workflow_stage=WorkflowStage.IN_REVIEW))
    step = concurrent_edit(harness.store, stored.id, approval_required=True)

    outcome = await harness.orchestrator.update_item(
        stored.id,
        {"workflow_stage": "approved"},
        1,
        MutationOptions(pre_processors=(step,), conflict_strategy=strategy),
        OWNER,
    )

    assert outcome.error is not None
    assert outcome.error.kind is ErrorKind.PERMISSION_DENIED
    current = harness.store.get(stored.id)
    assert current is not None
    assert (current.version, current.workflow_stage) == (2, WorkflowStage.IN_REVIEW)


@pytest.mark.asyncio
async def test_rejected_updates_leave_no_snapshot_behind() -> None:
    harness = build_harness()
    stale = seed(harness.store, make_item(22, version=3))
    contested = seed(harness.store, make_item(23, description="original"))
    step = concurrent_edit(harness.store, contested.id, description="theirs")

    mismatch = await harness.orchestrator.update_item(
        stale.id, {"description": "late"}, 2, audited(versioning={"enabled": True}), OWNER
    )
    conflict = await harness.orchestrator.update_item(
        contested.id,
        {"description": "ours"},
        None,
        MutationOptions(pre_processors=(step,), conflict_strategy="merge", versioning_enabled=True),
        OWNER,
    )

    assert mismatch.error is not None
    assert mismatch.error.kind is ErrorKind.CONFLICT_VERSION_MISMATCH
    assert conflict.error is not None
    assert conflict.error.kind is ErrorKind.CONFLICT_VERSION_MISMATCH
    assert harness.store.list_snapshots(stale.id) == []
    assert harness.store.list_snapshots(contested.id) == []


@pytest.mark.asyncio
async def test_backup_keeps_each_committed_version() -> None:
    harness = build_harness()
    stored = seed(harness.store, make_item(24))

    first = await harness.orchestrator.update_item(
        stored.id, {"status": "open"}, 1, {"backup": {"enabled": True}}, OWNER
    )
    second = await harness.orchestrator.update_item(
        stored.id, {"status": "closed"}, 2, {"backup": {"enabled": True}}, OWNER
    )

    assert [item.version for item in harness.backups.list_backups(stored.id)] == [2, 3]
    assert harness.backups.list_backups(stored.id) == [first.unwrap(), second.unwrap()]
