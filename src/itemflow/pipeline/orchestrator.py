"""Create/update/delete pipelines over the mutation components.

Each call walks a fixed stage sequence::

    authorizing -> pre_processing -> validating -> (snapshotting ->)
    persisting -> post_processing -> notifying -> auditing -> (backing_up ->) done

Business failures up to the persisting precondition return a
``MutationOutcome`` carrying a ``MutationError`` and leave the store as it
was. Once the write commits the run cannot abort: later failures become
``SideEffectWarning`` values on the successful outcome. Everything from the
persisted write onward runs in a shielded task, so a caller that stops
waiting cannot leave a committed write without its audit and notification.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import TypeVar

from itemflow.collaborators import (
    AttachmentStore,
    Clock,
    DependencyResolution,
    DependencyResolver,
    ItemCache,
    NullAttachmentStore,
    NullItemCache,
    SystemClock,
)
from itemflow.domain import ids
from itemflow.domain.errors import (
    DeleteConfirmation,
    MutationError,
    MutationOutcome,
    PersistenceFailure,
    SideEffectWarning,
    Violation,
    ViolationCode,
)
from itemflow.domain.events import EventType
from itemflow.domain.models import (
    ITEM_FIELD_NAMES,
    Actor,
    AuditAction,
    AuditEntry,
    Item,
    ItemCreateRequest,
    ItemSnapshot,
    JSONValue,
    MutationAction,
    Record,
    datetime_to_iso8601z,
    normalize_change_keys,
)
from itemflow.observability.events import EventBus
from itemflow.observability.logging import correlation_scope
from itemflow.persistence.gateway import PersistenceGateway
from itemflow.persistence.store import VersionConflict
from itemflow.pipeline.conflicts import ConflictResolver, Reject
from itemflow.pipeline.options import MutationOptions
from itemflow.pipeline.permissions import PermissionGate
from itemflow.pipeline.processors import ProcessorChain, ProcessorFailure
from itemflow.pipeline.side_effects import AuditLogger, BackupRecorder, NotificationDispatcher
from itemflow.pipeline.validation import FieldValidator
from itemflow.pipeline.versioning import VersioningService
from itemflow.pipeline.workflow import initial_stage_violation, transition_violation
from itemflow.utils.concurrency import call_maybe_async, run_with_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fields a change set may not rewrite; ``updated_at`` is stamped by the pipeline.
_PROTECTED_CHANGE_FIELDS = frozenset({"id", "version", "created_by", "created_at", "updated_at"})


class PipelineStage(StrEnum):
    AUTHORIZING = "authorizing"
    PRE_PROCESSING = "pre_processing"
    VALIDATING = "validating"
    SNAPSHOTTING = "snapshotting"
    CLEANING_UP = "cleaning_up"
    PERSISTING = "persisting"
    POST_PROCESSING = "post_processing"
    NOTIFYING = "notifying"
    AUDITING = "auditing"
    BACKING_UP = "backing_up"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(slots=True)
class _PipelineRun:
    """Per-call stage tracker; emits lifecycle events and refuses to abort after commit."""

    mutation_id: str
    action: MutationAction
    actor_id: str
    events: EventBus
    item_id: str | None = None
    stage: PipelineStage = PipelineStage.AUTHORIZING
    committed: bool = False
    warnings: list[SideEffectWarning] = field(default_factory=list)

    async def emit(self, event_type: EventType, **payload: JSONValue) -> None:
        base: dict[str, JSONValue] = {
            "action": self.action.value,
            "actor_id": self.actor_id,
            "item_id": self.item_id,
        }
        base.update(payload)
        await self.events.emit_async(event_type, base, correlation_id=self.mutation_id)

    async def enter(self, stage: PipelineStage) -> None:
        self.stage = stage
        await self.emit(EventType.STAGE_ENTERED, stage=stage.value)

    async def abort(self, error: MutationError) -> MutationOutcome[T]:
        if self.committed:
            raise RuntimeError(f"mutation {self.mutation_id} already committed; cannot abort")
        failed_stage = self.stage
        self.stage = PipelineStage.ABORTED
        await self.emit(
            EventType.STAGE_FAILED,
            stage=failed_stage.value,
            error_kind=error.kind.value,
            message=error.message,
        )
        await self.emit(EventType.MUTATION_ABORTED, stage=failed_stage.value, error=error.to_dict())
        logger.info(
            "mutation aborted",
            extra={"stage": failed_stage.value, "error_kind": error.kind.value},
        )
        return MutationOutcome(error=error, mutation_id=self.mutation_id)

    async def fault(self, exc: PersistenceFailure) -> None:
        failed_stage = self.stage
        self.stage = PipelineStage.ABORTED
        await self.emit(
            EventType.STAGE_FAILED,
            stage=failed_stage.value,
            error_kind="persistence_failure",
            message=str(exc),
        )
        await self.emit(EventType.MUTATION_ABORTED, stage=failed_stage.value, error=str(exc))

    async def commit(self, version: int) -> None:
        self.committed = True
        await self.emit(EventType.MUTATION_COMMITTED, version=version)
        logger.info("mutation committed", extra={"version": version})

    async def warn(self, warnings: Sequence[SideEffectWarning]) -> None:
        for warning in warnings:
            self.warnings.append(warning)
            await self.emit(EventType.SIDE_EFFECT_FAILED, **warning.to_dict())

    async def complete(
        self, value: T, *, view: Mapping[str, JSONValue] | None = None
    ) -> MutationOutcome[T]:
        self.stage = PipelineStage.DONE
        await self.emit(EventType.MUTATION_COMPLETED, warning_count=len(self.warnings))
        return MutationOutcome(
            value=value,
            warnings=tuple(self.warnings),
            view=view,
            mutation_id=self.mutation_id,
        )


class MutationOrchestrator:
    """Composes the pipeline components into ``create_item``/``update_item``/``delete_item``."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        clock: Clock | None = None,
        permissions: PermissionGate | None = None,
        validator: FieldValidator | None = None,
        processors: ProcessorChain | None = None,
        versioning: VersioningService | None = None,
        conflicts: ConflictResolver | None = None,
        notifications: NotificationDispatcher | None = None,
        audit: AuditLogger | None = None,
        backups: BackupRecorder | None = None,
        attachments: AttachmentStore | None = None,
        dependencies: DependencyResolver | None = None,
        cache: ItemCache | None = None,
        events: EventBus | None = None,
        default_options: MutationOptions | None = None,
    ) -> None:
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._permissions = permissions or PermissionGate()
        self._validator = validator or FieldValidator()
        self._processors = processors or ProcessorChain()
        self._versioning = versioning or VersioningService()
        self._conflicts = conflicts or ConflictResolver()
        self._notifications = notifications or NotificationDispatcher()
        self._audit = audit or AuditLogger()
        self._backups = backups or BackupRecorder()
        self._attachments = attachments or NullAttachmentStore()
        self._dependencies = dependencies
        self._cache = cache or NullItemCache()
        self._events = events or EventBus()
        self._default_options = default_options or MutationOptions()
        self._committing: set[asyncio.Task[object]] = set()

    @property
    def events(self) -> EventBus:
        return self._events

    # ------------------------------------------------------------------ create

    async def create_item(
        self,
        request: ItemCreateRequest | Mapping[str, object],
        actor: Actor,
        options: MutationOptions | Mapping[str, object] | None = None,
    ) -> MutationOutcome[Item]:
        opts = self._resolve_options(options)
        run = self._start(MutationAction.CREATE, actor)
        with correlation_scope(mutation_id=run.mutation_id, actor_id=actor.actor_id):
            await run.emit(EventType.MUTATION_STARTED)

            await run.enter(PipelineStage.AUTHORIZING)
            decision = self._permissions.check(actor, MutationAction.CREATE)
            if not decision.allowed:
                return await run.abort(MutationError.permission_denied(decision.reason))

            await run.enter(PipelineStage.PRE_PROCESSING)
            try:
                parsed = (
                    request
                    if isinstance(request, ItemCreateRequest)
                    else ItemCreateRequest.from_mapping(request)
                )
            except ValueError as exc:
                return await run.abort(MutationError.validation_failed([_violation_from_error(exc)]))

            now = self._clock.now()
            run.item_id = ids.generate_item_id()
            stamp = datetime_to_iso8601z(now)
            working = parsed.to_record()
            working.update(
                {
                    "id": run.item_id,
                    "created_by": actor.actor_id,
                    "version": 1,
                    "created_at": stamp,
                    "updated_at": stamp,
                }
            )

            with correlation_scope(item_id=run.item_id):
                try:
                    working = self._processors.apply(
                        working, opts.pre_processors, opts.processor_options
                    )
                except ProcessorFailure as exc:
                    return await run.abort(MutationError.processor_failure(exc.step_name, exc.cause))

                await run.enter(PipelineStage.VALIDATING)
                item, violations = self._validate(working, opts)
                if item is not None:
                    stage_problem = initial_stage_violation(item.workflow_stage)
                    if stage_problem is not None:
                        violations = (*violations, stage_problem)
                if item is None or violations:
                    return await run.abort(MutationError.validation_failed(violations))
                pending = await self._resolve_dependencies(item, opts)

                return await self._shielded(self._commit_create(run, item, pending, opts, now))

    async def _commit_create(
        self,
        run: _PipelineRun,
        item: Item,
        pending: Sequence[SideEffectWarning],
        opts: MutationOptions,
        now: datetime,
    ) -> MutationOutcome[Item]:
        await run.enter(PipelineStage.PERSISTING)
        try:
            stored = await self._gateway.insert(item)
        except PersistenceFailure as exc:
            await run.fault(exc)
            raise
        await run.commit(stored.version)
        await run.warn(pending)
        await self._invalidate_cache(run, stored, opts)

        view = await self._post_process(run, stored, opts)
        await self._notify_and_audit(
            run, stored, None, MutationAction.CREATE, AuditAction.CREATED, None, opts, now
        )
        await self._backup(run, stored, opts)
        return await run.complete(stored, view=view)

    # ------------------------------------------------------------------ update

    async def update_item(
        self,
        item_id: str,
        changes: Mapping[str, object],
        expected_version: int | None,
        options: MutationOptions | Mapping[str, object] | None,
        actor: Actor,
    ) -> MutationOutcome[Item]:
        """Apply ``changes`` to ``item_id``.

        ``expected_version=None`` means the version read at pipeline start.
        """
        opts = self._resolve_options(options)
        run = self._start(MutationAction.UPDATE, actor, item_id=item_id)
        with correlation_scope(
            mutation_id=run.mutation_id, actor_id=actor.actor_id, item_id=item_id
        ):
            await run.emit(EventType.MUTATION_STARTED, expected_version=expected_version)

            await run.enter(PipelineStage.AUTHORIZING)
            base = await self._gateway.get(item_id)
            if base is None:
                return await run.abort(MutationError.not_found(item_id))
            decision = self._permissions.check(actor, MutationAction.UPDATE, base)
            if not decision.allowed:
                return await run.abort(MutationError.permission_denied(decision.reason))
            expected = base.version if expected_version is None else expected_version

            await run.enter(PipelineStage.PRE_PROCESSING)
            try:
                normalized = normalize_change_keys(changes)
            except ValueError as exc:
                return await run.abort(MutationError.validation_failed([_violation_from_error(exc)]))
            change_problems = _change_violations(base, normalized)
            if change_problems:
                return await run.abort(MutationError.validation_failed(change_problems))

            working = base.to_dict()
            working.update(normalized)  # type: ignore[arg-type]
            try:
                working = self._processors.apply(working, opts.pre_processors, opts.processor_options)
            except ProcessorFailure as exc:
                return await run.abort(MutationError.processor_failure(exc.step_name, exc.cause))

            await run.enter(PipelineStage.VALIDATING)
            candidate, violations = self._validate(working, opts)
            if candidate is not None:
                stage_problem = transition_violation(base.workflow_stage, candidate.workflow_stage)
                if stage_problem is not None:
                    violations = (*violations, stage_problem)
            if candidate is None or violations:
                return await run.abort(MutationError.validation_failed(violations))
            denial = self._approval_denial(actor, base, candidate)
            if denial is not None:
                return await run.abort(denial)
            pending = await self._resolve_dependencies(candidate, opts)

            now = self._clock.now()

            # Conflict resolution against a fresh read, immediately before the write.
            fresh = await self._gateway.get(item_id)
            if fresh is None:
                return await run.abort(MutationError.not_found(item_id))
            resolution = self._conflicts.resolve(
                expected,
                fresh,
                opts.conflict_strategy,
                base=base,
                proposed=candidate.to_dict(),
                merge_function=opts.merge_function,
            )
            if isinstance(resolution, Reject):
                return await run.abort(resolution.error)
            if resolution.record is not None:
                candidate, violations = self._validate(resolution.record, opts)
                if candidate is not None:
                    stage_problem = transition_violation(
                        fresh.workflow_stage, candidate.workflow_stage
                    )
                    if stage_problem is not None:
                        violations = (*violations, stage_problem)
                if candidate is None or violations:
                    return await run.abort(MutationError.validation_failed(violations))
            if fresh.version != base.version:
                denial = self._approval_denial(actor, fresh, candidate)
                if denial is not None:
                    return await run.abort(denial)

            # A rejected update leaves no snapshot behind.
            snapshot: ItemSnapshot | None = None
            if opts.versioning_enabled:
                await run.enter(PipelineStage.SNAPSHOTTING)
                snapshot = await self._save_snapshot(run, base, actor, now)
                if fresh.version != base.version:
                    snapshot = await self._save_snapshot(run, fresh, actor, now)

            final = replace(
                candidate,
                version=resolution.new_version,
                updated_at=max(now, candidate.created_at),
            )
            return await self._shielded(
                self._commit_update(
                    run, final, fresh, resolution.cas_version, snapshot, pending, opts, now
                )
            )

    async def _commit_update(
        self,
        run: _PipelineRun,
        final: Item,
        prior: Item,
        cas_version: int,
        snapshot: ItemSnapshot | None,
        pending: Sequence[SideEffectWarning],
        opts: MutationOptions,
        now: datetime,
    ) -> MutationOutcome[Item]:
        await run.enter(PipelineStage.PERSISTING)
        try:
            written = await self._gateway.update_if_version(final, cas_version)
        except PersistenceFailure as exc:
            await run.fault(exc)
            raise
        if isinstance(written, VersionConflict):
            if written.actual_version is None:
                return await run.abort(MutationError.not_found(final.id))
            return await run.abort(
                MutationError.version_mismatch(written.expected_version, written.actual_version)
            )

        await run.commit(written.version)
        await run.warn(pending)
        await self._invalidate_cache(run, written, opts)

        view = await self._post_process(run, written, opts)
        await self._notify_and_audit(
            run,
            written,
            prior,
            MutationAction.UPDATE,
            AuditAction.UPDATED,
            None if snapshot is None else snapshot.ref,
            opts,
            now,
        )
        await self._backup(run, written, opts)
        return await run.complete(written, view=view)

    # ------------------------------------------------------------------ delete

    async def delete_item(
        self,
        item_id: str,
        actor: Actor,
        options: MutationOptions | Mapping[str, object] | None = None,
    ) -> MutationOutcome[DeleteConfirmation]:
        opts = self._resolve_options(options)
        run = self._start(MutationAction.DELETE, actor, item_id=item_id)
        with correlation_scope(
            mutation_id=run.mutation_id, actor_id=actor.actor_id, item_id=item_id
        ):
            await run.emit(EventType.MUTATION_STARTED)

            await run.enter(PipelineStage.AUTHORIZING)
            current = await self._gateway.get(item_id)
            if current is None:
                return await run.abort(MutationError.not_found(item_id))
            decision = self._permissions.check(actor, MutationAction.DELETE, current)
            if not decision.allowed:
                return await run.abort(MutationError.permission_denied(decision.reason))

            now = self._clock.now()
            snapshot: ItemSnapshot | None = None
            if opts.versioning_enabled:
                await run.enter(PipelineStage.SNAPSHOTTING)
                snapshot = await self._save_snapshot(run, current, actor, now)

            await run.enter(PipelineStage.CLEANING_UP)
            cleanup = await self._cleanup(current, opts)
            if cleanup and opts.blocking_cleanup:
                await run.warn(cleanup)
                return await run.abort(MutationError.cleanup_failed(cleanup))

            return await self._shielded(
                self._commit_delete(run, current, snapshot, cleanup, opts, now)
            )

    async def _commit_delete(
        self,
        run: _PipelineRun,
        current: Item,
        snapshot: ItemSnapshot | None,
        cleanup: Sequence[SideEffectWarning],
        opts: MutationOptions,
        now: datetime,
    ) -> MutationOutcome[DeleteConfirmation]:
        await run.enter(PipelineStage.PERSISTING)
        try:
            deleted = await self._gateway.delete(current.id)
        except PersistenceFailure as exc:
            await run.fault(exc)
            raise
        if deleted is None:
            return await run.abort(MutationError.not_found(current.id))

        await run.commit(deleted.version)
        await run.warn(cleanup)
        await self._invalidate_cache(run, deleted, opts)
        await self._notify_and_audit(
            run,
            deleted,
            None,
            MutationAction.DELETE,
            AuditAction.DELETED,
            None if snapshot is None else snapshot.ref,
            opts,
            now,
        )
        return await run.complete(DeleteConfirmation(deleted.id, deleted.version))

    # ----------------------------------------------------------------- helpers

    def _start(self, action: MutationAction, actor: Actor, *, item_id: str | None = None) -> _PipelineRun:
        return _PipelineRun(
            mutation_id=ids.generate_mutation_id(),
            action=action,
            actor_id=actor.actor_id,
            events=self._events,
            item_id=item_id,
        )

    def _resolve_options(
        self, options: MutationOptions | Mapping[str, object] | None
    ) -> MutationOptions:
        if options is None:
            return self._default_options
        if isinstance(options, MutationOptions):
            return options
        return MutationOptions.from_mapping(options)

    async def _shielded(self, coroutine: Awaitable[MutationOutcome[T]]) -> MutationOutcome[T]:
        task: asyncio.Task[MutationOutcome[T]] = asyncio.ensure_future(coroutine)
        self._committing.add(task)  # type: ignore[arg-type]
        task.add_done_callback(self._committing.discard)  # type: ignore[arg-type]
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for commits whose callers stopped waiting."""
        pending = tuple(self._committing)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _validate(
        self, record: Mapping[str, JSONValue], opts: MutationOptions
    ) -> tuple[Item | None, tuple[Violation, ...]]:
        result = self._validator.validate(record, opts.validation_rules)
        if not result.ok:
            return None, result.violations
        try:
            return Item.from_dict(result.record), ()
        except ValueError as exc:
            return None, (_violation_from_error(exc),)

    def _approval_denial(self, actor: Actor, base: Item, candidate: Item) -> MutationError | None:
        # The gate applies if either the stored or the edited item requires approval.
        gated = replace(base, approval_required=base.approval_required or candidate.approval_required)
        decision = self._permissions.check_stage_transition(actor, gated, candidate.workflow_stage)
        if decision.allowed:
            return None
        return MutationError.permission_denied(decision.reason)

    async def _save_snapshot(
        self, run: _PipelineRun, item: Item, actor: Actor, now: datetime
    ) -> ItemSnapshot:
        snapshot = self._versioning.snapshot(item, actor.actor_id, now)
        try:
            return await self._gateway.save_snapshot(snapshot)
        except PersistenceFailure as exc:
            await run.fault(exc)
            raise

    async def _resolve_dependencies(
        self, item: Item, opts: MutationOptions
    ) -> tuple[SideEffectWarning, ...]:
        references = tuple(dict.fromkeys((*item.dependencies, *item.linked_items)))
        if self._dependencies is None or not references:
            return ()
        try:
            resolution = await run_with_timeout(
                call_maybe_async(self._dependencies.resolve, references),
                opts.side_effect_timeout_seconds,
            )
        except Exception as exc:
            logger.warning(
                "dependency resolution failed",
                extra={"error_type": type(exc).__name__},
            )
            return (SideEffectWarning.from_exception("dependencies", "dependency_resolver", exc),)
        if not isinstance(resolution, DependencyResolution):
            return (
                SideEffectWarning(
                    stage="dependencies",
                    target="dependency_resolver",
                    error_type="TypeError",
                    message=f"resolver returned {type(resolution).__name__}",
                ),
            )
        return tuple(
            SideEffectWarning(
                stage="dependencies",
                target=missing,
                error_type="BrokenLink",
                message=f"referenced item {missing!r} does not exist",
            )
            for missing in resolution.missing
        )

    async def _cleanup(self, item: Item, opts: MutationOptions) -> tuple[SideEffectWarning, ...]:
        """Attachment cleanup, dependent notification and audit archival, in that order."""
        timeout = opts.side_effect_timeout_seconds
        warnings: list[SideEffectWarning] = []
        warnings.extend(
            await _guarded(
                "cleanup",
                "attachments",
                self._attachments.cleanup,
                item.id,
                item.attachment_ids,
                timeout_seconds=timeout,
            )
        )
        dependents = tuple(dict.fromkeys((*item.linked_items, *item.dependencies)))
        warnings.extend(
            await self._notifications.notify_dependents(
                opts.notification, item, dependents, timeout_seconds=timeout
            )
        )
        warnings.extend(await self._audit.archive(item.id, timeout_seconds=timeout))
        return tuple(warnings)

    async def _invalidate_cache(self, run: _PipelineRun, item: Item, opts: MutationOptions) -> None:
        await run.warn(
            await _guarded(
                "cache",
                "item_cache",
                self._cache.invalidate,
                item.id,
                timeout_seconds=opts.side_effect_timeout_seconds,
            )
        )

    async def _post_process(
        self, run: _PipelineRun, item: Item, opts: MutationOptions
    ) -> Record | None:
        if not opts.post_processors:
            return None
        await run.enter(PipelineStage.POST_PROCESSING)
        try:
            return self._processors.apply(item.to_dict(), opts.post_processors, opts.processor_options)
        except ProcessorFailure as exc:
            await run.warn(
                [SideEffectWarning.from_exception("post_processing", exc.step_name, exc.cause)]
            )
            return None

    async def _notify_and_audit(
        self,
        run: _PipelineRun,
        item: Item,
        prior: Item | None,
        action: MutationAction,
        audit_action: AuditAction,
        before_ref: str | None,
        opts: MutationOptions,
        now: datetime,
    ) -> None:
        timeout = opts.side_effect_timeout_seconds
        await run.enter(PipelineStage.NOTIFYING)
        await run.warn(
            await self._notifications.dispatch(
                opts.notification, item, prior, action, timeout_seconds=timeout
            )
        )

        await run.enter(PipelineStage.AUDITING)
        entry = AuditEntry(
            id=ids.generate_audit_id(),
            item_id=item.id,
            action=audit_action,
            actor_id=run.actor_id,
            timestamp=now,
            before_snapshot_ref=before_ref,
            after_state=None if audit_action is AuditAction.DELETED else item.to_dict(),
        )
        await run.warn(await self._audit.record(opts.audit, entry, timeout_seconds=timeout))

    async def _backup(self, run: _PipelineRun, item: Item, opts: MutationOptions) -> None:
        if not opts.backup.enabled:
            return
        await run.enter(PipelineStage.BACKING_UP)
        await run.warn(
            await self._backups.backup(
                opts.backup, item, timeout_seconds=opts.side_effect_timeout_seconds
            )
        )


async def _guarded(
    stage: str,
    target: str,
    func: Callable[..., object],
    *args: object,
    timeout_seconds: float,
) -> tuple[SideEffectWarning, ...]:
    try:
        await run_with_timeout(call_maybe_async(func, *args), timeout_seconds)
    except Exception as exc:
        logger.warning(
            "collaborator call failed",
            extra={"stage": stage, "target": target, "error_type": type(exc).__name__},
        )
        return (SideEffectWarning.from_exception(stage, target, exc),)
    return ()


def _change_violations(base: Item, changes: Mapping[str, object]) -> list[Violation]:
    problems: list[Violation] = []
    current = base.to_dict()
    for key in changes:
        if key not in ITEM_FIELD_NAMES:
            problems.append(Violation(key, ViolationCode.SHAPE, "unknown field"))
        elif key in _PROTECTED_CHANGE_FIELDS and changes[key] != current.get(key):
            problems.append(Violation(key, ViolationCode.IMMUTABLE_FIELD, "cannot be changed"))
    return problems


def _violation_from_error(exc: ValueError) -> Violation:
    """Turn ``"Model.field[0]: message"`` into a shape violation on ``field``."""
    text = str(exc)
    path, sep, message = text.partition(": ")
    if not sep:
        return Violation("record", ViolationCode.SHAPE, text)
    _, dot, rest = path.partition(".")
    field_name = rest.split(".", 1)[0].split("[", 1)[0] if dot else "record"
    return Violation(field_name, ViolationCode.SHAPE, message)


__all__ = ["MutationOrchestrator", "PipelineStage"]
