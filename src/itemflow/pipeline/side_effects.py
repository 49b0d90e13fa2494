"""Best-effort notification, audit and backup fan-out.

Every dispatcher bounds each collaborator call with a timeout and converts
any failure into a :class:`SideEffectWarning`. They never raise for a
collaborator fault, so a committed write is never rolled back by them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from itemflow.collaborators import AuditSink, BackupSink, NotificationChannel, channel_names
from itemflow.domain.errors import SideEffectWarning
from itemflow.domain.models import AuditEntry, Item, JSONValue, MutationAction
from itemflow.pipeline.options import AuditSettings, BackupSettings, NotificationSettings
from itemflow.utils.concurrency import call_maybe_async, run_with_timeout

logger = logging.getLogger(__name__)

NOTIFICATION_STAGE = "notification"
DEPENDENTS_STAGE = "dependents"
AUDIT_STAGE = "audit"
AUDIT_ARCHIVE_STAGE = "audit_archive"
BACKUP_STAGE = "backup"

# ``event`` value of the payload sent when a referenced item is deleted.
DEPENDENTS_AFFECTED = "dependents_affected"


def changed_fields(item: Item, prior_item: Item | None) -> list[str]:
    if prior_item is None:
        return []
    current = item.to_dict()
    previous = prior_item.to_dict()
    ignored = {"version", "updated_at"}
    return sorted(
        key
        for key in set(current) | set(previous)
        if key not in ignored and current.get(key) != previous.get(key)
    )


class NotificationDispatcher:
    def __init__(self, channels: Sequence[NotificationChannel] = ()) -> None:
        channel_names(channels)
        self._channels = {channel.name: channel for channel in channels}

    @property
    def channel_names(self) -> tuple[str, ...]:
        return tuple(self._channels)

    async def dispatch(
        self,
        settings: NotificationSettings,
        item: Item,
        prior_item: Item | None,
        action: MutationAction,
        *,
        timeout_seconds: float,
    ) -> tuple[SideEffectWarning, ...]:
        """Send one payload to each selected channel concurrently; return soft failures."""
        if not settings.enabled:
            return ()
        payload: dict[str, JSONValue] = {
            "action": action.value,
            "item_id": item.id,
            "version": item.version,
            "prior_version": None if prior_item is None else prior_item.version,
            "changed_fields": list(changed_fields(item, prior_item)),
            "item": item.to_dict(),
        }
        return await self._fan_out(NOTIFICATION_STAGE, settings, payload, timeout_seconds)

    async def notify_dependents(
        self,
        settings: NotificationSettings,
        item: Item,
        dependent_ids: Sequence[str],
        *,
        timeout_seconds: float,
    ) -> tuple[SideEffectWarning, ...]:
        """Tell the selected channels which linked and depended-on items lose ``item``."""
        if not settings.enabled or not dependent_ids:
            return ()
        payload: dict[str, JSONValue] = {
            "action": MutationAction.DELETE.value,
            "event": DEPENDENTS_AFFECTED,
            "item_id": item.id,
            "version": item.version,
            "dependent_ids": list(dependent_ids),
        }
        return await self._fan_out(DEPENDENTS_STAGE, settings, payload, timeout_seconds)

    async def _fan_out(
        self,
        stage: str,
        settings: NotificationSettings,
        payload: dict[str, JSONValue],
        timeout_seconds: float,
    ) -> tuple[SideEffectWarning, ...]:
        warnings: list[SideEffectWarning] = []
        selected: list[NotificationChannel] = []
        for name in settings.channels or tuple(self._channels):
            channel = self._channels.get(name)
            if channel is None:
                warnings.append(
                    SideEffectWarning(
                        stage=stage,
                        target=name,
                        error_type="UnknownChannel",
                        message=f"no notification channel named {name!r}",
                    )
                )
                continue
            selected.append(channel)

        results = await asyncio.gather(
            *(self._send(stage, channel, settings, payload, timeout_seconds) for channel in selected)
        )
        warnings.extend(warning for warning in results if warning is not None)
        return tuple(warnings)

    async def _send(
        self,
        stage: str,
        channel: NotificationChannel,
        settings: NotificationSettings,
        payload: dict[str, JSONValue],
        timeout_seconds: float,
    ) -> SideEffectWarning | None:
        try:
            await run_with_timeout(
                call_maybe_async(channel.send, dict(settings.params), payload), timeout_seconds
            )
        except Exception as exc:
            logger.warning(
                "notification channel failed",
                extra={
                    "stage": stage,
                    "channel": channel.name,
                    "item_id": payload["item_id"],
                    "error_type": type(exc).__name__,
                },
            )
            return SideEffectWarning.from_exception(stage, channel.name, exc)
        return None


class AuditLogger:
    def __init__(self, sink: AuditSink | None = None) -> None:
        self._sink = sink

    @property
    def sink(self) -> AuditSink | None:
        return self._sink

    async def record(
        self, settings: AuditSettings, entry: AuditEntry, *, timeout_seconds: float
    ) -> tuple[SideEffectWarning, ...]:
        if not settings.enabled or self._sink is None:
            return ()
        warning = await _call(
            AUDIT_STAGE,
            "audit_sink",
            entry.item_id,
            self._sink.append,
            entry,
            timeout_seconds=timeout_seconds,
        )
        return () if warning is None else (warning,)

    async def archive(self, item_id: str, *, timeout_seconds: float) -> tuple[SideEffectWarning, ...]:
        """Mark an item's trail archived; entries themselves are never removed."""
        if self._sink is None:
            return ()
        warning = await _call(
            AUDIT_ARCHIVE_STAGE,
            "audit_sink",
            item_id,
            self._sink.archive,
            item_id,
            timeout_seconds=timeout_seconds,
        )
        return () if warning is None else (warning,)


class BackupRecorder:
    """Copies committed items to a backup sink when the call asks for it."""

    def __init__(self, sink: BackupSink | None = None) -> None:
        self._sink = sink

    @property
    def sink(self) -> BackupSink | None:
        return self._sink

    async def backup(
        self, settings: BackupSettings, item: Item, *, timeout_seconds: float
    ) -> tuple[SideEffectWarning, ...]:
        if not settings.enabled:
            return ()
        if self._sink is None:
            return (
                SideEffectWarning(
                    stage=BACKUP_STAGE,
                    target="backup_sink",
                    error_type="NoBackupSink",
                    message="backup requested but no backup sink is configured",
                ),
            )
        warning = await _call(
            BACKUP_STAGE,
            "backup_sink",
            item.id,
            self._sink.save,
            item,
            timeout_seconds=timeout_seconds,
        )
        return () if warning is None else (warning,)


async def _call(
    stage: str,
    target: str,
    item_id: str,
    func: Callable[..., object],
    *args: object,
    timeout_seconds: float,
) -> SideEffectWarning | None:
    try:
        await run_with_timeout(call_maybe_async(func, *args), timeout_seconds)
    except Exception as exc:
        logger.warning(
            "sink call failed",
            extra={
                "stage": stage,
                "target": target,
                "item_id": item_id,
                "error_type": type(exc).__name__,
            },
        )
        return SideEffectWarning.from_exception(stage, target, exc)
    return None


__all__ = [
    "AUDIT_ARCHIVE_STAGE",
    "AUDIT_STAGE",
    "BACKUP_STAGE",
    "DEPENDENTS_AFFECTED",
    "DEPENDENTS_STAGE",
    "NOTIFICATION_STAGE",
    "AuditLogger",
    "BackupRecorder",
    "NotificationDispatcher",
    "changed_fields",
]
