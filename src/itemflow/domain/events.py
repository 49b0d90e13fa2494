"""Pipeline event definitions, serialization, and payload redaction helpers."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from itemflow.domain import ids
from itemflow.domain.models import (
    JSONValue,
    as_datetime,
    as_enum,
    as_json_object,
    as_str,
    datetime_to_iso8601z,
    expect_object,
)

_SENSITIVE_KEY_TERMS = ("secret", "key", "password", "token")
_REDACTED_VALUE = "***REDACTED***"


class EventType(StrEnum):
    """Lifecycle events emitted by the mutation orchestrator."""

    MUTATION_STARTED = "MutationStarted"
    STAGE_ENTERED = "StageEntered"
    STAGE_FAILED = "StageFailed"
    MUTATION_ABORTED = "MutationAborted"
    MUTATION_COMMITTED = "MutationCommitted"
    SIDE_EFFECT_FAILED = "SideEffectFailed"
    MUTATION_COMPLETED = "MutationCompleted"


# Events that a persistence callback should durably record.
CRITICAL_EVENT_TYPES: frozenset[EventType] = frozenset(
    {EventType.MUTATION_COMMITTED, EventType.MUTATION_ABORTED}
)


@dataclass(slots=True)
class PipelineEvent:
    """Serializable event envelope; ``correlation_id`` is the mutation id."""

    event_id: str
    event_type: EventType
    timestamp: datetime
    correlation_id: str | None
    payload: dict[str, JSONValue]

    def __post_init__(self) -> None:
        ids.validate_prefixed_id(self.event_id, ids.EVENT_ID_PREFIX)
        self.event_type = as_enum(EventType, self.event_type, "PipelineEvent.event_type")
        self.timestamp = as_datetime(self.timestamp, "PipelineEvent.timestamp")
        if self.correlation_id is not None:
            self.correlation_id = as_str(
                self.correlation_id, "PipelineEvent.correlation_id", max_len=256
            )
        self.payload = as_json_object(self.payload, "PipelineEvent.payload")

    @classmethod
    def create(
        cls,
        event_type: EventType,
        payload: Mapping[str, JSONValue],
        *,
        correlation_id: str | None,
        timestamp: datetime,
    ) -> PipelineEvent:
        return cls(
            event_id=ids.generate_event_id(),
            event_type=event_type,
            timestamp=timestamp,
            correlation_id=correlation_id,
            payload=dict(payload),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": datetime_to_iso8601z(self.timestamp),
            "correlation_id": self.correlation_id,
            "payload": self.payload,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> PipelineEvent:
        parsed = expect_object(
            data,
            "PipelineEvent",
            required={"event_id", "event_type", "timestamp", "payload"},
            optional={"correlation_id"},
        )
        return cls(
            event_id=as_str(parsed["event_id"], "PipelineEvent.event_id", max_len=128),
            event_type=as_enum(EventType, parsed["event_type"], "PipelineEvent.event_type"),
            timestamp=as_datetime(parsed["timestamp"], "PipelineEvent.timestamp"),
            correlation_id=parsed.get("correlation_id"),  # type: ignore[arg-type]
            payload=as_json_object(parsed["payload"], "PipelineEvent.payload"),
        )

    @classmethod
    def from_json(cls, raw: str) -> PipelineEvent:
        try:
            parsed = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            raise ValueError(f"PipelineEvent: invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("PipelineEvent: JSON root must be an object")
        return cls.from_dict(parsed)


def redact_sensitive(event: PipelineEvent) -> PipelineEvent:
    """Return a new event with sensitive payload keys deeply redacted."""
    redacted_payload = _redact_value(event.payload, key_context=None)
    if not isinstance(redacted_payload, dict):
        raise ValueError("redacted payload must remain a JSON object")
    return PipelineEvent(
        event_id=event.event_id,
        event_type=event.event_type,
        timestamp=event.timestamp,
        correlation_id=event.correlation_id,
        payload=redacted_payload,
    )


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(term in lowered for term in _SENSITIVE_KEY_TERMS)


def _redact_value(value: JSONValue, key_context: str | None) -> JSONValue:
    if key_context is not None and _is_sensitive_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, list):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, dict):
        return {key: _redact_value(item, key_context=key) for key, item in value.items()}
    return value


__all__ = ["CRITICAL_EVENT_TYPES", "EventType", "PipelineEvent", "redact_sensitive"]
