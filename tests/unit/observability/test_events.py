from __future__ import annotations

import pytest

from itemflow.domain.events import EventType, PipelineEvent, redact_sensitive
from itemflow.observability.events import EventBus


def test_replay_filters_by_type_and_correlation() -> None:
    bus = EventBus()
    bus.emit(EventType.MUTATION_STARTED, {"action": "create"}, correlation_id="mut-a")
    bus.emit(EventType.STAGE_ENTERED, {"stage": "authorizing"}, correlation_id="mut-a")
    bus.emit(EventType.MUTATION_STARTED, {"action": "update"}, correlation_id="mut-b")

    assert [e.payload["action"] for e in bus.replay(event_type=EventType.MUTATION_STARTED)] == [
        "create",
        "update",
    ]
    assert len(bus.replay(correlation_id="mut-a")) == 2
    assert len(bus.replay(limit=1)) == 1
    assert bus.replay(limit=0) == ()


def test_buffer_keeps_only_the_newest_events() -> None:
    bus = EventBus(buffer_size=2)
    for stage in ("a", "b", "c"):
        bus.emit(EventType.STAGE_ENTERED, {"stage": stage})

    assert [event.payload["stage"] for event in bus.replay()] == ["b", "c"]


def test_subscriber_failures_are_recorded_not_raised() -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken(event: PipelineEvent) -> None:
        raise RuntimeError("subscriber crashed")

    bus.subscribe(EventType.MUTATION_COMMITTED, broken)
    bus.subscribe(None, lambda event: seen.append(event.event_type.value))

    _, errors = bus.emit(EventType.MUTATION_COMMITTED, {"version": 2})

    assert seen == ["MutationCommitted"]
    assert [(error.target, error.error_type) for error in errors] == [("broken", "RuntimeError")]
    assert bus.dispatch_errors() == errors


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    seen: list[PipelineEvent] = []
    token = bus.subscribe(None, seen.append)

    assert bus.unsubscribe(token) is True
    bus.emit(EventType.MUTATION_STARTED, {})

    assert seen == []
    assert bus.unsubscribe(token) is False


@pytest.mark.asyncio
async def test_async_subscribers_are_awaited_in_order() -> None:
    bus = EventBus()
    order: list[str] = []

    async def first(event: PipelineEvent) -> None:
        order.append("first")

    def second(event: PipelineEvent) -> None:
        order.append("second")

    bus.subscribe(None, first)
    bus.subscribe(None, second)

    await bus.emit_async(EventType.MUTATION_COMPLETED, {"warning_count": 0})

    assert order == ["first", "second"]


def test_critical_events_reach_the_persistence_callback() -> None:
    persisted: list[EventType] = []
    bus = EventBus(persist_event=lambda event: persisted.append(event.event_type))

    bus.emit(EventType.STAGE_ENTERED, {"stage": "persisting"})
    bus.emit(EventType.MUTATION_COMMITTED, {"version": 1})
    bus.emit(EventType.MUTATION_ABORTED, {"stage": "validating"})

    assert persisted == [EventType.MUTATION_COMMITTED, EventType.MUTATION_ABORTED]


def test_invalid_buffer_size_is_rejected() -> None:
    with pytest.raises(ValueError, match="buffer_size must be > 0"):
        EventBus(buffer_size=0)


def test_events_round_trip_through_json() -> None:
    bus = EventBus()
    event, _ = bus.emit(EventType.SIDE_EFFECT_FAILED, {"stage": "notification"}, correlation_id="mut-z")

    assert PipelineEvent.from_json(event.to_json()) == event


def test_redact_sensitive_masks_secret_payload_keys() -> None:
    bus = EventBus()
    event, _ = bus.emit(
        EventType.SIDE_EFFECT_FAILED,
        {"target": "webhook", "settings": {"api_token": "abc", "url": "https://hooks.example"}},
    )

    redacted = redact_sensitive(event)

    assert redacted.payload["settings"] == {"api_token": "***REDACTED***", "url": "https://hooks.example"}
    assert event.payload["settings"]["api_token"] == "abc"  # type: ignore[index]
