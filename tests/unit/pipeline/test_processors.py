from __future__ import annotations

import pytest

from itemflow.pipeline.processors import (
    ProcessorChain,
    ProcessorFailure,
    ProcessorStep,
    apply_template_defaults,
    default_priority,
    normalize_tags,
    strip_text_fields,
)


def _step(name: str, func) -> ProcessorStep:
    return ProcessorStep(name, func)


def test_steps_run_in_declaration_order() -> None:
    seen: list[str] = []

    def first(record, options):
        seen.append("first")
        record["status"] = "a"
        return record

    def second(record, options):
        seen.append("second")
        record["status"] += "b"
        return record

    result = ProcessorChain().apply({"name": "x"}, [_step("first", first), _step("second", second)])

    assert seen == ["first", "second"]
    assert result["status"] == "ab"


def test_input_record_is_never_mutated() -> None:
    original = {"name": "  x  ", "custom_fields": {"a": 1}}

    def poke(record, options):
        record["custom_fields"]["a"] = 2
        return record

    ProcessorChain().apply(original, [strip_text_fields, _step("poke", poke)])

    assert original == {"name": "  x  ", "custom_fields": {"a": 1}}


def test_first_failure_aborts_the_chain() -> None:
    calls: list[str] = []

    def broken(record, options):
        raise LookupError("missing catalogue")

    def never(record, options):
        calls.append("never")
        return record

    with pytest.raises(ProcessorFailure) as excinfo:
        ProcessorChain().apply({}, [_step("broken", broken), _step("never", never)])

    assert excinfo.value.step_name == "broken"
    assert isinstance(excinfo.value.cause, LookupError)
    assert calls == []


def test_non_mapping_result_is_a_failure() -> None:
    with pytest.raises(ProcessorFailure, match="expected a mapping"):
        ProcessorChain().apply({}, [_step("nothing", lambda record, options: None)])


def test_steps_may_not_touch_immutable_fields() -> None:
    def rewrite(record, options):
        record["created_by"] = "mallory"
        return record

    with pytest.raises(ProcessorFailure, match="immutable field 'created_by'"):
        ProcessorChain().apply({"created_by": "alice"}, [_step("rewrite", rewrite)])


def test_steps_receive_processor_options() -> None:
    def stamp(record, options):
        record["location"] = options["site"]
        return record

    result = ProcessorChain().apply({}, [_step("stamp", stamp)], {"site": "berlin"})

    assert result["location"] == "berlin"


def test_step_requires_a_name_and_a_callable() -> None:
    with pytest.raises(ValueError, match="non-empty"):
        ProcessorStep(" ", lambda record, options: record)
    with pytest.raises(ValueError, match="not callable"):
        ProcessorStep("bad", "nope")  # type: ignore[arg-type]


def test_builtin_text_and_tag_steps() -> None:
    result = ProcessorChain().apply(
        {"name": " a ", "status": " open ", "tags": [" X", "x", "", "y "]},
        [strip_text_fields, normalize_tags],
    )

    assert result == {"name": "a", "status": "open", "tags": ["x", "y"]}


def test_template_defaults_fill_gaps_without_overriding() -> None:
    step = apply_template_defaults({"bug": {"severity": "minor", "area": "core"}})

    result = ProcessorChain().apply(
        {"template_id": "bug", "custom_fields": {"severity": "major"}}, [step]
    )

    assert result["custom_fields"] == {"severity": "major", "area": "core"}


def test_unknown_template_fails_the_step() -> None:
    step = apply_template_defaults({})

    with pytest.raises(ProcessorFailure) as excinfo:
        ProcessorChain().apply({"template_id": "ghost"}, [step])

    assert excinfo.value.step_name == "apply_template_defaults"


def test_default_priority_only_fills_missing_values() -> None:
    step = default_priority(3)

    assert ProcessorChain().apply({}, [step])["priority"] == 3
    assert ProcessorChain().apply({"priority": "high"}, [step])["priority"] == "high"
