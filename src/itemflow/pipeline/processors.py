"""Ordered pre/post transformation steps over a private working copy."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Final

from itemflow.constants import IMMUTABLE_ITEM_FIELDS
from itemflow.domain.models import ITEM_TEXT_FIELDS, JSONValue, Record

logger = logging.getLogger(__name__)

Transform = Callable[[Record, Mapping[str, JSONValue]], Mapping[str, JSONValue]]

_MISSING: Final = object()


@dataclass(frozen=True, slots=True)
class ProcessorStep:
    name: str
    transform: Transform

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("ProcessorStep.name: must be a non-empty string")
        if not callable(self.transform):
            raise ValueError(f"ProcessorStep.transform: step {self.name!r} is not callable")


class ProcessorFailure(Exception):
    """A step raised, returned a non-mapping, or touched an immutable field."""

    def __init__(self, step_name: str, cause: BaseException) -> None:
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"processor step {step_name!r} failed: {type(cause).__name__}: {cause}")


class ProcessorChain:
    """Runs steps in declaration order; the first failure aborts the whole chain.

    The input mapping is deep-copied before the first step, and each step
    receives its own copy of the running result, so neither the caller nor a
    later stage ever sees a partially transformed record.
    """

    def apply(
        self,
        working_copy: Mapping[str, JSONValue],
        steps: Sequence[ProcessorStep],
        options: Mapping[str, JSONValue] | None = None,
    ) -> Record:
        current: Record = copy.deepcopy(dict(working_copy))
        step_options: Mapping[str, JSONValue] = copy.deepcopy(dict(options or {}))
        for step in steps:
            current = self._run_step(step, current, step_options)
        return current

    def _run_step(
        self, step: ProcessorStep, current: Record, options: Mapping[str, JSONValue]
    ) -> Record:
        try:
            produced = step.transform(copy.deepcopy(current), options)
        except Exception as exc:
            logger.warning(
                "processor step raised",
                extra={"step": step.name, "error_type": type(exc).__name__},
            )
            raise ProcessorFailure(step.name, exc) from exc

        if not isinstance(produced, Mapping):
            raise ProcessorFailure(
                step.name, TypeError(f"step returned {type(produced).__name__}, expected a mapping")
            )
        result = dict(produced)
        for name in IMMUTABLE_ITEM_FIELDS:
            if current.get(name, _MISSING) != result.get(name, _MISSING):
                raise ProcessorFailure(step.name, ValueError(f"step changed immutable field {name!r}"))
        return result


# Built-in steps. Each is pure: no I/O, no mutation of its arguments.


def _strip_text_fields(record: Record, options: Mapping[str, JSONValue]) -> Record:
    del options
    for name in ("name", *ITEM_TEXT_FIELDS):
        value = record.get(name)
        if isinstance(value, str):
            record[name] = value.strip()
    return record


def _normalize_tags(record: Record, options: Mapping[str, JSONValue]) -> Record:
    del options
    tags = record.get("tags")
    if isinstance(tags, (list, tuple)):
        cleaned = {tag.strip().lower() for tag in tags if isinstance(tag, str) and tag.strip()}
        record["tags"] = sorted(cleaned)
    return record


strip_text_fields: Final[ProcessorStep] = ProcessorStep("strip_text_fields", _strip_text_fields)
normalize_tags: Final[ProcessorStep] = ProcessorStep("normalize_tags", _normalize_tags)


def apply_template_defaults(templates: Mapping[str, Mapping[str, JSONValue]]) -> ProcessorStep:
    """Fill ``custom_fields`` from the record's template without overriding given values.

    A record naming a template that is not in ``templates`` fails the step.
    """
    frozen = copy.deepcopy({key: dict(value) for key, value in templates.items()})

    def _apply(record: Record, options: Mapping[str, JSONValue]) -> Record:
        del options
        template_id = record.get("template_id")
        if template_id is None:
            return record
        if not isinstance(template_id, str) or template_id not in frozen:
            raise KeyError(f"unknown template {template_id!r}")
        custom_fields = record.get("custom_fields") or {}
        if not isinstance(custom_fields, dict):
            raise TypeError("custom_fields must be a mapping to apply template defaults")
        merged = copy.deepcopy(frozen[template_id])
        merged.update(custom_fields)
        record["custom_fields"] = merged
        return record

    return ProcessorStep("apply_template_defaults", _apply)


def default_priority(value: str | int) -> ProcessorStep:
    def _apply(record: Record, options: Mapping[str, JSONValue]) -> Record:
        del options
        if record.get("priority") is None:
            record["priority"] = value
        return record

    return ProcessorStep("default_priority", _apply)


__all__ = [
    "ProcessorChain",
    "ProcessorFailure",
    "ProcessorStep",
    "Transform",
    "apply_template_defaults",
    "default_priority",
    "normalize_tags",
    "strip_text_fields",
]
