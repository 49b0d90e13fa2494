"""Declarative field validation with type coercion.

A rule set maps a field path to a rule::

    {"name": {"type": "string", "required": True, "max": 120},
     "custom_fields.cost": {"type": "number", "min": 0}}

Paths are top-level record fields or one-level dotted paths into a mapping
facet. Rules are checked in declaration order. A required check that fails
skips the remaining checks for that field only. Unknown rule keys and
unknown types are violations, so a misconfigured rule set never passes.
"""

from __future__ import annotations

import copy
import math
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Final, cast

import yaml

from itemflow.domain.errors import Violation, ViolationCode
from itemflow.domain.models import (
    ITEM_ID_LIST_FACETS,
    ITEM_MAPPING_FACETS,
    JSONValue,
    Record,
    as_json_object,
    as_str_tuple,
    as_tag_set,
)

RuleSet = Mapping[str, Mapping[str, object]]

RULE_KEYS: Final[frozenset[str]] = frozenset({"type", "required", "enum", "min", "max"})
RULE_TYPES: Final[frozenset[str]] = frozenset({"string", "number", "boolean", "date"})

_TRUE_STRINGS: Final[frozenset[str]] = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS: Final[frozenset[str]] = frozenset({"false", "0", "no", "off"})


@dataclass(frozen=True, slots=True)
class ValidationResult:
    violations: tuple[Violation, ...]
    record: Record

    @property
    def ok(self) -> bool:
        return not self.violations


class _CoercionError(ValueError):
    pass


class FieldValidator:
    """Validates and coerces a record against a rule set; never mutates its input."""

    def validate(self, record: Mapping[str, JSONValue], rule_set: RuleSet | None) -> ValidationResult:
        working: Record = copy.deepcopy(dict(record))
        violations: list[Violation] = []

        for path, rule in (rule_set or {}).items():
            violations.extend(self._apply_rule(working, path, rule))

        violations.extend(shape_violations(working))
        return ValidationResult(violations=tuple(violations), record=working)

    def _apply_rule(self, working: Record, path: str, rule: object) -> list[Violation]:
        config_problem = rule_violation(path, rule)
        if config_problem is not None:
            return [config_problem]
        rule = cast("Mapping[str, object]", rule)

        container, key = _resolve_container(working, path)
        value = None if container is None else container.get(key)

        if container is None or key not in container or _is_missing(value):
            if rule.get("required") is True:
                return [Violation(path, ViolationCode.REQUIRED, "is required")]
            return []

        rule_type = cast("str | None", rule.get("type"))
        if rule_type is not None:
            try:
                value = _coerce(value, rule_type)
            except _CoercionError as exc:
                return [Violation(path, ViolationCode.TYPE, str(exc))]
            container[key] = value

        problems: list[Violation] = []
        allowed = rule.get("enum")
        if allowed is not None and value not in cast("list[object]", allowed):
            problems.append(
                Violation(path, ViolationCode.ENUM, f"must be one of {list(cast('list[object]', allowed))}")
            )

        measured = _measure(value, rule_type)
        for bound_key, code in (("min", ViolationCode.MIN), ("max", ViolationCode.MAX)):
            bound = rule.get(bound_key)
            if bound is None:
                continue
            if measured is None:
                problems.append(
                    Violation(path, ViolationCode.UNKNOWN_RULE, f"{bound_key} does not apply to this value")
                )
                continue
            limit = _bound_value(bound, rule_type, measured)
            if bound_key == "min" and measured < limit:  # type: ignore[operator]
                problems.append(Violation(path, code, f"must be >= {bound}"))
            if bound_key == "max" and measured > limit:  # type: ignore[operator]
                problems.append(Violation(path, code, f"must be <= {bound}"))
        return problems


def rule_violation(path: object, rule: object) -> Violation | None:
    """Return a configuration violation for a malformed rule, or ``None``."""
    label = path if isinstance(path, str) else repr(path)
    if not isinstance(path, str) or not path or path.count(".") > 1:
        return Violation(label, ViolationCode.UNKNOWN_RULE, "field path must be 'field' or 'facet.key'")
    if "." in path and path.split(".", 1)[0] not in ITEM_MAPPING_FACETS:
        return Violation(
            label, ViolationCode.UNKNOWN_RULE, "dotted paths may only address mapping facets"
        )
    if not isinstance(rule, Mapping):
        return Violation(label, ViolationCode.UNKNOWN_RULE, "rule must be a mapping")
    unknown = sorted(str(key) for key in rule if key not in RULE_KEYS)
    if unknown:
        return Violation(label, ViolationCode.UNKNOWN_RULE, f"unknown rule keys: {unknown}")

    rule_type = rule.get("type")
    if rule_type is not None and rule_type not in RULE_TYPES:
        return Violation(label, ViolationCode.UNKNOWN_TYPE, f"unknown rule type {rule_type!r}")
    if "required" in rule and not isinstance(rule["required"], bool):
        return Violation(label, ViolationCode.UNKNOWN_RULE, "required must be a boolean")
    if "enum" in rule and not isinstance(rule["enum"], (list, tuple)):
        return Violation(label, ViolationCode.UNKNOWN_RULE, "enum must be a list")
    if rule_type == "boolean" and ("min" in rule or "max" in rule):
        return Violation(label, ViolationCode.UNKNOWN_RULE, "min/max do not apply to booleans")
    for bound_key in ("min", "max"):
        if bound_key not in rule:
            continue
        bound = rule[bound_key]
        if rule_type == "date":
            try:
                _parse_date_value(bound)
            except _CoercionError:
                return Violation(label, ViolationCode.UNKNOWN_RULE, f"{bound_key} must be a date")
        elif isinstance(bound, bool) or not isinstance(bound, (int, float)):
            return Violation(label, ViolationCode.UNKNOWN_RULE, f"{bound_key} must be a number")
    return None


def shape_violations(record: Mapping[str, JSONValue]) -> list[Violation]:
    """Structural checks on facets that are present in ``record``."""
    problems: list[Violation] = []
    for name in ("tags", *ITEM_ID_LIST_FACETS, *ITEM_MAPPING_FACETS):
        if record.get(name) is None:
            continue
        try:
            if name == "tags":
                as_tag_set(record[name], name)
            elif name in ITEM_ID_LIST_FACETS:
                as_str_tuple(record[name], name, unique=True)
            else:
                as_json_object(record[name], name)
        except ValueError as exc:
            problems.append(Violation(name, ViolationCode.SHAPE, _strip_path(str(exc), name)))
    return problems


def load_rule_set(path: str | Path) -> dict[str, dict[str, object]]:
    """Load a rule set from a ``.yaml``/``.yml`` or ``.toml`` file and check every rule."""
    source = Path(path)
    suffix = source.suffix.lower()
    try:
        if suffix in {".yaml", ".yml"}:
            with source.open("r", encoding="utf-8") as handle:
                loaded = cast("object", yaml.safe_load(handle))
        elif suffix == ".toml":
            with source.open("rb") as handle:
                loaded = tomllib.load(handle)
        else:
            raise ValueError(f"{source}: unsupported rule file type {suffix!r}")
    except yaml.YAMLError as exc:
        raise ValueError(f"{source}: invalid YAML ({exc})") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{source}: invalid TOML ({exc})") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, Mapping):
        raise ValueError(f"{source}: expected a top-level mapping, got {type(loaded).__name__}")

    rules: dict[str, dict[str, object]] = {}
    for field_path, rule in loaded.items():
        problem = rule_violation(field_path, rule)
        if problem is not None:
            raise ValueError(f"{source}: {problem.field}: {problem.message}")
        rules[field_path] = dict(rule)
    return rules


def _resolve_container(working: Record, path: str) -> tuple[dict[str, JSONValue] | None, str]:
    if "." not in path:
        return working, path
    facet, key = path.split(".", 1)
    container = working.get(facet)
    if isinstance(container, dict):
        return container, key
    return None, key


def _is_missing(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _coerce(value: JSONValue, rule_type: str) -> JSONValue:
    if rule_type == "string":
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        raise _CoercionError(f"expected string, got {type(value).__name__}")
    if rule_type == "number":
        return _coerce_number(value)
    if rule_type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        raise _CoercionError(f"expected boolean, got {value!r}")
    if rule_type == "date":
        parsed = _parse_date_value(value)
        if isinstance(parsed, datetime):
            return parsed.isoformat(timespec="microseconds").replace("+00:00", "Z")
        return parsed.isoformat()
    raise _CoercionError(f"unknown rule type {rule_type!r}")


def _coerce_number(value: object) -> int | float:
    if isinstance(value, bool):
        raise _CoercionError("expected number, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise _CoercionError("number must be finite")
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            parsed = float(text)
        except ValueError as exc:
            raise _CoercionError(f"expected number, got {value!r}") from exc
        if not math.isfinite(parsed):
            raise _CoercionError("number must be finite")
        return parsed
    raise _CoercionError(f"expected number, got {type(value).__name__}")


def _parse_date_value(value: object) -> date | datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            raise _CoercionError("datetime must include a timezone")
        return value.astimezone(UTC)
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise _CoercionError(f"expected ISO-8601 date, got {type(value).__name__}")
    text = value.strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        parsed = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
    except ValueError as exc:
        raise _CoercionError(f"invalid ISO-8601 date: {value!r}") from exc
    if parsed.tzinfo is None:
        raise _CoercionError("datetime must include a timezone")
    return parsed.astimezone(UTC)


def _as_instant(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day, tzinfo=UTC)


def _measure(value: JSONValue, rule_type: str | None) -> float | int | datetime | None:
    """The quantity min/max bound: numeric value, string length, or instant."""
    if rule_type == "date":
        return _as_instant(_parse_date_value(value))
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        return len(value)
    return None


def _bound_value(bound: object, rule_type: str | None, measured: object) -> object:
    if rule_type == "date" or isinstance(measured, datetime):
        return _as_instant(_parse_date_value(bound))
    return bound


def _strip_path(message: str, name: str) -> str:
    prefix = f"{name}: "
    return message[len(prefix) :] if message.startswith(prefix) else message


__all__ = [
    "RULE_KEYS",
    "RULE_TYPES",
    "FieldValidator",
    "RuleSet",
    "ValidationResult",
    "load_rule_set",
    "rule_violation",
    "shape_violations",
]
