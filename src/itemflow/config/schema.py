"""
itemflow — configuration schema and validation.

File: src/itemflow/config/schema.py

Purpose
- Define the built-in defaults and the strict shape of ``itemflow.toml``.

What should be included in this file
- One declarative field table per config section; validation walks the table.
- Deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validation never stops at the first problem: every issue is reported with its dotted path.
- Secret-looking keys are refused outright; credentials belong in the environment.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from itemflow.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_EVENT_BUFFER_SIZE,
    DEFAULT_LOG_DIR,
    DEFAULT_SIDE_EFFECT_TIMEOUT_SECONDS,
    DEFAULT_STATE_DB,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

CONFLICT_STRATEGIES: Final[tuple[str, ...]] = ("fail", "last_write_wins", "merge")
PERSISTENCE_BACKENDS: Final[tuple[str, ...]] = ("memory", "sqlite")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS: Final[tuple[str, ...]] = ("json", "text")

# Resolved relative to the config file's directory by the loader.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("pipeline", "rules_file"),
    ("persistence", "state_db"),
    ("observability", "log_dir"),
)

_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "key", "apikey", "private", "credential"}
)
_WORD_BREAK = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|[^A-Za-z0-9]+")


class PipelineConfig(TypedDict, total=False):
    default_conflict_strategy: Literal["fail", "last_write_wins", "merge"]
    versioning_enabled: bool
    side_effect_timeout_seconds: float
    blocking_cleanup: bool
    notifications_enabled: bool
    audit_enabled: bool
    backup_enabled: bool
    rules_file: str


class PersistenceConfig(TypedDict):
    backend: Literal["memory", "sqlite"]
    state_db: str
    busy_timeout_ms: int


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    log_dir: str
    redact_secrets: bool


class ItemflowConfig(TypedDict):
    meta: dict[str, int]
    pipeline: PipelineConfig
    persistence: PersistenceConfig
    observability: ObservabilityConfig
    events: dict[str, int]


DEFAULT_CONFIG: Final[ItemflowConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "pipeline": {
        "default_conflict_strategy": "fail",
        "versioning_enabled": False,
        "side_effect_timeout_seconds": DEFAULT_SIDE_EFFECT_TIMEOUT_SECONDS,
        "blocking_cleanup": False,
        "notifications_enabled": False,
        "audit_enabled": True,
        "backup_enabled": False,
    },
    "persistence": {
        "backend": "sqlite",
        "state_db": DEFAULT_STATE_DB.as_posix(),
        "busy_timeout_ms": 5_000,
    },
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "log_dir": f"{DEFAULT_LOG_DIR.as_posix()}/",
        "redact_secrets": True,
    },
    "events": {"buffer_size": DEFAULT_EVENT_BUFFER_SIZE},
}


_Kind = Literal["bool", "int", "number", "choice", "path"]
_Report = Callable[[str, str], None]


@dataclass(frozen=True, slots=True)
class _Field:
    kind: _Kind
    required: bool = True
    minimum: float | None = None
    positive: bool = False
    choices: tuple[str, ...] = ()


def _optional(kind: _Kind, **limits: Any) -> _Field:
    return _Field(kind, required=False, **limits)


_SECTIONS: Final[dict[str, dict[str, _Field]]] = {
    "meta": {"schema_version": _Field("int", minimum=1)},
    "pipeline": {
        "default_conflict_strategy": _optional("choice", choices=CONFLICT_STRATEGIES),
        "versioning_enabled": _optional("bool"),
        "side_effect_timeout_seconds": _optional("number", positive=True),
        "blocking_cleanup": _optional("bool"),
        "notifications_enabled": _optional("bool"),
        "audit_enabled": _optional("bool"),
        "backup_enabled": _optional("bool"),
        "rules_file": _optional("path"),
    },
    "persistence": {
        "backend": _Field("choice", choices=PERSISTENCE_BACKENDS),
        "state_db": _Field("path"),
        "busy_timeout_ms": _Field("int", minimum=0),
    },
    "observability": {
        "log_level": _Field("choice", choices=LOG_LEVELS),
        "log_format": _Field("choice", choices=LOG_FORMATS),
        "log_dir": _Field("path"),
        "redact_secrets": _Field("bool"),
    },
    "events": {"buffer_size": _Field("int", minimum=1)},
}
_OPTIONAL_SECTIONS: Final[frozenset[str]] = frozenset({"pipeline"})


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """``config`` is the normalized payload, or ``None`` when ``issues`` is non-empty."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised by ``assert_valid_config``; ``issues`` holds every problem found."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


def default_config() -> ItemflowConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade itemflow.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the itemflow runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; non-mapping values replace."""
    merged = {key: copy.deepcopy(base[key]) for key in sorted(base) if isinstance(key, str)}
    for key in sorted(overlay):
        incoming = overlay[key]
        current = merged.get(key)
        if isinstance(incoming, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, incoming)
        else:
            merged[key] = copy.deepcopy(incoming)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    issues: list[ConfigValidationIssue] = []

    def report(path: str, message: str) -> None:
        issues.append(ConfigValidationIssue(path, message))

    if not isinstance(config, Mapping):
        report("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(None, tuple(issues))

    normalized: dict[str, Any] = {}
    _check_keys(config, _SECTIONS.keys() - _OPTIONAL_SECTIONS, set(_SECTIONS), "", report)
    for section, fields in _SECTIONS.items():
        raw = config.get(section)
        if raw is None:
            continue
        if not isinstance(raw, Mapping):
            report(section, f"expected object, got {type(raw).__name__}")
            continue
        required = {name for name, field_def in fields.items() if field_def.required}
        _check_keys(raw, required, set(fields), section, report)
        values: dict[str, Any] = {}
        for name in sorted(fields.keys() & raw.keys()):
            parsed = _parse(raw[name], fields[name], f"{section}.{name}", report)
            if parsed is not None:
                values[name] = parsed
        normalized[section] = values

    version = normalized.get("meta", {}).get("schema_version")
    if version is not None and version != ConfigSchemaVersion:
        report("meta.schema_version", migration_guidance(version))

    if issues:
        return ConfigValidationResult(None, tuple(issues))
    return ConfigValidationResult(normalized, ())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy of ``config`` safe to log: values under secret-looking keys become ``<redacted>``."""
    if not isinstance(config, Mapping):
        return {}
    return _redacted(config)


def _redacted(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _looks_secret(str(key)) else _redacted(value[key])
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redacted(item) for item in value]
    return value


def _looks_secret(key: str) -> bool:
    return any(word.lower() in _SECRET_WORDS for word in _WORD_BREAK.split(key.strip()) if word)


def _check_keys(
    payload: Mapping[Any, object],
    required: set[str] | frozenset[str],
    allowed: set[str],
    prefix: str,
    report: _Report,
) -> None:
    for key in sorted(payload, key=str):
        path = f"{prefix}.{key}" if prefix else str(key)
        if not isinstance(key, str):
            report(prefix or "<root>", f"object key must be string, got {type(key).__name__}")
        elif key not in allowed:
            if _looks_secret(key):
                report(path, "embedded secret values are forbidden in itemflow.toml")
            else:
                report(path, "unknown field")
    for key in sorted(required - set(payload)):
        report(f"{prefix}.{key}" if prefix else key, "missing required field")


def _parse(value: object, field_def: _Field, path: str, report: _Report) -> object | None:
    if field_def.kind == "bool":
        if isinstance(value, bool):
            return value
        report(path, f"expected boolean, got {type(value).__name__}")
        return None

    if field_def.kind in ("int", "number"):
        wanted = (int,) if field_def.kind == "int" else (int, float)
        if isinstance(value, bool) or not isinstance(value, wanted):
            label = "integer" if field_def.kind == "int" else "number"
            report(path, f"expected {label}, got {type(value).__name__}")
            return None
        number = value if field_def.kind == "int" else float(value)
        if not math.isfinite(number):
            report(path, "must be finite")
        elif field_def.positive and number <= 0:
            report(path, "must be > 0")
        elif field_def.minimum is not None and number < field_def.minimum:
            report(path, f"must be >= {field_def.minimum:g}")
        else:
            return number
        return None

    if not isinstance(value, str):
        report(path, f"expected string, got {type(value).__name__}")
        return None
    text = value.strip()
    if not text:
        report(path, "must not be empty")
    elif field_def.kind == "choice" and text not in field_def.choices:
        report(path, f"invalid value {text!r}; expected one of: {', '.join(sorted(field_def.choices))}")
    elif field_def.kind == "path" and "\x00" in text:
        report(path, "must not contain NUL bytes")
    else:
        return text
    return None


__all__ = [
    "CONFLICT_STRATEGIES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "ItemflowConfig",
    "LOG_FORMATS",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "PERSISTENCE_BACKENDS",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
