"""Per-call pipeline options."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields
from typing import Final, NoReturn

from itemflow.constants import DEFAULT_SIDE_EFFECT_TIMEOUT_SECONDS
from itemflow.domain.models import JSONValue, as_bool, as_json_object
from itemflow.pipeline.conflicts import ConflictStrategy, MergeFunction
from itemflow.pipeline.processors import ProcessorStep
from itemflow.pipeline.validation import RuleSet

_OPTION_ALIASES: Final[dict[str, str]] = {
    "preProcessors": "pre_processors",
    "postProcessors": "post_processors",
    "validationRules": "validation_rules",
    "conflictStrategy": "conflict_strategy",
    "mergeFunction": "merge_function",
    "blockingCleanup": "blocking_cleanup",
    "sideEffectTimeoutSeconds": "side_effect_timeout_seconds",
}


@dataclass(frozen=True, slots=True)
class NotificationSettings:
    """``channels`` empty means every registered channel; ``params`` go to each send."""

    enabled: bool = False
    channels: tuple[str, ...] = ()
    params: dict[str, JSONValue] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object] | None) -> NotificationSettings:
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            _fail("notification", f"expected object, got {type(raw).__name__}")
        params = {key: value for key, value in raw.items() if key not in {"enabled", "channels"}}
        channels = raw.get("channels", ())
        if not isinstance(channels, (list, tuple)) or not all(isinstance(c, str) for c in channels):
            _fail("notification.channels", "expected a list of channel names")
        return cls(
            enabled=as_bool(raw.get("enabled", True), "notification.enabled"),
            channels=tuple(channels),
            params=as_json_object(params, "notification"),
        )


@dataclass(frozen=True, slots=True)
class AuditSettings:
    enabled: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object] | None) -> AuditSettings:
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            _fail("audit", f"expected object, got {type(raw).__name__}")
        return cls(enabled=as_bool(raw.get("enabled", True), "audit.enabled"))


@dataclass(frozen=True, slots=True)
class BackupSettings:
    enabled: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object] | None) -> BackupSettings:
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            _fail("backup", f"expected object, got {type(raw).__name__}")
        return cls(enabled=as_bool(raw.get("enabled", True), "backup.enabled"))


@dataclass(frozen=True, slots=True)
class MutationOptions:
    pre_processors: tuple[ProcessorStep, ...] = ()
    post_processors: tuple[ProcessorStep, ...] = ()
    validation_rules: RuleSet = field(default_factory=dict)
    versioning_enabled: bool = False
    conflict_strategy: ConflictStrategy = ConflictStrategy.FAIL
    merge_function: MergeFunction | None = None
    notification: NotificationSettings = field(default_factory=NotificationSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    backup: BackupSettings = field(default_factory=BackupSettings)
    blocking_cleanup: bool = False
    side_effect_timeout_seconds: float = DEFAULT_SIDE_EFFECT_TIMEOUT_SECONDS
    processor_options: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pre_processors", _as_steps(self.pre_processors, "pre_processors"))
        object.__setattr__(self, "post_processors", _as_steps(self.post_processors, "post_processors"))
        if not isinstance(self.validation_rules, Mapping):
            _fail("validation_rules", "expected a mapping of field path to rule")
        object.__setattr__(self, "conflict_strategy", ConflictStrategy.parse(self.conflict_strategy))
        if self.merge_function is not None and not callable(self.merge_function):
            _fail("merge_function", "must be callable")
        timeout = self.side_effect_timeout_seconds
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            _fail("side_effect_timeout_seconds", "must be a positive number")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object] | None) -> MutationOptions:
        """Build options from snake_case or camelCase keys; unknown keys are rejected."""
        if raw is None:
            return cls()
        normalized: dict[str, object] = {}
        for key, value in raw.items():
            target = _OPTION_ALIASES.get(key, key)
            if target in normalized:
                _fail("options", f"option {target!r} given more than once")
            normalized[target] = value

        versioning = normalized.pop("versioning", None)
        if versioning is not None:
            if not isinstance(versioning, Mapping):
                _fail("versioning", "expected object with an 'enabled' key")
            normalized["versioning_enabled"] = as_bool(
                versioning.get("enabled", False), "versioning.enabled"
            )
        if "notification" in normalized:
            normalized["notification"] = NotificationSettings.from_mapping(
                normalized["notification"]  # type: ignore[arg-type]
            )
        if "audit" in normalized:
            normalized["audit"] = AuditSettings.from_mapping(normalized["audit"])  # type: ignore[arg-type]
        if "backup" in normalized:
            normalized["backup"] = BackupSettings.from_mapping(normalized["backup"])  # type: ignore[arg-type]

        allowed = {option_field.name for option_field in fields(cls)}
        unknown = sorted(set(normalized) - allowed)
        if unknown:
            _fail("options", f"unknown options: {unknown}")
        return cls(**normalized)  # type: ignore[arg-type]


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _as_steps(value: object, path: str) -> tuple[ProcessorStep, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        _fail(path, "expected an ordered sequence of processor steps")
    steps = tuple(value)
    for index, step in enumerate(steps):
        if not isinstance(step, ProcessorStep):
            _fail(f"{path}[{index}]", f"expected ProcessorStep, got {type(step).__name__}")
    return steps


__all__ = ["AuditSettings", "BackupSettings", "MutationOptions", "NotificationSettings"]
