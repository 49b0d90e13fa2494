"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import UTC, date, datetime
from enum import Enum, StrEnum
from typing import Final, NoReturn, TypeVar, cast

from itemflow.constants import (
    CAPABILITY_ADMIN,
    CAPABILITY_APPROVE,
    CAPABILITY_WRITE,
    KNOWN_CAPABILITIES,
)
from itemflow.domain import ids as domain_ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
Record = dict[str, JSONValue]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT: Final[int] = 8192
_MAX_NAME: Final[int] = 256
_MAX_JSON_DEPTH: Final[int] = 16
_MAX_JSON_COLLECTION: Final[int] = 512


class WorkflowStage(StrEnum):
    BACKLOG = "backlog"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    BLOCKED = "blocked"
    DONE = "done"


class AuditAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class MutationAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        if not isinstance(raw, str):
            _fail(cls.__name__, f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


def canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = _MAX_TEXT,
    strip: bool = True,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip() if strip else value
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_text(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str | None:
    if value is None:
        return None
    return as_str(value, path, min_len=0, max_len=max_len, strip=False)


def as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_optional_number(
    value: object, path: str, *, minimum: float | None = None
) -> int | float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    if isinstance(value, float) and not math.isfinite(value):
        _fail(path, "must be finite")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_priority(value: object, path: str) -> str | int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        _fail(path, "expected string or integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return as_str(value, path, max_len=64)
    _fail(path, f"expected string or integer, got {type(value).__name__}")


def as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def datetime_to_iso8601z(value: datetime) -> str:
    normalized = as_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_due_date(value: object, path: str) -> str | None:
    """Normalize a due date to ISO text: ``YYYY-MM-DD`` or a UTC ``...Z`` timestamp."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return datetime_to_iso8601z(value)
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        _fail(path, f"expected ISO-8601 date string, got {type(value).__name__}")
    text = value.strip()
    if len(text) == 10:
        try:
            return date.fromisoformat(text).isoformat()
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 date: {value!r} ({exc})")
    parsed = as_datetime(text, path)
    return datetime_to_iso8601z(parsed)


def as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def as_str_tuple(
    value: object,
    path: str,
    *,
    unique: bool,
    max_len: int = _MAX_TEXT,
) -> tuple[str, ...]:
    values = _as_sequence(value, path)
    if len(values) > _MAX_JSON_COLLECTION:
        _fail(path, f"too many items (>{_MAX_JSON_COLLECTION})")

    parsed = [as_str(item, f"{path}[{index}]", max_len=max_len) for index, item in enumerate(values)]
    if unique and len(set(parsed)) != len(parsed):
        _fail(path, "contains duplicate values")
    return tuple(parsed)


def as_tag_set(value: object, path: str) -> tuple[str, ...]:
    """Tags are a set: the canonical form is sorted and duplicate-free."""
    if isinstance(value, (set, frozenset)):
        value = list(value)
    values = _as_sequence(value, path)
    if len(values) > _MAX_JSON_COLLECTION:
        _fail(path, f"too many items (>{_MAX_JSON_COLLECTION})")
    tags = {as_str(item, f"{path}[{index}]", max_len=128) for index, item in enumerate(values)}
    return tuple(sorted(tags))


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        _fail(path, f"JSON nesting exceeds max depth {_MAX_JSON_DEPTH}")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        if len(value) > _MAX_TEXT:
            _fail(path, f"string exceeds max length {_MAX_TEXT}")
        return value
    if isinstance(value, (list, tuple)):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"list length exceeds {_MAX_JSON_COLLECTION}")
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"object size exceeds {_MAX_JSON_COLLECTION}")
        parsed: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, f"object key must be string, got {type(key).__name__}")
            parsed[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return parsed

    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


def as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        _fail(path, "expected JSON object")
    return parsed


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, datetime):
        return datetime_to_iso8601z(value)
    if isinstance(value, (tuple, list)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, (set, frozenset)):
        return [_serialize_value(item, f"{path}[]") for item in sorted(value)]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


def _validate_item_id(value: object, path: str) -> str:
    parsed = as_str(value, path, max_len=64)
    try:
        domain_ids.validate_item_id(parsed)
    except ValueError as exc:
        _fail(path, str(exc))
    return parsed


# Field groups of the item record. Facets are stored as JSON blobs by the SQLite store.
ITEM_TEXT_FIELDS: Final[tuple[str, ...]] = (
    "description",
    "category",
    "status",
    "assignee",
    "location",
    "template_id",
    "parent_item_id",
)
ITEM_MAPPING_FACETS: Final[tuple[str, ...]] = (
    "custom_fields",
    "metadata",
    "reminder_settings",
    "external_refs",
)
ITEM_ID_LIST_FACETS: Final[tuple[str, ...]] = ("dependencies", "linked_items", "attachment_ids")
ITEM_FACETS: Final[tuple[str, ...]] = ("tags", *ITEM_ID_LIST_FACETS, *ITEM_MAPPING_FACETS)
SERVER_OWNED_FIELDS: Final[frozenset[str]] = frozenset(
    {"id", "version", "created_at", "updated_at"}
)


@dataclass(slots=True)
class Item(CanonicalModel):
    id: str
    name: str
    created_by: str
    description: str | None = None
    category: str | None = None
    priority: str | int | None = None
    status: str | None = None
    due_date: str | None = None
    assignee: str | None = None
    tags: tuple[str, ...] = ()
    custom_fields: dict[str, JSONValue] = field(default_factory=dict)
    metadata: dict[str, JSONValue] = field(default_factory=dict)
    dependencies: tuple[str, ...] = ()
    linked_items: tuple[str, ...] = ()
    attachment_ids: tuple[str, ...] = ()
    reminder_settings: dict[str, JSONValue] = field(default_factory=dict)
    workflow_stage: WorkflowStage | None = None
    approval_required: bool = False
    estimated_hours: int | float | None = None
    budget: int | float | None = None
    location: str | None = None
    template_id: str | None = None
    parent_item_id: str | None = None
    external_refs: dict[str, JSONValue] = field(default_factory=dict)
    version: int = 1
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        self.id = _validate_item_id(self.id, "Item.id")
        self.name = as_str(self.name, "Item.name", max_len=_MAX_NAME)
        self.created_by = as_str(self.created_by, "Item.created_by", max_len=128)
        for name in ITEM_TEXT_FIELDS:
            setattr(self, name, _as_optional_text(getattr(self, name), f"Item.{name}"))
        self.priority = _as_priority(self.priority, "Item.priority")
        self.due_date = _as_due_date(self.due_date, "Item.due_date")
        self.assignee = _as_optional_text(self.assignee, "Item.assignee", max_len=128)

        self.tags = as_tag_set(self.tags, "Item.tags")
        for name in ITEM_ID_LIST_FACETS:
            setattr(self, name, as_str_tuple(getattr(self, name), f"Item.{name}", unique=True))
        for name in ITEM_MAPPING_FACETS:
            setattr(self, name, as_json_object(getattr(self, name), f"Item.{name}"))

        if self.id in self.dependencies:
            _fail("Item.dependencies", "an item cannot depend on itself")
        if self.id in self.linked_items:
            _fail("Item.linked_items", "an item cannot link to itself")
        if self.parent_item_id is not None and self.parent_item_id == self.id:
            _fail("Item.parent_item_id", "an item cannot be its own parent")

        if self.workflow_stage is not None:
            self.workflow_stage = as_enum(WorkflowStage, self.workflow_stage, "Item.workflow_stage")
        self.approval_required = as_bool(self.approval_required, "Item.approval_required")
        self.estimated_hours = _as_optional_number(
            self.estimated_hours, "Item.estimated_hours", minimum=0
        )
        self.budget = _as_optional_number(self.budget, "Item.budget", minimum=0)

        self.version = _as_int(self.version, "Item.version", minimum=1)
        self.created_at = as_datetime(self.created_at, "Item.created_at")
        self.updated_at = as_datetime(self.updated_at, "Item.updated_at")
        if self.updated_at < self.created_at:
            _fail("Item.updated_at", "must be >= Item.created_at")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Item:
        parsed = expect_object(
            data,
            "Item",
            required={"id", "name", "created_by"},
            optional={item_field.name for item_field in fields(cls)},
        )
        return cls(**parsed)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class ItemSnapshot(CanonicalModel):
    """Immutable copy of an item's full record at one version."""

    item_id: str
    version: int
    record: dict[str, JSONValue]
    captured_at: datetime
    captured_by: str

    def __post_init__(self) -> None:
        _validate_item_id(self.item_id, "ItemSnapshot.item_id")
        _as_int(self.version, "ItemSnapshot.version", minimum=1)
        object.__setattr__(self, "record", as_json_object(self.record, "ItemSnapshot.record"))
        if self.record.get("id") != self.item_id:
            _fail("ItemSnapshot.record", "record id does not match item_id")
        if self.record.get("version") != self.version:
            _fail("ItemSnapshot.record", "record version does not match snapshot version")
        object.__setattr__(
            self, "captured_at", as_datetime(self.captured_at, "ItemSnapshot.captured_at")
        )
        as_str(self.captured_by, "ItemSnapshot.captured_by", max_len=128)

    @property
    def ref(self) -> str:
        return domain_ids.snapshot_ref(self.item_id, self.version)

    def to_item(self) -> Item:
        return Item.from_dict(self.record)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ItemSnapshot:
        parsed = expect_object(
            data,
            "ItemSnapshot",
            required={"item_id", "version", "record", "captured_at", "captured_by"},
        )
        return cls(
            item_id=as_str(parsed["item_id"], "ItemSnapshot.item_id"),
            version=_as_int(parsed["version"], "ItemSnapshot.version", minimum=1),
            record=as_json_object(parsed["record"], "ItemSnapshot.record"),
            captured_at=as_datetime(parsed["captured_at"], "ItemSnapshot.captured_at"),
            captured_by=as_str(parsed["captured_by"], "ItemSnapshot.captured_by"),
        )


@dataclass(frozen=True, slots=True)
class AuditEntry(CanonicalModel):
    """Append-only record of one committed mutation."""

    id: str
    item_id: str
    action: AuditAction
    actor_id: str
    timestamp: datetime
    before_snapshot_ref: str | None = None
    after_state: dict[str, JSONValue] | None = None

    def __post_init__(self) -> None:
        try:
            domain_ids.validate_prefixed_id(self.id, domain_ids.AUDIT_ID_PREFIX)
        except ValueError as exc:
            _fail("AuditEntry.id", str(exc))
        _validate_item_id(self.item_id, "AuditEntry.item_id")
        object.__setattr__(self, "action", as_enum(AuditAction, self.action, "AuditEntry.action"))
        as_str(self.actor_id, "AuditEntry.actor_id", max_len=128)
        object.__setattr__(self, "timestamp", as_datetime(self.timestamp, "AuditEntry.timestamp"))
        if self.before_snapshot_ref is not None:
            try:
                domain_ids.parse_snapshot_ref(self.before_snapshot_ref)
            except ValueError as exc:
                _fail("AuditEntry.before_snapshot_ref", str(exc))
        if self.action is AuditAction.DELETED:
            if self.after_state is not None:
                _fail("AuditEntry.after_state", "must be null for deletions")
        elif self.after_state is None:
            _fail("AuditEntry.after_state", f"required for {self.action.value} entries")
        else:
            object.__setattr__(
                self, "after_state", as_json_object(self.after_state, "AuditEntry.after_state")
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> AuditEntry:
        parsed = expect_object(
            data,
            "AuditEntry",
            required={"id", "item_id", "action", "actor_id", "timestamp"},
            optional={"before_snapshot_ref", "after_state"},
        )
        return cls(**parsed)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated caller with a typed capability set."""

    actor_id: str
    capabilities: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        as_str(self.actor_id, "Actor.actor_id", max_len=128)
        capabilities = frozenset(self.capabilities)
        unknown = sorted(capabilities - KNOWN_CAPABILITIES)
        if unknown:
            _fail("Actor.capabilities", f"unknown capabilities: {unknown}")
        object.__setattr__(self, "capabilities", capabilities)

    @property
    def can_write(self) -> bool:
        return bool({CAPABILITY_WRITE, CAPABILITY_ADMIN} & self.capabilities)

    @property
    def is_admin(self) -> bool:
        return CAPABILITY_ADMIN in self.capabilities

    @property
    def can_approve(self) -> bool:
        return bool({CAPABILITY_ADMIN, CAPABILITY_APPROVE} & self.capabilities)


# camelCase request keys accepted from API callers.
_CREATE_ALIASES: Final[dict[str, str]] = {
    "dueDate": "due_date",
    "customFields": "custom_fields",
    "linkedItems": "linked_items",
    "attachmentIds": "attachment_ids",
    "attachments": "attachment_ids",
    "reminderSettings": "reminder_settings",
    "workflowStage": "workflow_stage",
    "approvalRequired": "approval_required",
    "estimatedHours": "estimated_hours",
    "templateId": "template_id",
    "parentItemId": "parent_item_id",
    "externalRefs": "external_refs",
    "createdBy": "created_by",
}


@dataclass(slots=True)
class ItemCreateRequest:
    """Structured create request: every field named and validated on its own."""

    name: str
    description: str | None = None
    category: str | None = None
    priority: str | int | None = None
    status: str | None = None
    due_date: str | None = None
    assignee: str | None = None
    tags: tuple[str, ...] = ()
    custom_fields: dict[str, JSONValue] = field(default_factory=dict)
    metadata: dict[str, JSONValue] = field(default_factory=dict)
    dependencies: tuple[str, ...] = ()
    linked_items: tuple[str, ...] = ()
    attachment_ids: tuple[str, ...] = ()
    reminder_settings: dict[str, JSONValue] = field(default_factory=dict)
    workflow_stage: WorkflowStage | None = None
    approval_required: bool = False
    estimated_hours: int | float | None = None
    budget: int | float | None = None
    location: str | None = None
    template_id: str | None = None
    parent_item_id: str | None = None
    external_refs: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str):
            _fail("ItemCreateRequest.name", f"expected string, got {type(self.name).__name__}")
        self.tags = as_tag_set(self.tags, "ItemCreateRequest.tags")
        for name in ITEM_ID_LIST_FACETS:
            setattr(
                self,
                name,
                as_str_tuple(getattr(self, name), f"ItemCreateRequest.{name}", unique=True),
            )
        for name in ITEM_MAPPING_FACETS:
            setattr(self, name, as_json_object(getattr(self, name), f"ItemCreateRequest.{name}"))
        if self.workflow_stage is not None:
            self.workflow_stage = as_enum(
                WorkflowStage, self.workflow_stage, "ItemCreateRequest.workflow_stage"
            )

    def to_record(self) -> Record:
        """Return the request as a record without server-owned fields."""
        serialized = _serialize_value(self, "ItemCreateRequest")
        if not isinstance(serialized, dict):
            _fail("ItemCreateRequest", "serialized request must be an object")
        return serialized

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object]) -> ItemCreateRequest:
        if not isinstance(raw, Mapping):
            _fail("ItemCreateRequest", f"expected object, got {type(raw).__name__}")
        normalized: dict[str, object] = {}
        for key, value in raw.items():
            if not isinstance(key, str):
                _fail("ItemCreateRequest", "object keys must be strings")
            target = _CREATE_ALIASES.get(key, key)
            if target in normalized:
                _fail("ItemCreateRequest", f"field {target!r} given more than once")
            normalized[target] = value

        server_owned = sorted(SERVER_OWNED_FIELDS & normalized.keys())
        if server_owned:
            _fail("ItemCreateRequest", f"server-owned fields cannot be supplied: {server_owned}")
        if "created_by" in normalized:
            _fail("ItemCreateRequest", "created_by is taken from the acting caller")

        allowed = {request_field.name for request_field in fields(cls)}
        parsed = expect_object(normalized, "ItemCreateRequest", required={"name"}, optional=allowed)
        return cls(**parsed)  # type: ignore[arg-type]


def normalize_change_keys(changes: Mapping[str, object]) -> dict[str, object]:
    """Map camelCase change keys onto record field names."""
    normalized: dict[str, object] = {}
    for key, value in changes.items():
        if not isinstance(key, str):
            _fail("changes", "keys must be strings")
        target = _CREATE_ALIASES.get(key, key)
        if target in normalized:
            _fail("changes", f"field {target!r} given more than once")
        normalized[target] = value
    return normalized


ITEM_FIELD_NAMES: Final[tuple[str, ...]] = tuple(item_field.name for item_field in fields(Item))


__all__ = [
    "ITEM_FACETS",
    "ITEM_FIELD_NAMES",
    "ITEM_ID_LIST_FACETS",
    "ITEM_MAPPING_FACETS",
    "ITEM_TEXT_FIELDS",
    "SERVER_OWNED_FIELDS",
    "Actor",
    "AuditAction",
    "AuditEntry",
    "CanonicalModel",
    "Item",
    "ItemCreateRequest",
    "ItemSnapshot",
    "JSONValue",
    "MutationAction",
    "Record",
    "WorkflowStage",
    "as_bool",
    "as_datetime",
    "as_enum",
    "as_json_object",
    "as_str",
    "as_str_tuple",
    "as_tag_set",
    "canonical_json",
    "datetime_to_iso8601z",
    "expect_object",
    "normalize_change_keys",
]
