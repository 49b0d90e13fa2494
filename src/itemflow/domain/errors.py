"""Mutation outcome taxonomy: tagged results for business outcomes, exceptions for faults."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

from itemflow.domain.models import JSONValue

T = TypeVar("T")


class ErrorKind(StrEnum):
    PERMISSION_DENIED = "permission_denied"
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    CONFLICT_VERSION_MISMATCH = "conflict_version_mismatch"
    PROCESSOR_FAILURE = "processor_failure"
    CLEANUP_FAILED = "cleanup_failed"


class ViolationCode(StrEnum):
    REQUIRED = "required"
    TYPE = "type"
    ENUM = "enum"
    MIN = "min"
    MAX = "max"
    UNKNOWN_RULE = "unknown_rule"
    UNKNOWN_TYPE = "unknown_type"
    SHAPE = "shape"
    IMMUTABLE_FIELD = "immutable_field"
    WORKFLOW_TRANSITION = "workflow_transition"
    MERGE_CONFLICT = "merge_conflict"


@dataclass(frozen=True, slots=True)
class Violation:
    field: str
    code: ViolationCode
    message: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"field": self.field, "code": self.code.value, "message": self.message}


@dataclass(frozen=True, slots=True)
class SideEffectWarning:
    """Non-fatal failure of a best-effort step, attached to a successful outcome."""

    stage: str
    target: str
    error_type: str
    message: str

    @classmethod
    def from_exception(cls, stage: str, target: str, exc: BaseException) -> SideEffectWarning:
        return cls(
            stage=stage,
            target=target,
            error_type=type(exc).__name__,
            message=str(exc) or type(exc).__name__,
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "stage": self.stage,
            "target": self.target,
            "error_type": self.error_type,
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class MutationError:
    """Business-level failure of a mutation; nothing was persisted."""

    kind: ErrorKind
    message: str
    violations: tuple[Violation, ...] = ()
    expected_version: int | None = None
    actual_version: int | None = None
    step_name: str | None = None
    cause: str | None = None

    @classmethod
    def permission_denied(cls, reason: str) -> MutationError:
        return cls(kind=ErrorKind.PERMISSION_DENIED, message=reason)

    @classmethod
    def validation_failed(cls, violations: tuple[Violation, ...] | list[Violation]) -> MutationError:
        listed = tuple(violations)
        summary = "; ".join(f"{item.field}: {item.message}" for item in listed)
        return cls(
            kind=ErrorKind.VALIDATION_FAILED,
            message=f"validation failed: {summary}" if summary else "validation failed",
            violations=listed,
        )

    @classmethod
    def not_found(cls, item_id: str) -> MutationError:
        return cls(kind=ErrorKind.NOT_FOUND, message=f"item {item_id!r} does not exist")

    @classmethod
    def version_mismatch(cls, expected: int, actual: int) -> MutationError:
        return cls(
            kind=ErrorKind.CONFLICT_VERSION_MISMATCH,
            message=f"expected version {expected}, stored version is {actual}",
            expected_version=expected,
            actual_version=actual,
        )

    @classmethod
    def processor_failure(cls, step_name: str, cause: BaseException) -> MutationError:
        return cls(
            kind=ErrorKind.PROCESSOR_FAILURE,
            message=f"processor step {step_name!r} failed",
            step_name=step_name,
            cause=f"{type(cause).__name__}: {cause}",
        )

    @classmethod
    def cleanup_failed(cls, warnings: tuple[SideEffectWarning, ...]) -> MutationError:
        targets = ", ".join(item.target for item in warnings)
        return cls(kind=ErrorKind.CLEANUP_FAILED, message=f"cleanup failed: {targets}")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "violations": [item.to_dict() for item in self.violations],
            "expected_version": self.expected_version,
            "actual_version": self.actual_version,
            "step_name": self.step_name,
            "cause": self.cause,
        }


@dataclass(frozen=True, slots=True)
class MutationOutcome(Generic[T]):
    """Tagged result of one pipeline run: either ``value`` or ``error`` is set."""

    value: T | None = None
    error: MutationError | None = None
    warnings: tuple[SideEffectWarning, ...] = ()
    view: Mapping[str, JSONValue] | None = None
    mutation_id: str | None = None

    def __post_init__(self) -> None:
        if (self.value is None) == (self.error is None):
            raise ValueError("MutationOutcome: exactly one of value or error must be set")

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise MutationRejectedError(self.error)
        assert self.value is not None
        return self.value


@dataclass(frozen=True, slots=True)
class DeleteConfirmation:
    item_id: str
    deleted_version: int


class ItemflowError(Exception):
    """Base class for raised itemflow faults."""


class PersistenceFailure(ItemflowError):
    """The store faulted (I/O, engine error). Surfaced verbatim, never retried."""

    def __init__(self, operation: str, item_id: str | None, cause: BaseException) -> None:
        self.operation = operation
        self.item_id = item_id
        self.cause = cause
        target = f" for {item_id!r}" if item_id is not None else ""
        super().__init__(f"{operation}{target} failed: {type(cause).__name__}: {cause}")


class MutationRejectedError(ItemflowError):
    """Raised by ``MutationOutcome.unwrap`` when the outcome carries an error."""

    def __init__(self, error: MutationError) -> None:
        self.error = error
        super().__init__(f"{error.kind.value}: {error.message}")


__all__ = [
    "DeleteConfirmation",
    "ErrorKind",
    "ItemflowError",
    "MutationError",
    "MutationOutcome",
    "MutationRejectedError",
    "PersistenceFailure",
    "SideEffectWarning",
    "Violation",
    "ViolationCode",
]
