"""Version-conflict detection and resolution for concurrent edits."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Final

from itemflow.domain.errors import MutationError, Violation, ViolationCode
from itemflow.domain.models import Item, JSONValue, Record

logger = logging.getLogger(__name__)

# Fields the store owns; a merge always takes them from the stored record.
_STORE_OWNED: Final[frozenset[str]] = frozenset({"id", "version", "created_by", "created_at", "updated_at"})
_ABSENT: Final = object()


class ConflictStrategy(StrEnum):
    FAIL = "fail"
    LAST_WRITE_WINS = "last_write_wins"
    MERGE = "merge"

    @classmethod
    def parse(cls, value: str | ConflictStrategy) -> ConflictStrategy:
        if isinstance(value, ConflictStrategy):
            return value
        normalized = {"lastWriteWins": "last_write_wins"}.get(value, value)
        try:
            return cls(normalized)
        except ValueError as exc:
            allowed = ", ".join(item.value for item in cls)
            raise ValueError(f"conflict_strategy: invalid value {value!r}; expected one of: {allowed}") from exc


@dataclass(frozen=True, slots=True)
class MergeResult:
    record: Record
    conflicts: tuple[str, ...] = ()


MergeFunction = Callable[[Record, Record, Record], MergeResult]


@dataclass(frozen=True, slots=True)
class Proceed:
    """Write may go ahead: CAS against ``cas_version`` and store ``new_version``.

    ``record`` is set only when resolution replaced the caller's record (merge).
    """

    cas_version: int
    new_version: int
    record: Record | None = None


@dataclass(frozen=True, slots=True)
class Reject:
    error: MutationError


Resolution = Proceed | Reject


def three_way_field_merge(base: Record, ours: Record, theirs: Record) -> MergeResult:
    """Field-level merge: a side that left a field at ``base`` yields to the other.

    Fields both sides changed to different values are reported as conflicts.
    """
    merged: Record = {}
    conflicts: list[str] = []
    for key in sorted(set(base) | set(ours) | set(theirs)):
        theirs_value = theirs.get(key, _ABSENT)
        if key in _STORE_OWNED:
            if theirs_value is not _ABSENT:
                merged[key] = copy.deepcopy(theirs_value)
            continue
        base_value = base.get(key, _ABSENT)
        ours_value = ours.get(key, _ABSENT)
        if ours_value == theirs_value or ours_value == base_value:
            chosen = theirs_value
        elif theirs_value == base_value:
            chosen = ours_value
        else:
            conflicts.append(key)
            chosen = theirs_value
        if chosen is not _ABSENT:
            merged[key] = copy.deepcopy(chosen)
    return MergeResult(record=merged, conflicts=tuple(conflicts))


@dataclass(slots=True)
class ConflictResolver:
    merge_function: MergeFunction = field(default=three_way_field_merge)

    def resolve(
        self,
        expected_version: int,
        stored: Item,
        strategy: ConflictStrategy,
        *,
        base: Item | None = None,
        proposed: Mapping[str, JSONValue] | None = None,
        merge_function: MergeFunction | None = None,
    ) -> Resolution:
        """Decide the write given the caller's expected version and the fresh stored item.

        ``base`` (the record the caller edited) and ``proposed`` (the caller's
        edited record) are needed only for ``merge``.
        """
        stored_version = stored.version
        if expected_version == stored_version:
            return Proceed(cas_version=stored_version, new_version=stored_version + 1)

        logger.info(
            "version conflict",
            extra={
                "item_id": stored.id,
                "expected_version": expected_version,
                "actual_version": stored_version,
                "strategy": strategy.value,
            },
        )
        if strategy is ConflictStrategy.FAIL:
            return Reject(MutationError.version_mismatch(expected_version, stored_version))
        if strategy is ConflictStrategy.LAST_WRITE_WINS:
            return Proceed(cas_version=stored_version, new_version=stored_version + 1)

        if base is None or proposed is None:
            raise ValueError("merge resolution requires the base item and the proposed record")
        merge = merge_function or self.merge_function
        try:
            result = merge(base.to_dict(), copy.deepcopy(dict(proposed)), stored.to_dict())
        except Exception as exc:
            logger.warning(
                "merge function raised",
                extra={"item_id": stored.id, "error_type": type(exc).__name__},
            )
            return Reject(MutationError.processor_failure("merge_function", exc))
        if not isinstance(result, MergeResult):
            return Reject(
                MutationError.processor_failure(
                    "merge_function",
                    TypeError(f"merge returned {type(result).__name__}, expected MergeResult"),
                )
            )
        if result.conflicts:
            violations = tuple(
                Violation(name, ViolationCode.MERGE_CONFLICT, "changed by both editors")
                for name in result.conflicts
            )
            return Reject(
                replace(
                    MutationError.version_mismatch(expected_version, stored_version),
                    violations=violations,
                )
            )
        return Proceed(
            cas_version=stored_version,
            new_version=stored_version + 1,
            record=result.record,
        )


__all__ = [
    "ConflictResolver",
    "ConflictStrategy",
    "MergeFunction",
    "MergeResult",
    "Proceed",
    "Reject",
    "Resolution",
    "three_way_field_merge",
]
