"""Workflow stage machine for items."""

from __future__ import annotations

from typing import Final

from itemflow.domain.errors import Violation, ViolationCode
from itemflow.domain.models import WorkflowStage

_S = WorkflowStage

ALLOWED_TRANSITIONS: Final[dict[WorkflowStage, frozenset[WorkflowStage]]] = {
    _S.BACKLOG: frozenset({_S.IN_REVIEW, _S.BLOCKED}),
    _S.IN_REVIEW: frozenset({_S.APPROVED, _S.BACKLOG, _S.BLOCKED}),
    _S.APPROVED: frozenset({_S.DONE, _S.IN_REVIEW, _S.BLOCKED}),
    _S.BLOCKED: frozenset({_S.BACKLOG, _S.IN_REVIEW, _S.APPROVED}),
    _S.DONE: frozenset(),
}

INITIAL_STAGES: Final[frozenset[WorkflowStage]] = frozenset({_S.BACKLOG, _S.IN_REVIEW, _S.BLOCKED})


def can_transition(current: WorkflowStage | None, target: WorkflowStage | None) -> bool:
    if current == target:
        return True
    if target is None:
        # Leaving the machine is only possible before it was entered.
        return current is None
    if current is None:
        return target in INITIAL_STAGES
    return target in ALLOWED_TRANSITIONS[current]


def transition_violation(
    current: WorkflowStage | None, target: WorkflowStage | None
) -> Violation | None:
    if can_transition(current, target):
        return None
    current_label = "none" if current is None else current.value
    target_label = "none" if target is None else target.value
    return Violation(
        field="workflow_stage",
        code=ViolationCode.WORKFLOW_TRANSITION,
        message=f"cannot move from {current_label} to {target_label}",
    )


def initial_stage_violation(stage: WorkflowStage | None) -> Violation | None:
    if stage is None or stage in INITIAL_STAGES:
        return None
    return Violation(
        field="workflow_stage",
        code=ViolationCode.WORKFLOW_TRANSITION,
        message=f"new items cannot start in {stage.value}",
    )


__all__ = [
    "ALLOWED_TRANSITIONS",
    "INITIAL_STAGES",
    "can_transition",
    "initial_stage_violation",
    "transition_violation",
]
