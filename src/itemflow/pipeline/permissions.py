"""Capability and ownership checks for item mutations."""

from __future__ import annotations

from dataclasses import dataclass

from itemflow.domain.models import Actor, Item, MutationAction, WorkflowStage


@dataclass(frozen=True, slots=True)
class PermissionDecision:
    allowed: bool
    reason: str

    @classmethod
    def allow(cls, reason: str = "allowed") -> PermissionDecision:
        return cls(True, reason)

    @classmethod
    def deny(cls, reason: str) -> PermissionDecision:
        return cls(False, reason)


class PermissionGate:
    """Pure decision function over an actor's capabilities and the target's owner.

    ``create`` needs ``write`` or ``admin``. ``update`` and ``delete`` need
    the same capability and, unless the actor is an admin, ownership of the
    target. A denial is a value, never an exception.
    """

    def check(
        self,
        actor: Actor,
        action: MutationAction,
        target: Item | None = None,
    ) -> PermissionDecision:
        if not actor.can_write:
            return PermissionDecision.deny(
                f"actor {actor.actor_id!r} lacks write capability for {action.value}"
            )
        if action is MutationAction.CREATE:
            return PermissionDecision.allow("write capability")
        if target is None:
            raise ValueError(f"{action.value} checks require the target item")
        if actor.is_admin:
            return PermissionDecision.allow("admin capability")
        if target.created_by == actor.actor_id:
            return PermissionDecision.allow("owner")
        return PermissionDecision.deny(
            f"actor {actor.actor_id!r} does not own item {target.id!r}"
        )

    def check_stage_transition(
        self,
        actor: Actor,
        target: Item,
        next_stage: WorkflowStage | None,
    ) -> PermissionDecision:
        """Entering ``approved`` on an approval-gated item needs ``approve`` or ``admin``."""
        if next_stage is not WorkflowStage.APPROVED or target.workflow_stage is next_stage:
            return PermissionDecision.allow("no approval needed")
        if not target.approval_required:
            return PermissionDecision.allow("approval not required")
        if actor.can_approve:
            return PermissionDecision.allow("approve capability")
        return PermissionDecision.deny(
            f"actor {actor.actor_id!r} cannot approve item {target.id!r}"
        )


__all__ = ["PermissionDecision", "PermissionGate"]
