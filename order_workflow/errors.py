"""
Typed outcomes of a workflow request. Each carries enough structure for the caller to render
a precise message (current stage, attempted stage, legal alternatives), plus the HTTP status
the API layer maps it to.
"""
from typing import Iterable

from order_workflow.stages import ActorRole, Stage


class WorkflowError(Exception):
    status_code = 500
    kind = "workflow_error"

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": str(self)}


class OrderNotFoundError(WorkflowError):
    status_code = 404
    kind = "not_found"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"order {order_id} not found")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "order_id": self.order_id}


class DuplicateOrderError(WorkflowError):
    status_code = 409
    kind = "duplicate_order"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"order {order_id} already exists")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "order_id": self.order_id}


class InvalidTransitionError(WorkflowError):
    """(current, attempted, role) is not in the transition table. Retrying the same input cannot succeed."""
    status_code = 422
    kind = "invalid_transition"

    def __init__(
        self,
        current_stage: Stage,
        attempted_stage: Stage,
        actor_role: ActorRole,
        legal_next_stages: Iterable[Stage],
    ):
        self.current_stage = current_stage
        self.attempted_stage = attempted_stage
        self.actor_role = actor_role
        self.legal_next_stages = sorted(legal_next_stages, key=lambda s: s.value)
        if self.legal_next_stages:
            valid = ", ".join(s.value for s in self.legal_next_stages)
        else:
            valid = "none (terminal stage)"
        super().__init__(
            f"{current_stage.value} -> {attempted_stage.value} is not allowed for actor "
            f"'{actor_role.value}'. Valid transitions from {current_stage.value} are: {valid}"
        )

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "current_stage": self.current_stage.value,
            "attempted_stage": self.attempted_stage.value,
            "actor_role": self.actor_role.value,
            "legal_next_stages": [s.value for s in self.legal_next_stages],
        }


class ConflictError(WorkflowError):
    """A concurrent request won. Safe to retry once against freshly read state."""
    status_code = 409
    kind = "conflict"

    def __init__(self, order_id: str, current_stage: Stage | None, attempted_stage: Stage, reason: str):
        self.order_id = order_id
        self.current_stage = current_stage
        self.attempted_stage = attempted_stage
        super().__init__(reason)

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "order_id": self.order_id,
            "current_stage": self.current_stage.value if self.current_stage else None,
            "attempted_stage": self.attempted_stage.value,
        }


class ForbiddenError(WorkflowError):
    status_code = 403
    kind = "forbidden"

    def __init__(
        self,
        reason: str,
        order_id: str | None = None,
        actor_id: str | None = None,
        assigned_agent: str | None = None,
        attempted_stage: Stage | None = None,
    ):
        self.order_id = order_id
        self.actor_id = actor_id
        self.assigned_agent = assigned_agent
        self.attempted_stage = attempted_stage
        super().__init__(reason)

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "order_id": self.order_id,
            "actor_id": self.actor_id,
            "assigned_agent": self.assigned_agent,
            "attempted_stage": self.attempted_stage.value if self.attempted_stage else None,
        }


class StaleStateError(Exception):
    """Store signal: the compare-and-set precondition no longer holds. The engine maps it to ConflictError."""

    def __init__(self, order_id: str, current_stage: Stage | None = None):
        self.order_id = order_id
        self.current_stage = current_stage
        super().__init__(order_id)


class AuditIntegrityError(Exception):
    """Raised when a stage-change history does not replay to a legal walk."""
