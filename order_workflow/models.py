"""
Plain value types passed between the engine and the stores. All frozen: a store hands out snapshots.
"""
from dataclasses import dataclass
from datetime import datetime

from order_workflow.stages import ActorRole, Stage


@dataclass(frozen=True)
class Order:
    order_id: str
    stage: Stage
    assigned_agent: str | None = None
    customer_id: str | None = None
    restaurant_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class StageChange:
    """An audit entry before commit; the store stamps it and binds it to the order."""
    from_stage: Stage | None
    to_stage: Stage
    actor_role: ActorRole | None
    actor_id: str | None
    note: str | None = None
    override: bool = False


@dataclass(frozen=True)
class StageChangeRecord:
    order_id: str
    from_stage: Stage | None
    to_stage: Stage
    actor_role: ActorRole | None
    actor_id: str | None
    note: str | None
    override: bool
    timestamp: datetime

    @classmethod
    def from_change(cls, order_id: str, change: StageChange, timestamp: datetime) -> "StageChangeRecord":
        return cls(
            order_id=order_id,
            from_stage=change.from_stage,
            to_stage=change.to_stage,
            actor_role=change.actor_role,
            actor_id=change.actor_id,
            note=change.note,
            override=change.override,
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class TransitionResult:
    order_id: str
    previous_stage: Stage
    new_stage: Stage
    assigned_agent: str | None = None
