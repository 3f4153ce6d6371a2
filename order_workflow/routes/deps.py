from dataclasses import dataclass

from fastapi import Header, Request

from order_workflow.engine import WorkflowEngine
from order_workflow.stages import ActorRole


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: ActorRole


def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine


def get_actor(
    x_actor_id: str = Header(..., description="Authenticated actor id, set by the auth gateway"),
    x_actor_role: ActorRole = Header(..., description="Authenticated actor role, set by the auth gateway"),
) -> Actor:
    """Identity is authenticated upstream; the pair is trusted as given."""
    return Actor(actor_id=x_actor_id, role=x_actor_role)
