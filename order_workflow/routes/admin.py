from collections import Counter

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from order_workflow.engine import WorkflowEngine
from order_workflow.errors import ForbiddenError
from order_workflow.routes.deps import Actor, get_actor, get_engine
from order_workflow.routes.orders import result_to_dict
from order_workflow.stages import ActorRole, Stage

router = APIRouter(prefix="/admin", tags=["admin"])


class OverrideBody(BaseModel):
    stage: Stage = Field(..., description="Stage to force the order into")
    reason: str = Field(default="", description="Recorded on the audit entry after the override prefix")


@router.post("/orders/{order_id}/override")
async def override_stage(
    order_id: str,
    body: OverrideBody,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> JSONResponse:
    """
    Force an order into any stage (emergency use). Bypasses the transition table,
    is still applied atomically and is tagged as an override in the order's history.
    """
    result = await engine.override_transition(order_id, actor.role, actor.actor_id, body.stage, body.reason)
    return JSONResponse(status_code=200, content={**result_to_dict(result), "override": True})


@router.get("/orders/summary")
async def orders_summary(
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> JSONResponse:
    """Order counts per stage."""
    if actor.role != ActorRole.ADMIN:
        raise ForbiddenError("only admins may view the order summary", actor_id=actor.actor_id)
    orders = await engine.list_orders()
    counts = Counter(o.stage.value for o in orders)
    return JSONResponse(
        status_code=200,
        content={"count": len(orders), "by_stage": {stage.value: counts.get(stage.value, 0) for stage in Stage}},
    )
