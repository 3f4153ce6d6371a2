from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from order_workflow.config import settings
from order_workflow.engine import WorkflowEngine
from order_workflow.errors import ForbiddenError
from order_workflow.models import Order, StageChangeRecord, TransitionResult
from order_workflow.redis_client import claim_idempotency_key, release_idempotency_key, store_response
from order_workflow.routes.deps import Actor, get_actor, get_engine
from order_workflow.stages import ActorRole, Stage

router = APIRouter(prefix="/orders", tags=["orders"])


class PlaceOrderBody(BaseModel):
    order_id: str | None = Field(default=None, description="Client-chosen id; generated when omitted")
    note: str | None = Field(default=None, description="Free text stored on the creation record")
    restaurant_id: str | None = Field(default=None, description="Restaurant the order is placed with")


class TransitionBody(BaseModel):
    stage: Stage = Field(..., description="Desired next stage")
    note: str | None = Field(default=None, description="Free text stored on the audit record")


def order_to_dict(order: Order) -> dict:
    return {
        "order_id": order.order_id,
        "stage": order.stage.value,
        "assigned_agent": order.assigned_agent,
        "customer_id": order.customer_id,
        "restaurant_id": order.restaurant_id,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
    }


def record_to_dict(record: StageChangeRecord) -> dict:
    return {
        "order_id": record.order_id,
        "from_stage": record.from_stage.value if record.from_stage else None,
        "to_stage": record.to_stage.value,
        "actor_role": record.actor_role.value if record.actor_role else None,
        "actor_id": record.actor_id,
        "note": record.note,
        "override": record.override,
        "timestamp": record.timestamp.isoformat(),
    }


def result_to_dict(result: TransitionResult) -> dict:
    return {
        "order_id": result.order_id,
        "previous_stage": result.previous_stage.value,
        "new_stage": result.new_stage.value,
        "assigned_agent": result.assigned_agent,
    }


@router.post("")
async def place_order(
    body: PlaceOrderBody,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> JSONResponse:
    if actor.role != ActorRole.CUSTOMER:
        raise ForbiddenError("only customers may place orders", order_id=body.order_id, actor_id=actor.actor_id)
    order = await engine.place_order(
        actor.actor_id, order_id=body.order_id, note=body.note, restaurant_id=body.restaurant_id
    )
    return JSONResponse(status_code=201, content=order_to_dict(order))


@router.get("")
async def list_orders(
    stage: Stage | None = Query(default=None),
    assigned_agent: str | None = Query(default=None),
    unassigned: bool = Query(default=False),
    customer_id: str | None = Query(default=None),
    restaurant_id: str | None = Query(default=None),
    engine: WorkflowEngine = Depends(get_engine),
) -> JSONResponse:
    """
    Filtered order listing. Drivers use stage=READY_FOR_PICKUP&unassigned=true for the orders
    open to claim, and assigned_agent=<self> for their own deliveries. customer_id and
    restaurant_id give the per-customer and per-restaurant views.
    """
    orders = await engine.list_orders(
        stage=stage,
        assigned_agent=assigned_agent,
        unassigned=unassigned,
        customer_id=customer_id,
        restaurant_id=restaurant_id,
    )
    return JSONResponse(
        status_code=200,
        content={"count": len(orders), "orders": [order_to_dict(o) for o in orders]},
    )


@router.get("/{order_id}")
async def get_order(order_id: str, engine: WorkflowEngine = Depends(get_engine)) -> JSONResponse:
    order = await engine.get_order(order_id)
    return JSONResponse(status_code=200, content=order_to_dict(order))


@router.get("/{order_id}/history")
async def order_history(order_id: str, engine: WorkflowEngine = Depends(get_engine)) -> JSONResponse:
    records = await engine.history(order_id)
    return JSONResponse(
        status_code=200,
        content={"order_id": order_id, "count": len(records), "history": [record_to_dict(r) for r in records]},
    )


@router.get("/{order_id}/next-stages")
async def next_stages(order_id: str, engine: WorkflowEngine = Depends(get_engine)) -> JSONResponse:
    order = await engine.get_order(order_id)
    legal = sorted(s.value for s in engine.legal_next_stages(order.stage))
    return JSONResponse(
        status_code=200,
        content={"order_id": order_id, "stage": order.stage.value, "legal_next_stages": legal},
    )


@router.post("/{order_id}/transitions")
async def request_transition(
    order_id: str,
    body: TransitionBody,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
    idempotency_key: str | None = Header(default=None),
) -> JSONResponse:
    """
    Move an order to body.stage on behalf of the authenticated actor.
    With an Idempotency-Key header, a repeated request returns the first response (200)
    instead of being re-evaluated against the order's new stage.
    """
    key = None
    if idempotency_key and settings.redis_url:
        key = f"idempotency:transition:{order_id}:{actor.actor_id}:{idempotency_key}"
        cached = await claim_idempotency_key(key)
        if cached == {}:
            return JSONResponse(status_code=409, content={"status": "in_progress", "order_id": order_id})
        if cached is not None:
            return JSONResponse(status_code=200, content={**cached, "status": "already_processed"})

    try:
        result = await engine.request_transition(order_id, actor.role, actor.actor_id, body.stage, body.note)
        content = result_to_dict(result)
        if key:
            await store_response(key, content)
    except Exception:
        if key:
            await release_idempotency_key(key)
        raise
    return JSONResponse(status_code=200, content=content)
