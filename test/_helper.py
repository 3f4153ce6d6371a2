"""
Shared helpers for the workflow tests.
Uses: TEST_DATABASE_URL from env for the Postgres store tests (skipped when unset).
"""
import asyncio
import os
import uuid

from order_workflow.engine import WorkflowEngine
from order_workflow.models import Order
from order_workflow.stages import ActorRole, Stage
from order_workflow.store import InMemoryOrderStore

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")

CUSTOMER = "cust-1"
RESTAURANT = "rest-1"

# restaurant steps from PLACED up to the claimable stage
KITCHEN_STEPS = [
    (ActorRole.RESTAURANT, RESTAURANT, Stage.CONFIRMED),
    (ActorRole.RESTAURANT, RESTAURANT, Stage.PREPARING),
    (ActorRole.RESTAURANT, RESTAURANT, Stage.READY_FOR_PICKUP),
]


def new_order_id(prefix: str = "ord-test") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


async def advance(engine: WorkflowEngine, order_id: str, steps) -> None:
    for role, actor_id, stage in steps:
        await engine.request_transition(order_id, role, actor_id, stage)


async def place_ready_order(engine: WorkflowEngine, order_id: str | None = None) -> Order:
    """Place an order and walk it to READY_FOR_PICKUP, unassigned."""
    order = await engine.place_order(CUSTOMER, order_id=order_id or new_order_id())
    await advance(engine, order.order_id, KITCHEN_STEPS)
    return await engine.get_order(order.order_id)


class GatedStore(InMemoryOrderStore):
    """
    Holds every get() until `readers` callers have read, so they all validate against
    the same snapshot before any of them writes. Only active once `gate` is set.
    """

    def __init__(self, readers: int):
        super().__init__()
        self.gate = False
        self._readers = readers
        self._arrived = 0
        self._all_read = asyncio.Event()

    async def get(self, order_id: str) -> Order:
        order = await super().get(order_id)
        if self.gate:
            self._arrived += 1
            if self._arrived >= self._readers:
                self._all_read.set()
            await self._all_read.wait()
        return order
