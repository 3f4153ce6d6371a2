"""
Races on a single order. GatedStore makes every contender read the same snapshot before any of
them writes, so these exercise the store's compare-and-set rather than lucky scheduling.
"""
import asyncio

from _helper import CUSTOMER, RESTAURANT, GatedStore, place_ready_order
from order_workflow.engine import WorkflowEngine
from order_workflow.errors import ConflictError
from order_workflow.models import TransitionResult
from order_workflow.stages import ActorRole, Stage


async def test_two_agents_race_for_the_same_claim():
    store = GatedStore(readers=2)
    engine = WorkflowEngine(store)
    order = await place_ready_order(engine)
    store.gate = True

    results = await asyncio.gather(
        engine.request_transition(order.order_id, ActorRole.DRIVER, "driver-a", Stage.PICKED_UP),
        engine.request_transition(order.order_id, ActorRole.DRIVER, "driver-b", Stage.PICKED_UP),
        return_exceptions=True,
    )
    store.gate = False

    wins = [r for r in results if isinstance(r, TransitionResult)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(wins) == 1
    assert len(conflicts) == 1
    assert wins[0].previous_stage == Stage.READY_FOR_PICKUP
    assert wins[0].new_stage == Stage.PICKED_UP

    final = await engine.get_order(order.order_id)
    assert final.assigned_agent == wins[0].assigned_agent

    claims = [r for r in await engine.history(order.order_id) if r.to_stage == Stage.PICKED_UP]
    assert len(claims) == 1
    assert claims[0].actor_id == final.assigned_agent
    await engine.audit.verify(order.order_id)


async def test_many_agents_exactly_one_claim():
    agents = [f"driver-{i}" for i in range(10)]
    store = GatedStore(readers=len(agents))
    engine = WorkflowEngine(store)
    order = await place_ready_order(engine)
    store.gate = True

    results = await asyncio.gather(
        *(engine.request_transition(order.order_id, ActorRole.DRIVER, a, Stage.PICKED_UP) for a in agents),
        return_exceptions=True,
    )
    store.gate = False

    assert sum(isinstance(r, TransitionResult) for r in results) == 1
    assert sum(isinstance(r, ConflictError) for r in results) == len(agents) - 1
    history = await engine.history(order.order_id)
    assert [r.to_stage for r in history].count(Stage.PICKED_UP) == 1


async def test_cancel_races_confirm():
    store = GatedStore(readers=2)
    engine = WorkflowEngine(store)
    order = await engine.place_order(CUSTOMER)
    store.gate = True

    results = await asyncio.gather(
        engine.request_transition(order.order_id, ActorRole.RESTAURANT, RESTAURANT, Stage.CONFIRMED),
        engine.request_transition(order.order_id, ActorRole.CUSTOMER, CUSTOMER, Stage.CANCELLED),
        return_exceptions=True,
    )
    store.gate = False

    wins = [r for r in results if isinstance(r, TransitionResult)]
    assert len(wins) == 1
    assert sum(isinstance(r, ConflictError) for r in results) == 1

    final = await engine.get_order(order.order_id)
    assert final.stage == wins[0].new_stage
    assert len(await engine.history(order.order_id)) == 2
    await engine.audit.verify(order.order_id)


async def test_override_retries_past_a_concurrent_winner():
    store = GatedStore(readers=2)
    engine = WorkflowEngine(store)
    order = await engine.place_order(CUSTOMER)
    store.gate = True

    confirm, override = await asyncio.gather(
        engine.request_transition(order.order_id, ActorRole.RESTAURANT, RESTAURANT, Stage.CONFIRMED),
        engine.override_transition(order.order_id, ActorRole.ADMIN, "admin-1", Stage.CANCELLED, "duplicate order"),
        return_exceptions=True,
    )
    store.gate = False

    # the override always lands, whichever request committed first
    assert isinstance(override, TransitionResult)
    assert override.new_stage == Stage.CANCELLED
    assert isinstance(confirm, (TransitionResult, ConflictError))

    final = await engine.get_order(order.order_id)
    assert final.stage == Stage.CANCELLED
    history = await engine.history(order.order_id)
    assert history[-1].override is True
    await engine.audit.verify(order.order_id)


async def test_claims_on_different_orders_do_not_interfere(engine):
    orders = [await place_ready_order(engine) for _ in range(5)]
    results = await asyncio.gather(
        *(
            engine.request_transition(o.order_id, ActorRole.DRIVER, f"driver-{i}", Stage.PICKED_UP)
            for i, o in enumerate(orders)
        )
    )
    assert [r.assigned_agent for r in results] == [f"driver-{i}" for i in range(5)]
