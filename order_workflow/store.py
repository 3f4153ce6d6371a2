"""
Order storage interface consumed by the engine, and an in-process implementation.

Every write is one atomic unit: the order row change and its audit record commit together,
or neither does. conditional_update is a compare-and-set on (stage, assigned_agent).
"""
import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from order_workflow.errors import DuplicateOrderError, OrderNotFoundError, StaleStateError
from order_workflow.models import Order, StageChange, StageChangeRecord
from order_workflow.stages import Stage


class OrderStore(Protocol):
    async def get(self, order_id: str) -> Order:
        """Return the order or raise OrderNotFoundError."""

    async def create(self, order_id: str, change: StageChange, restaurant_id: str | None = None) -> Order:
        """
        Insert a new order at change.to_stage with its creation record, owned by change.actor_id.
        DuplicateOrderError if present.
        """

    async def conditional_update(
        self,
        order_id: str,
        expected_stage: Stage,
        change: StageChange,
        assign_if_unset: str | None = None,
    ) -> Order:
        """
        Move the order to change.to_stage only if its stage still equals expected_stage and,
        when assign_if_unset is given, its assigned_agent is still unset (then set it).
        Appends the audit record in the same unit. Raises StaleStateError / OrderNotFoundError.
        """

    async def history(self, order_id: str) -> list[StageChangeRecord]:
        """Audit records for the order in commit order. OrderNotFoundError if the order is unknown."""

    async def list_orders(
        self,
        stage: Stage | None = None,
        assigned_agent: str | None = None,
        unassigned: bool = False,
        customer_id: str | None = None,
        restaurant_id: str | None = None,
    ) -> list[Order]:
        """Orders matching all given filters, oldest first."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryOrderStore:
    """
    Dict-backed store for tests and single-process deployments.
    Compare, write and audit append happen under one asyncio.Lock with no await in between.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._history: dict[str, list[StageChangeRecord]] = {}
        self._lock = asyncio.Lock()

    async def get(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def create(self, order_id: str, change: StageChange, restaurant_id: str | None = None) -> Order:
        async with self._lock:
            if order_id in self._orders:
                raise DuplicateOrderError(order_id)
            now = _utcnow()
            order = Order(
                order_id=order_id,
                stage=change.to_stage,
                customer_id=change.actor_id,
                restaurant_id=restaurant_id,
                created_at=now,
                updated_at=now,
            )
            self._orders[order_id] = order
            self._history[order_id] = [StageChangeRecord.from_change(order_id, change, now)]
            return order

    async def conditional_update(
        self,
        order_id: str,
        expected_stage: Stage,
        change: StageChange,
        assign_if_unset: str | None = None,
    ) -> Order:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise OrderNotFoundError(order_id)
            if current.stage != expected_stage:
                raise StaleStateError(order_id, current.stage)
            if assign_if_unset is not None and current.assigned_agent is not None:
                raise StaleStateError(order_id, current.stage)

            now = _utcnow()
            updated = replace(
                current,
                stage=change.to_stage,
                assigned_agent=assign_if_unset if assign_if_unset is not None else current.assigned_agent,
                updated_at=now,
            )
            self._orders[order_id] = updated
            self._history[order_id].append(StageChangeRecord.from_change(order_id, change, now))
            return updated

    async def history(self, order_id: str) -> list[StageChangeRecord]:
        if order_id not in self._orders:
            raise OrderNotFoundError(order_id)
        return list(self._history[order_id])

    async def list_orders(
        self,
        stage: Stage | None = None,
        assigned_agent: str | None = None,
        unassigned: bool = False,
        customer_id: str | None = None,
        restaurant_id: str | None = None,
    ) -> list[Order]:
        orders = list(self._orders.values())
        if stage is not None:
            orders = [o for o in orders if o.stage == stage]
        if assigned_agent is not None:
            orders = [o for o in orders if o.assigned_agent == assigned_agent]
        if unassigned:
            orders = [o for o in orders if o.assigned_agent is None]
        if customer_id is not None:
            orders = [o for o in orders if o.customer_id == customer_id]
        if restaurant_id is not None:
            orders = [o for o in orders if o.restaurant_id == restaurant_id]
        return sorted(orders, key=lambda o: o.created_at)
