"""
Workflow engine: the only mutator of an order's stage and assigned agent.

A request is validated against the transition table, then applied through the store's
compare-and-set so the stage change, any assignment and the audit record commit as one unit.
A lost race is reported as ConflictError; the normal path never retries on the caller's behalf.
"""
import logging
import uuid

from order_workflow import metrics
from order_workflow.audit import AuditLog
from order_workflow.config import settings
from order_workflow.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    OrderNotFoundError,
    StaleStateError,
    WorkflowError,
)
from order_workflow.models import Order, StageChange, StageChangeRecord, TransitionResult
from order_workflow.stages import (
    ASSIGNED_AGENT_ONLY,
    CLAIM_STAGES,
    DEFAULT_TABLE,
    ActorRole,
    Stage,
    TransitionTable,
)
from order_workflow.store import OrderStore

logger = logging.getLogger(__name__)


class WorkflowEngine:
    def __init__(
        self,
        store: OrderStore,
        table: TransitionTable = DEFAULT_TABLE,
        override_note_prefix: str | None = None,
        override_max_attempts: int | None = None,
    ):
        self.store = store
        self.table = table
        self.audit = AuditLog(store, table)
        self.override_note_prefix = override_note_prefix or settings.override_note_prefix
        self.override_max_attempts = max(1, override_max_attempts or settings.override_max_attempts)

    # ---- reads ----

    async def get_order(self, order_id: str) -> Order:
        return await self.store.get(order_id)

    def legal_next_stages(self, stage: Stage) -> frozenset[Stage]:
        return self.table.legal_next_stages(Stage(stage))

    async def history(self, order_id: str) -> list[StageChangeRecord]:
        return await self.audit.history(order_id)

    async def list_orders(
        self,
        stage: Stage | None = None,
        assigned_agent: str | None = None,
        unassigned: bool = False,
        customer_id: str | None = None,
        restaurant_id: str | None = None,
    ) -> list[Order]:
        return await self.store.list_orders(
            stage=stage,
            assigned_agent=assigned_agent,
            unassigned=unassigned,
            customer_id=customer_id,
            restaurant_id=restaurant_id,
        )

    # ---- writes ----

    async def place_order(
        self,
        customer_id: str,
        order_id: str | None = None,
        note: str | None = None,
        restaurant_id: str | None = None,
    ) -> Order:
        """Create an order at the initial stage together with its creation record."""
        order_id = order_id or uuid.uuid4().hex
        change = StageChange(
            from_stage=None,
            to_stage=self.table.initial_stage,
            actor_role=ActorRole.CUSTOMER,
            actor_id=customer_id,
            note=note,
        )
        order = await self.store.create(order_id, change, restaurant_id=restaurant_id)
        metrics.orders_placed_total.inc()
        logger.info("Placed order_id=%s by customer=%s restaurant=%s", order_id, customer_id, restaurant_id)
        return order

    async def request_transition(
        self,
        order_id: str,
        actor_role: ActorRole,
        actor_id: str | None,
        desired_stage: Stage,
        note: str | None = None,
    ) -> TransitionResult:
        actor_role = ActorRole(actor_role)
        desired_stage = Stage(desired_stage)
        try:
            order = await self.store.get(order_id)
            claim = self._check(order, actor_role, actor_id, desired_stage)
            change = StageChange(
                from_stage=order.stage,
                to_stage=desired_stage,
                actor_role=actor_role,
                actor_id=actor_id,
                note=note,
            )
            try:
                updated = await self.store.conditional_update(
                    order_id,
                    expected_stage=order.stage,
                    change=change,
                    assign_if_unset=actor_id if claim and order.assigned_agent is None else None,
                )
            except StaleStateError as e:
                raise ConflictError(
                    order_id,
                    e.current_stage,
                    desired_stage,
                    f"order {order_id} changed concurrently (was {order.stage.value} when validated)",
                )
        except WorkflowError as e:
            metrics.order_transitions_rejected_total.labels(reason=e.kind).inc()
            logger.warning(
                "Rejected order_id=%s -> %s by %s:%s: %s", order_id, desired_stage.value, actor_role.value, actor_id, e
            )
            raise

        metrics.order_transitions_total.labels(
            from_stage=order.stage.value, to_stage=desired_stage.value, actor_role=actor_role.value
        ).inc()
        logger.info(
            "Transition order_id=%s %s -> %s by %s:%s",
            order_id,
            order.stage.value,
            desired_stage.value,
            actor_role.value,
            actor_id,
        )
        return TransitionResult(
            order_id=order_id,
            previous_stage=order.stage,
            new_stage=updated.stage,
            assigned_agent=updated.assigned_agent,
        )

    def _check(self, order: Order, actor_role: ActorRole, actor_id: str | None, desired: Stage) -> bool:
        """Raise the typed denial for this request, if any. Returns True when the move is a claim."""
        claim = desired in CLAIM_STAGES
        taken_by_other = order.assigned_agent is not None and order.assigned_agent != actor_id

        if not self.table.is_allowed(order.stage, desired, actor_role):
            # a claimant who lost the race sees the conflict, once the order already sits in the claim stage
            lost_claim = (
                claim
                and taken_by_other
                and order.stage == desired
                and self.table.can_enter(desired, actor_role)
            )
            if lost_claim:
                raise ConflictError(
                    order.order_id,
                    order.stage,
                    desired,
                    f"order {order.order_id} has already been claimed by another agent",
                )
            raise InvalidTransitionError(order.stage, desired, actor_role, self.table.legal_next_stages(order.stage))

        if claim:
            if actor_id is None:
                raise ForbiddenError(
                    "claiming an order requires an actor id",
                    order_id=order.order_id,
                    assigned_agent=order.assigned_agent,
                    attempted_stage=desired,
                )
            if taken_by_other:
                raise ConflictError(
                    order.order_id,
                    order.stage,
                    desired,
                    f"order {order.order_id} has already been claimed by another agent",
                )

        if (order.stage, desired) in ASSIGNED_AGENT_ONLY and (actor_id is None or order.assigned_agent != actor_id):
            raise ForbiddenError(
                f"only the assigned agent may move order {order.order_id} to {desired.value}",
                order_id=order.order_id,
                actor_id=actor_id,
                assigned_agent=order.assigned_agent,
                attempted_stage=desired,
            )
        return claim

    async def override_transition(
        self,
        order_id: str,
        actor_role: ActorRole,
        actor_id: str | None,
        desired_stage: Stage,
        reason: str = "",
    ) -> TransitionResult:
        """
        Administrative move to any stage, bypassing the transition table.
        Still committed through the compare-and-set and audited with the override prefix.
        A lost race is retried against re-read state, up to override_max_attempts.
        """
        actor_role = ActorRole(actor_role)
        desired_stage = Stage(desired_stage)
        if actor_role != ActorRole.ADMIN:
            metrics.order_transitions_rejected_total.labels(reason=ForbiddenError.kind).inc()
            raise ForbiddenError(
                f"role '{actor_role.value}' may not override order stages",
                order_id=order_id,
                actor_id=actor_id,
                attempted_stage=desired_stage,
            )

        note = f"{self.override_note_prefix} {reason}".rstrip()
        last_seen: Stage | None = None
        for attempt in range(1, self.override_max_attempts + 1):
            try:
                order = await self.store.get(order_id)
            except OrderNotFoundError as e:
                metrics.order_transitions_rejected_total.labels(reason=e.kind).inc()
                logger.warning("Rejected override of order_id=%s by admin:%s: %s", order_id, actor_id, e)
                raise
            change = StageChange(
                from_stage=order.stage,
                to_stage=desired_stage,
                actor_role=actor_role,
                actor_id=actor_id,
                note=note,
                override=True,
            )
            try:
                updated = await self.store.conditional_update(order_id, expected_stage=order.stage, change=change)
            except StaleStateError as e:
                last_seen = e.current_stage
                logger.info("Override of order_id=%s lost a race (attempt %d/%d)", order_id, attempt, self.override_max_attempts)
                continue

            metrics.order_overrides_total.labels(to_stage=desired_stage.value).inc()
            logger.warning(
                "Override order_id=%s %s -> %s by admin:%s reason=%r",
                order_id,
                order.stage.value,
                desired_stage.value,
                actor_id,
                reason,
            )
            return TransitionResult(
                order_id=order_id,
                previous_stage=order.stage,
                new_stage=updated.stage,
                assigned_agent=updated.assigned_agent,
            )

        metrics.order_transitions_rejected_total.labels(reason=ConflictError.kind).inc()
        raise ConflictError(
            order_id,
            last_seen,
            desired_stage,
            f"override of order {order_id} kept losing to concurrent updates after {self.override_max_attempts} attempts",
        )
