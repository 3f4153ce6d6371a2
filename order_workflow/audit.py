"""
Read side of the stage-change log. Records are only ever written by the store inside the same
atomic unit as the stage change they describe; nothing here updates or deletes them.
"""
from typing import Sequence

from order_workflow.errors import AuditIntegrityError
from order_workflow.models import StageChangeRecord
from order_workflow.stages import DEFAULT_TABLE, Stage, TransitionTable
from order_workflow.store import OrderStore


class AuditLog:
    def __init__(self, store: OrderStore, table: TransitionTable = DEFAULT_TABLE):
        self._store = store
        self._table = table

    async def history(self, order_id: str) -> list[StageChangeRecord]:
        return await self._store.history(order_id)

    def replay(self, records: Sequence[StageChangeRecord]) -> Stage:
        """
        Re-walk a history and return the stage it ends in.
        Raises AuditIntegrityError if the first record is not a creation at the initial stage,
        if consecutive records do not chain, or if a non-override step is not in the table.
        """
        if not records:
            raise AuditIntegrityError("empty history")

        first = records[0]
        if first.from_stage is not None or first.to_stage != self._table.initial_stage:
            raise AuditIntegrityError(
                f"order {first.order_id}: history must start with creation at {self._table.initial_stage.value}"
            )

        stage = first.to_stage
        for i, record in enumerate(records[1:], start=1):
            if record.from_stage != stage:
                raise AuditIntegrityError(
                    f"order {record.order_id}: record {i} starts at {record.from_stage} but order was at {stage.value}"
                )
            if not record.override and not self._table.is_allowed(record.from_stage, record.to_stage, record.actor_role):
                raise AuditIntegrityError(
                    f"order {record.order_id}: record {i} {record.from_stage.value} -> {record.to_stage.value} "
                    f"by {record.actor_role} is not a legal transition"
                )
            stage = record.to_stage
        return stage

    async def verify(self, order_id: str) -> Stage:
        """Replay the stored history and check it ends at the order's current stage."""
        records = await self._store.history(order_id)
        replayed = self.replay(records)
        order = await self._store.get(order_id)
        if order.stage != replayed:
            raise AuditIntegrityError(
                f"order {order_id}: stage is {order.stage.value} but history ends at {replayed.value}"
            )
        return replayed
