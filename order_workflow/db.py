"""
Async Postgres: orders (current stage + assignment per order) + stage_changes (append-only audit log).
Each write runs in a single transaction: conditional UPDATE of the order row, then INSERT of its audit record.
"""
import asyncpg
from asyncpg.exceptions import UniqueViolationError

from order_workflow.config import settings
from order_workflow.errors import DuplicateOrderError, OrderNotFoundError, StaleStateError
from order_workflow.models import Order, StageChange, StageChangeRecord
from order_workflow.stages import ActorRole, Stage

_pool: asyncpg.Pool | None = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                order_id VARCHAR(255) PRIMARY KEY,
                stage VARCHAR(32) NOT NULL,
                assigned_agent VARCHAR(255),
                customer_id VARCHAR(255),
                restaurant_id VARCHAR(255),
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            ALTER TABLE orders
                ADD COLUMN IF NOT EXISTS customer_id VARCHAR(255),
                ADD COLUMN IF NOT EXISTS restaurant_id VARCHAR(255);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS stage_changes (
                id BIGSERIAL PRIMARY KEY,
                order_id VARCHAR(255) NOT NULL REFERENCES orders(order_id),
                from_stage VARCHAR(32),
                to_stage VARCHAR(32) NOT NULL,
                actor_role VARCHAR(32),
                actor_id VARCHAR(255),
                note TEXT,
                override BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_stage_changes_order_id
            ON stage_changes(order_id);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_stage
            ON orders(stage);
        """)


def _order_from_row(row: asyncpg.Record) -> Order:
    return Order(
        order_id=row["order_id"],
        stage=Stage(row["stage"]),
        assigned_agent=row["assigned_agent"],
        customer_id=row["customer_id"],
        restaurant_id=row["restaurant_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _record_from_row(row: asyncpg.Record) -> StageChangeRecord:
    return StageChangeRecord(
        order_id=row["order_id"],
        from_stage=Stage(row["from_stage"]) if row["from_stage"] else None,
        to_stage=Stage(row["to_stage"]),
        actor_role=ActorRole(row["actor_role"]) if row["actor_role"] else None,
        actor_id=row["actor_id"],
        note=row["note"],
        override=row["override"],
        timestamp=row["created_at"],
    )


async def _insert_change(conn: asyncpg.Connection, order_id: str, change: StageChange) -> None:
    await conn.execute(
        """
        INSERT INTO stage_changes (order_id, from_stage, to_stage, actor_role, actor_id, note, override)
        VALUES ($1, $2, $3, $4, $5, $6, $7);
        """,
        order_id,
        change.from_stage.value if change.from_stage else None,
        change.to_stage.value,
        change.actor_role.value if change.actor_role else None,
        change.actor_id,
        change.note,
        change.override,
    )


class PostgresOrderStore:
    """OrderStore over an asyncpg pool. The compare-and-set lives in the UPDATE's WHERE clause."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get(self, order_id: str) -> Order:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT order_id, stage, assigned_agent, customer_id, restaurant_id, created_at, updated_at
                FROM orders WHERE order_id = $1;
                """,
                order_id,
            )
        if row is None:
            raise OrderNotFoundError(order_id)
        return _order_from_row(row)

    async def create(self, order_id: str, change: StageChange, restaurant_id: str | None = None) -> Order:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                try:
                    row = await conn.fetchrow(
                        """
                        INSERT INTO orders (order_id, stage, customer_id, restaurant_id, updated_at)
                        VALUES ($1, $2, $3, $4, NOW())
                        RETURNING order_id, stage, assigned_agent, customer_id, restaurant_id, created_at, updated_at;
                        """,
                        order_id,
                        change.to_stage.value,
                        change.actor_id,
                        restaurant_id,
                    )
                except UniqueViolationError:
                    raise DuplicateOrderError(order_id)
                await _insert_change(conn, order_id, change)
        return _order_from_row(row)

    async def conditional_update(
        self,
        order_id: str,
        expected_stage: Stage,
        change: StageChange,
        assign_if_unset: str | None = None,
    ) -> Order:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    UPDATE orders
                    SET stage = $3,
                        assigned_agent = COALESCE($4::varchar, assigned_agent),
                        updated_at = NOW()
                    WHERE order_id = $1
                      AND stage = $2
                      AND ($4::varchar IS NULL OR assigned_agent IS NULL)
                    RETURNING order_id, stage, assigned_agent, customer_id, restaurant_id, created_at, updated_at;
                    """,
                    order_id,
                    expected_stage.value,
                    change.to_stage.value,
                    assign_if_unset,
                )
                if row is None:
                    current = await conn.fetchval("SELECT stage FROM orders WHERE order_id = $1;", order_id)
                    if current is None:
                        raise OrderNotFoundError(order_id)
                    raise StaleStateError(order_id, Stage(current))
                await _insert_change(conn, order_id, change)
        return _order_from_row(row)

    async def history(self, order_id: str) -> list[StageChangeRecord]:
        async with self._pool.acquire() as conn:
            exists = await conn.fetchval("SELECT 1 FROM orders WHERE order_id = $1;", order_id)
            if exists is None:
                raise OrderNotFoundError(order_id)
            rows = await conn.fetch(
                """
                SELECT order_id, from_stage, to_stage, actor_role, actor_id, note, override, created_at
                FROM stage_changes
                WHERE order_id = $1
                ORDER BY id ASC;
                """,
                order_id,
            )
        return [_record_from_row(r) for r in rows]

    async def list_orders(
        self,
        stage: Stage | None = None,
        assigned_agent: str | None = None,
        unassigned: bool = False,
        customer_id: str | None = None,
        restaurant_id: str | None = None,
    ) -> list[Order]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT order_id, stage, assigned_agent, customer_id, restaurant_id, created_at, updated_at
                FROM orders
                WHERE ($1::varchar IS NULL OR stage = $1)
                  AND ($2::varchar IS NULL OR assigned_agent = $2)
                  AND (NOT $3::boolean OR assigned_agent IS NULL)
                  AND ($4::varchar IS NULL OR customer_id = $4)
                  AND ($5::varchar IS NULL OR restaurant_id = $5)
                ORDER BY created_at ASC;
                """,
                stage.value if stage else None,
                assigned_agent,
                unassigned,
                customer_id,
                restaurant_id,
            )
        return [_order_from_row(r) for r in rows]
