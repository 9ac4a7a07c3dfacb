"""
Async Postgres: orders and staff stored as whole JSONB records.
Saves are upserts of the complete record (last writer wins); there are no partial-field updates.
"""
import asyncpg

from app.config import settings
from app.errors import NotFound
from app.models import Order
from app.permissions import Actor

_pool: asyncpg.Pool | None = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
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
                id VARCHAR(64) PRIMARY KEY,
                record JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_updated_at
            ON orders(updated_at DESC);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS staff (
                id VARCHAR(64) PRIMARY KEY,
                record JSONB NOT NULL
            );
        """)


class OrderRepository:
    """Whole-record persistence for the order catalog and the staff roster."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def load_all_orders(self) -> list[Order]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT record FROM orders ORDER BY updated_at DESC;")
        return [Order.model_validate_json(row["record"]) for row in rows]

    async def get_order(self, order_id: str) -> Order:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT record FROM orders WHERE id = $1;", order_id)
        if row is None:
            raise NotFound("order", order_id)
        return Order.model_validate_json(row["record"])

    async def order_ids(self) -> set[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT id FROM orders;")
        return {row["id"] for row in rows}

    async def save_order(self, order: Order) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO orders (id, record, updated_at)
                VALUES ($1, $2::jsonb, $3)
                ON CONFLICT (id) DO UPDATE SET record = EXCLUDED.record, updated_at = EXCLUDED.updated_at;
                """,
                order.id,
                order.model_dump_json(),
                order.updated_at,
            )

    async def delete_order(self, order_id: str) -> None:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM orders WHERE id = $1;", order_id)
        if result == "DELETE 0":
            raise NotFound("order", order_id)

    async def load_all_staff(self) -> list[Actor]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT record FROM staff ORDER BY id;")
        return [Actor.model_validate_json(row["record"]) for row in rows]

    async def get_staff(self, staff_id: str) -> Actor:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT record FROM staff WHERE id = $1;", staff_id)
        if row is None:
            raise NotFound("staff", staff_id)
        return Actor.model_validate_json(row["record"])

    async def save_staff(self, staff: Actor) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO staff (id, record)
                VALUES ($1, $2::jsonb)
                ON CONFLICT (id) DO UPDATE SET record = EXCLUDED.record;
                """,
                staff.id,
                staff.model_dump_json(),
            )

    async def delete_staff(self, staff_id: str) -> None:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM staff WHERE id = $1;", staff_id)
        if result == "DELETE 0":
            raise NotFound("staff", staff_id)
