"""
Async Postgres order store. Each order is one row: the full document (JSONB, camelCase field names)
plus the columns that guards and role-scoped queries filter on.
Transitions are a single UPDATE ... WHERE <expected> RETURNING document: no row lock is held across
a read-check-write, so any number of replicas can share the table.
"""
import asyncio
import json
import logging
from contextlib import contextmanager

import asyncpg
from asyncpg.exceptions import InterfaceError, PostgresConnectionError, UniqueViolationError

from orderflow.config import settings
from orderflow.errors import Conflict, Unavailable
from orderflow.models import Order
from orderflow.store import (
    ClientScope,
    Delta,
    DelivererScope,
    Expected,
    RestaurantScope,
    Scope,
    UnrestrictedScope,
)

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


@contextmanager
def _store_errors(operation: str):
    """Timeouts and lost connections become Unavailable (retryable)."""
    try:
        yield
    except (asyncio.TimeoutError, PostgresConnectionError, InterfaceError, OSError) as e:
        logger.error("Order store %s failed: %s", operation, e)
        raise Unavailable(f"order store unavailable ({operation})") from e


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        with _store_errors("connect"):
            _pool = await asyncpg.create_pool(
                settings.database_url,
                min_size=1,
                max_size=5,
                command_timeout=settings.store_timeout_seconds,
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
                status VARCHAR(32) NOT NULL,
                client_id VARCHAR(255) NOT NULL,
                owner_id VARCHAR(255) NOT NULL,
                deliverer_id VARCHAR(255),
                document JSONB NOT NULL,
                created_at TIMESTAMP DEFAULT NOW(),
                updated_at TIMESTAMP DEFAULT NOW()
            );
        """)
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_client_id ON orders(client_id);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_owner_id ON orders(owner_id);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_deliverer_status ON orders(deliverer_id, status);")


def _to_order(document) -> Order:
    if isinstance(document, str):
        document = json.loads(document)
    return Order.model_validate(document)


def _where(scope: Scope, statuses: frozenset[str] | None) -> tuple[str, list]:
    """WHERE clause and positional args for a role scope plus an optional status filter."""
    clauses: list[str] = []
    args: list = []

    def arg(value) -> str:
        args.append(value)
        return f"${len(args)}"

    if isinstance(scope, ClientScope):
        clauses.append(f"client_id = {arg(scope.client_id)}")
    elif isinstance(scope, RestaurantScope):
        clauses.append(f"owner_id = {arg(scope.owner_id)}")
    elif isinstance(scope, DelivererScope):
        # every placeholder must be referenced, so args are bound only for the branch taken
        if scope.which == "me":
            clauses.append(f"deliverer_id = {arg(scope.deliverer_id)}")
        elif scope.which == "none":
            clauses.append(f"(deliverer_id IS NULL AND status = ANY({arg(sorted(scope.pool_statuses))}::text[]))")
        else:
            mine = f"deliverer_id = {arg(scope.deliverer_id)}"
            pool = f"(deliverer_id IS NULL AND status = ANY({arg(sorted(scope.pool_statuses))}::text[]))"
            clauses.append(f"({mine} OR {pool})")
    elif isinstance(scope, UnrestrictedScope):
        pass
    else:
        raise TypeError(f"unknown scope {scope!r}")

    if statuses is not None:
        clauses.append(f"status = ANY({arg(sorted(statuses))}::text[])")
    return (" AND ".join(clauses) or "TRUE"), args


class PostgresOrderStore:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get(self, order_id: str) -> Order | None:
        with _store_errors("get"):
            async with self.pool.acquire() as conn:
                document = await conn.fetchval("SELECT document FROM orders WHERE id = $1;", order_id)
        return _to_order(document) if document is not None else None

    async def insert(self, order: Order) -> Order:
        document = order.to_document()
        with _store_errors("insert"):
            async with self.pool.acquire() as conn:
                try:
                    await conn.execute(
                        """
                        INSERT INTO orders (id, status, client_id, owner_id, deliverer_id, document, updated_at)
                        VALUES ($1, $2, $3, $4, $5, $6::jsonb, NOW());
                        """,
                        order.id,
                        order.status,
                        order.client.id,
                        order.restaurant.owner.id,
                        order.deliverer.id if order.deliverer else None,
                        json.dumps(document),
                    )
                except UniqueViolationError:
                    raise Conflict(f"order {order.id} already exists")
        return order

    async def conditional_update(self, order_id: str, expected: Expected, delta: Delta) -> Order | None:
        """
        One statement carries both the precondition and the change. Returns None when the
        row no longer matches (another transition won the race).
        """
        check_deliverer = expected.deliverer_ids is not None
        allowed = expected.deliverer_ids or frozenset()
        with _store_errors("conditional_update"):
            async with self.pool.acquire() as conn:
                document = await conn.fetchval(
                    """
                    UPDATE orders
                    SET status = COALESCE($2, status),
                        deliverer_id = COALESCE($3, deliverer_id),
                        document = document || $4::jsonb,
                        updated_at = NOW()
                    WHERE id = $1
                      AND status = ANY($5::text[])
                      AND (
                        NOT $6::boolean
                        OR (deliverer_id IS NULL AND $7::boolean)
                        OR deliverer_id = ANY($8::text[])
                      )
                    RETURNING document;
                    """,
                    order_id,
                    delta.status,
                    delta.deliverer.id if delta.deliverer else None,
                    json.dumps(delta.to_document()),
                    sorted(expected.statuses),
                    check_deliverer,
                    None in allowed,
                    sorted(d for d in allowed if d is not None),
                )
        return _to_order(document) if document is not None else None

    async def update_fields(self, order_id: str, fields: dict) -> Order | None:
        """Unconditional partial update (administrative override). Keeps indexed columns in sync."""
        deliverer = fields.get("deliverer")
        with _store_errors("update_fields"):
            async with self.pool.acquire() as conn:
                document = await conn.fetchval(
                    """
                    UPDATE orders
                    SET document = document || $2::jsonb,
                        status = COALESCE($3, status),
                        deliverer_id = CASE WHEN $4::boolean THEN $5 ELSE deliverer_id END,
                        updated_at = NOW()
                    WHERE id = $1
                    RETURNING document;
                    """,
                    order_id,
                    json.dumps(fields),
                    fields.get("status"),
                    "deliverer" in fields,
                    deliverer["id"] if deliverer else None,
                )
        return _to_order(document) if document is not None else None

    async def find(
        self,
        scope: Scope,
        statuses: frozenset[str] | None = None,
        skip: int = 0,
        size: int | None = None,
    ) -> list[Order]:
        where, args = _where(scope, statuses)
        args.extend([size, skip])
        query = (
            f"SELECT document FROM orders WHERE {where} "
            f"ORDER BY created_at DESC, id LIMIT ${len(args) - 1} OFFSET ${len(args)};"
        )
        with _store_errors("find"):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
        return [_to_order(r["document"]) for r in rows]

    async def count(self, scope: Scope, statuses: frozenset[str] | None = None) -> int:
        where, args = _where(scope, statuses)
        with _store_errors("count"):
            async with self.pool.acquire() as conn:
                return await conn.fetchval(f"SELECT COUNT(*) FROM orders WHERE {where};", *args)
