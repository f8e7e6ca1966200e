"""
Parameterized query execution against PostgreSQL.
"""

import asyncio
import re
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple

import asyncpg

from inventory_shared.errors import QueryError
from inventory_shared.logging import get_logger
from inventory_shared.metrics import MetricsCollector
from .connection import PostgresConnectionManager

# ":name" placeholders; "::type" casts are left alone
_PLACEHOLDER = re.compile(r"(?<![:\w]):([A-Za-z_][A-Za-z0-9_]*)")

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def bind_named(query: str, params: Optional[Mapping[str, Any]] = None) -> Tuple[str, List[Any]]:
    """Rewrite ``:name`` placeholders into asyncpg's ``$n`` form.

    Returns the rewritten SQL and the positional argument list. A name used
    several times maps to the same positional slot.
    """
    params = params or {}
    positions: Dict[str, int] = {}
    args: List[Any] = []

    def substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in positions:
            if name not in params:
                raise QueryError(f"Missing value for query parameter '{name}'")
            args.append(params[name])
            positions[name] = len(args)
        return f"${positions[name]}"

    return _PLACEHOLDER.sub(substitute, query), args


def affected_rows(status: str) -> int:
    """Parse the affected row count from a command status tag ("UPDATE 3")."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class QueryExecutor:
    """Runs bound queries over the shared pool, or over one connection inside a transaction."""

    def __init__(self,
                 connection: PostgresConnectionManager,
                 metrics: Optional[MetricsCollector] = None,
                 slow_query_ms: float = 100.0,
                 bound_connection: Optional[asyncpg.Connection] = None):
        self.connection = connection
        self.metrics = metrics
        self.slow_query_ms = slow_query_ms
        self.logger = get_logger("inventory.persistence.executor")
        self._bound = bound_connection

    @property
    def in_transaction(self) -> bool:
        return self._bound is not None

    async def read(self, query: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run a SELECT and return rows as dicts."""
        rows = await self._run("read", query, params, lambda conn, sql, args: conn.fetch(sql, *args))
        return [dict(row) for row in rows]

    async def write(self, query: str, params: Optional[Mapping[str, Any]] = None) -> int:
        """Run an INSERT/UPDATE/DELETE and return the affected row count."""
        status = await self._run("write", query, params, lambda conn, sql, args: conn.execute(sql, *args))
        return affected_rows(status)

    async def insert(self, query: str, params: Optional[Mapping[str, Any]] = None) -> int:
        """Run an INSERT ... RETURNING id and return the generated id."""
        new_id = await self._run("insert", query, params, lambda conn, sql, args: conn.fetchval(sql, *args))
        return int(new_id)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["QueryExecutor"]:
        """Yield an executor bound to one connection inside BEGIN/COMMIT.

        An exception raised in the block rolls back and propagates.
        """
        if self._bound is not None:
            async with self._bound.transaction():
                yield self
            return

        pool = await self.connection.acquire()
        async with pool.acquire() as conn:
            async with conn.transaction():
                self.logger.debug("Transaction started")
                yield QueryExecutor(
                    self.connection,
                    metrics=self.metrics,
                    slow_query_ms=self.slow_query_ms,
                    bound_connection=conn
                )
        self.logger.debug("Transaction committed")

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        if self._bound is not None:
            yield self._bound
            return

        pool = await self.connection.acquire()
        async with pool.acquire() as conn:
            yield conn

    async def _run(self, operation: str, query: str, params: Optional[Mapping[str, Any]], call) -> Any:
        sql, args = bind_named(query, params)
        started = time.perf_counter()
        try:
            async with self._connection() as conn:
                return await call(conn, sql, args)
        except _DRIVER_ERRORS as e:
            self.logger.error("Query failed", operation=operation, error=str(e))
            raise QueryError(str(e), sqlstate=getattr(e, "sqlstate", None)) from e
        finally:
            self._observe(operation, sql, time.perf_counter() - started)

    def _observe(self, operation: str, sql: str, duration: float):
        duration_ms = duration * 1000
        slow = duration_ms > self.slow_query_ms
        if slow:
            self.logger.warning(
                "Slow query detected",
                operation=operation,
                duration_ms=round(duration_ms, 2),
                query=" ".join(sql.split())
            )
        if self.metrics is not None:
            self.metrics.record_query(operation, duration, slow=slow)
