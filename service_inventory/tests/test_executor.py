"""
Unit tests for QueryExecutor and placeholder binding.
"""

import asyncio

import pytest
import asyncpg
from unittest.mock import AsyncMock, MagicMock

from inventory_shared.errors import QueryError
from service_inventory.app.persistence.executor import QueryExecutor, affected_rows, bind_named
from service_inventory.app.persistence.schema import SCHEMA_STATEMENTS, ensure_schema


def test_bind_named_reuses_positions():
    sql, args = bind_named(
        "SELECT * FROM products WHERE name ILIKE :q OR sku ILIKE :q LIMIT :limit",
        {"q": "%dell%", "limit": 5}
    )
    assert sql == "SELECT * FROM products WHERE name ILIKE $1 OR sku ILIKE $1 LIMIT $2"
    assert args == ["%dell%", 5]


def test_bind_named_leaves_casts_alone():
    sql, args = bind_named("SELECT :value::text", {"value": 3})
    assert sql == "SELECT $1::text"
    assert args == [3]


def test_bind_named_missing_param():
    with pytest.raises(QueryError):
        bind_named("SELECT * FROM products WHERE id = :id", {})


def test_affected_rows():
    assert affected_rows("UPDATE 3") == 3
    assert affected_rows("INSERT 0 1") == 1
    assert affected_rows("") == 0


@pytest.fixture
def connection():
    return MagicMock()


@pytest.fixture
def pool_manager(connection):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = connection
    manager = MagicMock()
    manager.acquire = AsyncMock(return_value=pool)
    return manager


class TestQueryExecutor:
    """Test cases for QueryExecutor."""

    @pytest.mark.asyncio
    async def test_read_returns_dicts(self, pool_manager, connection):
        connection.fetch = AsyncMock(return_value=[{"id": 1, "name": "Widget"}])
        executor = QueryExecutor(pool_manager)

        rows = await executor.read("SELECT id, name FROM products WHERE id = :id", {"id": 1})

        assert rows == [{"id": 1, "name": "Widget"}]
        connection.fetch.assert_awaited_once_with("SELECT id, name FROM products WHERE id = $1", 1)

    @pytest.mark.asyncio
    async def test_write_returns_affected_rows(self, pool_manager, connection):
        connection.execute = AsyncMock(return_value="UPDATE 2")
        executor = QueryExecutor(pool_manager)

        assert await executor.write("UPDATE products SET quantity = :q", {"q": 0}) == 2

    @pytest.mark.asyncio
    async def test_insert_returns_generated_id(self, pool_manager, connection):
        connection.fetchval = AsyncMock(return_value=42)
        executor = QueryExecutor(pool_manager)

        assert await executor.insert("INSERT INTO products (name) VALUES (:name) RETURNING id", {"name": "x"}) == 42

    @pytest.mark.asyncio
    async def test_driver_error_becomes_query_error(self, pool_manager, connection):
        connection.fetchval = AsyncMock(side_effect=asyncpg.UniqueViolationError("duplicate key"))
        executor = QueryExecutor(pool_manager)

        with pytest.raises(QueryError) as exc_info:
            await executor.insert("INSERT INTO products (sku) VALUES (:sku) RETURNING id", {"sku": "A"})

        assert exc_info.value.sqlstate == "23505"

    @pytest.mark.asyncio
    async def test_command_timeout_becomes_query_error(self, pool_manager, connection):
        connection.fetch = AsyncMock(side_effect=asyncio.TimeoutError())
        executor = QueryExecutor(pool_manager)

        with pytest.raises(QueryError) as exc_info:
            await executor.read("SELECT pg_sleep(60)")

        assert exc_info.value.sqlstate is None

    @pytest.mark.asyncio
    async def test_slow_query_is_recorded(self, pool_manager, connection):
        connection.fetch = AsyncMock(return_value=[])
        metrics = MagicMock()
        executor = QueryExecutor(pool_manager, metrics=metrics, slow_query_ms=-1)

        await executor.read("SELECT 1")

        operation, _ = metrics.record_query.call_args.args
        assert operation == "read"
        assert metrics.record_query.call_args.kwargs["slow"] is True

    @pytest.mark.asyncio
    async def test_transaction_binds_one_connection(self, pool_manager, connection):
        connection.execute = AsyncMock(return_value="UPDATE 1")
        executor = QueryExecutor(pool_manager)

        async with executor.transaction() as tx:
            assert tx.in_transaction
            await tx.write("UPDATE products SET quantity = 1 WHERE id = :id", {"id": 1})
            await tx.write("UPDATE products SET quantity = 2 WHERE id = :id", {"id": 2})

        assert not executor.in_transaction
        assert pool_manager.acquire.await_count == 1
        assert connection.execute.await_count == 2
        connection.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_transaction_propagates_errors(self, pool_manager, connection):
        executor = QueryExecutor(pool_manager)

        with pytest.raises(RuntimeError):
            async with executor.transaction():
                raise RuntimeError("abort")

        transaction = connection.transaction.return_value
        exc_type = transaction.__aexit__.call_args.args[0]
        assert exc_type is RuntimeError


@pytest.mark.asyncio
async def test_ensure_schema_runs_in_one_transaction(executor):
    await ensure_schema(executor)

    executor.transaction.assert_called_once()
    statements = [c.args[0] for c in executor.write.await_args_list]
    assert statements == list(SCHEMA_STATEMENTS)
    assert "CREATE TABLE IF NOT EXISTS products" in statements[0]
