"""
Unit tests for the connection managers.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, call, patch

from inventory_shared.errors import StoreConnectionError
from inventory_shared.retry import RetryConfig, calculate_delay
from service_inventory.app.persistence.connection import (
    ConnectionManager,
    PostgresConnectionManager,
    RedisConnectionManager,
    connection_retry_config,
)


class FlakyManager(ConnectionManager):
    """Manager whose connect fails a configurable number of times."""

    store_name = "flaky"

    def __init__(self, failures=0, probe_error=None, failure_cooldown=0.0):
        super().__init__(sleep=AsyncMock(), failure_cooldown=failure_cooldown)
        self.failures = failures
        self.probe_error = probe_error
        self.connects = 0
        self.disconnected = []

    async def _connect(self):
        self.connects += 1
        if self.connects <= self.failures:
            raise OSError("connection refused")
        return f"handle-{self.connects}"

    async def _probe(self, handle):
        if self.probe_error is not None:
            raise self.probe_error

    async def _disconnect(self, handle):
        self.disconnected.append(handle)


class TestConnectionManager:
    """Test cases for the shared establish/probe/close behavior."""

    def test_retry_config_defaults(self):
        config = connection_retry_config()
        assert config.max_attempts == 4
        assert config.base_delay == 1.0
        assert config.jitter is False

    def test_backoff_doubles_up_to_max_delay(self):
        delays = [calculate_delay(n, connection_retry_config()) for n in (1, 2, 3)]
        assert delays == [1.0, 2.0, 4.0]
        assert calculate_delay(10, RetryConfig(max_delay=5.0, jitter=False)) == 5.0

    @pytest.mark.asyncio
    async def test_acquire_establishes_once(self):
        manager = FlakyManager()

        first = await manager.acquire()
        second = await manager.acquire()

        assert first == second == "handle-1"
        assert manager.connects == 1

    @pytest.mark.asyncio
    async def test_acquire_gives_up_after_backoff(self):
        manager = FlakyManager(failures=10)

        with pytest.raises(StoreConnectionError) as exc_info:
            await manager.acquire()

        assert exc_info.value.attempts == 4
        assert exc_info.value.store == "flaky"
        assert isinstance(exc_info.value.cause, OSError)
        assert manager._sleep.await_args_list == [call(1.0), call(2.0), call(4.0)]
        assert manager.connects == 4
        assert manager.handle is None

    @pytest.mark.asyncio
    async def test_failure_cooldown_skips_new_attempts(self):
        manager = FlakyManager(failures=10, failure_cooldown=60.0)

        with pytest.raises(StoreConnectionError):
            await manager.acquire()
        with pytest.raises(StoreConnectionError):
            await manager.acquire()

        assert manager.connects == 4

    @pytest.mark.asyncio
    async def test_acquire_without_wait_makes_one_attempt(self):
        manager = FlakyManager(failures=10)

        with pytest.raises(StoreConnectionError) as exc_info:
            await manager.acquire(wait=False)

        assert exc_info.value.attempts == 1
        assert manager.connects == 1
        manager._sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_acquire_without_wait_does_not_queue_behind_establishment(self):
        manager = FlakyManager()

        async with manager._lock:
            with pytest.raises(StoreConnectionError):
                await manager.acquire(wait=False)

        assert manager.connects == 0
        assert await manager.acquire(wait=False) == "handle-1"

    @pytest.mark.asyncio
    async def test_acquire_recovers_within_retries(self):
        manager = FlakyManager(failures=2)

        handle = await manager.acquire()

        assert handle == "handle-3"
        assert manager._sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_is_alive_without_handle_does_not_connect(self):
        manager = FlakyManager()

        assert await manager.is_alive() is False
        assert manager.connects == 0

    @pytest.mark.asyncio
    async def test_failed_probe_clears_handle(self):
        manager = FlakyManager()
        await manager.acquire()
        manager.probe_error = OSError("gone away")

        assert await manager.is_alive() is False
        assert manager.handle is None
        assert manager.disconnected == ["handle-1"]

        manager.probe_error = None
        assert await manager.acquire() == "handle-2"

    @pytest.mark.asyncio
    async def test_close(self):
        manager = FlakyManager()
        await manager.acquire()

        await manager.close()
        await manager.close()

        assert manager.handle is None
        assert manager.disconnected == ["handle-1"]


class TestPostgresConnectionManager:
    """Test cases for the asyncpg pool manager."""

    @pytest.mark.asyncio
    async def test_creates_pool_and_probes(self):
        pool = MagicMock()
        pool.fetchval = AsyncMock(return_value=1)
        pool.close = AsyncMock()
        pool.get_size.return_value = 2
        pool.get_idle_size.return_value = 1

        manager = PostgresConnectionManager("postgresql://localhost/test", min_size=1, max_size=5)

        with patch(
            "service_inventory.app.persistence.connection.asyncpg.create_pool",
            AsyncMock(return_value=pool)
        ) as create_pool:
            assert await manager.acquire() is pool

        create_pool.assert_awaited_once_with(
            "postgresql://localhost/test", min_size=1, max_size=5, command_timeout=30.0
        )
        pool.fetchval.assert_awaited_with("SELECT 1")

        stats = await manager.get_stats()
        assert stats["is_connected"] is True
        assert stats["pool_size"] == 2

        await manager.close()
        pool.close.assert_awaited_once()


class TestRedisConnectionManager:
    """Test cases for the redis.asyncio client manager."""

    @pytest.mark.asyncio
    async def test_creates_client_with_decoded_responses(self):
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        client.aclose = AsyncMock()

        manager = RedisConnectionManager("redis://localhost:6379/0")

        with patch(
            "service_inventory.app.persistence.connection.redis.from_url",
            return_value=client
        ) as from_url:
            assert await manager.acquire() is client

        assert from_url.call_args.kwargs["decode_responses"] is True
        client.ping.assert_awaited_once()

        await manager.close()
        client.aclose.assert_awaited_once()
