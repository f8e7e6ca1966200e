"""
Connection managers for the relational and cache stores.

Each manager lazily creates one shared handle (an ``asyncpg`` pool or a
``redis.asyncio`` client), retries establishment with exponential backoff and
clears the handle when a liveness probe fails so the next ``acquire`` starts
from scratch.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import asyncpg
import redis.asyncio as redis
from redis.exceptions import RedisError

from inventory_shared.errors import StoreConnectionError
from inventory_shared.logging import get_logger
from inventory_shared.retry import RetryConfig, RetryError, retry_async


def connection_retry_config(retries: int = 3, base_delay: float = 1.0) -> RetryConfig:
    """Initial attempt plus ``retries`` retries, delays doubling from ``base_delay``."""
    return RetryConfig(
        max_attempts=retries + 1,
        base_delay=base_delay,
        exponential_base=2.0,
        jitter=False,
    )


_SINGLE_ATTEMPT = RetryConfig(max_attempts=1, jitter=False)


class ConnectionManager(ABC):
    """Lazily established, shared connection handle for one backing store."""

    store_name = "store"
    retry_exceptions: tuple = (OSError, asyncio.TimeoutError)

    def __init__(self,
                 retry_config: Optional[RetryConfig] = None,
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
                 failure_cooldown: float = 0.0):
        self.retry_config = retry_config or connection_retry_config()
        self.failure_cooldown = failure_cooldown
        self.logger = get_logger(f"inventory.connection.{self.store_name}")
        self._sleep = sleep
        self._handle: Optional[Any] = None
        self._lock = asyncio.Lock()
        self._last_failure: Optional[StoreConnectionError] = None
        self._last_failure_at = 0.0

    @property
    def handle(self) -> Optional[Any]:
        """The current handle, or None when not established."""
        return self._handle

    async def acquire(self, wait: bool = True) -> Any:
        """Return the shared handle, establishing it if needed.

        With ``wait=False`` establishment is a single attempt without backoff,
        and an establishment already in progress elsewhere fails immediately
        instead of queueing behind the lock.
        """
        if self._handle is not None:
            return self._handle

        if not wait and self._lock.locked():
            raise StoreConnectionError(self.store_name, 0, RuntimeError("establishment in progress"))

        async with self._lock:
            if self._handle is None:
                if self._cooling_down():
                    raise self._last_failure
                try:
                    self._handle = await self._establish(self.retry_config if wait else _SINGLE_ATTEMPT)
                except StoreConnectionError as e:
                    self._last_failure = e
                    self._last_failure_at = time.monotonic()
                    raise
                self._last_failure = None
        return self._handle

    def _cooling_down(self) -> bool:
        """True while a recent establishment failure should be reported without retrying."""
        if self._last_failure is None or self.failure_cooldown <= 0:
            return False
        return time.monotonic() - self._last_failure_at < self.failure_cooldown

    async def _establish(self, retry_config: RetryConfig) -> Any:
        async def attempt():
            handle = await self._connect()
            try:
                await self._probe(handle)
            except BaseException:
                await self._safe_disconnect(handle)
                raise
            return handle

        try:
            handle = await retry_async(
                attempt,
                exceptions=self.retry_exceptions,
                config=retry_config,
                name=f"{self.store_name}_connect",
                sleep=self._sleep
            )
        except RetryError as e:
            self.logger.error(
                "Connection establishment failed",
                store=self.store_name,
                attempts=e.attempts,
                error=str(e.last_exception)
            )
            raise StoreConnectionError(self.store_name, e.attempts, e.last_exception) from e.last_exception

        self.logger.info("Connection established", store=self.store_name)
        return handle

    async def is_alive(self) -> bool:
        """Probe the handle; never raises. A failed probe drops the handle."""
        handle = self._handle
        if handle is None:
            return False

        try:
            await self._probe(handle)
            return True
        except Exception as e:
            self.logger.warning("Liveness probe failed", store=self.store_name, error=str(e))
            if self._handle is handle:
                self._handle = None
            await self._safe_disconnect(handle)
            return False

    async def close(self):
        """Close the handle if established."""
        handle, self._handle = self._handle, None
        if handle is not None:
            await self._safe_disconnect(handle)
            self.logger.info("Connection closed", store=self.store_name)

    async def _safe_disconnect(self, handle: Any):
        try:
            await self._disconnect(handle)
        except Exception as e:
            self.logger.debug("Error while closing handle", store=self.store_name, error=str(e))

    async def get_stats(self) -> Dict[str, Any]:
        """Basic connection statistics."""
        return {"established": self._handle is not None, "is_connected": await self.is_alive()}

    @abstractmethod
    async def _connect(self) -> Any:
        """Create a new handle."""

    @abstractmethod
    async def _probe(self, handle: Any):
        """Cheap round-trip on the handle; raises on failure."""

    @abstractmethod
    async def _disconnect(self, handle: Any):
        """Release the handle."""


class PostgresConnectionManager(ConnectionManager):
    """asyncpg pool manager for the relational store."""

    store_name = "postgres"
    retry_exceptions = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)

    def __init__(self,
                 dsn: str,
                 min_size: int = 2,
                 max_size: int = 10,
                 command_timeout: float = 30.0,
                 retry_config: Optional[RetryConfig] = None,
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None):
        super().__init__(retry_config, sleep)
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout

    async def _connect(self) -> asyncpg.Pool:
        return await asyncpg.create_pool(
            self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=self.command_timeout
        )

    async def _probe(self, handle: asyncpg.Pool):
        await handle.fetchval("SELECT 1")

    async def _disconnect(self, handle: asyncpg.Pool):
        await handle.close()

    async def get_stats(self) -> Dict[str, Any]:
        stats = await super().get_stats()
        pool = self._handle
        if pool is not None:
            stats["pool_size"] = pool.get_size()
            stats["pool_idle"] = pool.get_idle_size()
        return stats


class RedisConnectionManager(ConnectionManager):
    """redis.asyncio client manager for the cache store."""

    store_name = "redis"
    retry_exceptions = (OSError, asyncio.TimeoutError, RedisError)

    def __init__(self,
                 redis_url: str,
                 retry_config: Optional[RetryConfig] = None,
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
                 failure_cooldown: float = 5.0):
        super().__init__(retry_config, sleep, failure_cooldown)
        self.redis_url = redis_url

    async def _connect(self) -> redis.Redis:
        return redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30
        )

    async def _probe(self, handle: redis.Redis):
        await handle.ping()

    async def _disconnect(self, handle: redis.Redis):
        await handle.aclose()
