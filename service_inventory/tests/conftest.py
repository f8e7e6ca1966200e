"""
Shared fixtures for Inventory service tests.
"""

import fnmatch
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError

from service_inventory.app.cache.invalidation import InvalidationPolicy
from service_inventory.app.cache.redis_cache import RedisCache
from service_inventory.app.persistence.connection import ConnectionManager
from service_inventory.app.products.repository import ProductRepository


class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis the cache uses."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def scan_iter(self, match=None, count=None):
        self._check()
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def incrby(self, key, amount=1):
        self._check()
        value = int(self.store.get(key, 0)) + amount
        self.store[key] = str(value)
        return value

    async def expire(self, key, ttl):
        self._check()
        if key not in self.store:
            return False
        self.ttls[key] = ttl
        return True

    async def ping(self):
        self._check()
        return True

    async def info(self):
        self._check()
        return {
            "redis_version": "7.2.0",
            "used_memory_human": "1.00M",
            "connected_clients": 1,
            "keyspace_hits": 3,
            "keyspace_misses": 1,
        }

    async def aclose(self):
        self.closed = True


class StubConnectionManager(ConnectionManager):
    """Connection manager handing out a prepared client; retries never sleep."""

    store_name = "redis"
    retry_exceptions = (RedisError, OSError)

    def __init__(self, client):
        super().__init__(sleep=AsyncMock())
        self.client = client

    async def _connect(self):
        return self.client

    async def _probe(self, handle):
        await handle.ping()

    async def _disconnect(self, handle):
        await handle.aclose()


def product_row(product_id=1, **overrides):
    """Row as returned by QueryExecutor.read for the products table."""
    row = {
        "id": product_id,
        "name": f"Product {product_id}",
        "sku": f"SKU-{product_id:03d}",
        "category": "electronics",
        "description": "Sample product",
        "quantity": 25,
        "price": Decimal("99.99"),
        "cost": Decimal("49.50"),
        "status": "active",
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2024, 1, 2, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_manager(fake_redis):
    return StubConnectionManager(fake_redis)


@pytest.fixture
def cache(redis_manager):
    return RedisCache(redis_manager)


@pytest.fixture
def executor():
    """QueryExecutor double; ``commits`` counts completed outer transactions."""
    executor = MagicMock()
    executor.read = AsyncMock(return_value=[])
    executor.write = AsyncMock(return_value=1)
    executor.insert = AsyncMock(return_value=1)
    executor.depth = 0
    executor.commits = 0

    @asynccontextmanager
    async def transaction():
        executor.depth += 1
        try:
            yield executor
        finally:
            executor.depth -= 1
        if executor.depth == 0:
            executor.commits += 1

    executor.transaction = MagicMock(side_effect=transaction)
    return executor


@pytest.fixture
def repository(executor, cache):
    return ProductRepository(executor, cache, InvalidationPolicy(cache))
