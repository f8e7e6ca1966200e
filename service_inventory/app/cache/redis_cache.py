"""
Redis caching layer for the Inventory Service.
"""

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Iterable, Optional, Set, Union

from redis.exceptions import RedisError

from inventory_shared.errors import StoreConnectionError
from inventory_shared.logging import get_logger
from inventory_shared.metrics import MetricsCollector
from ..persistence.connection import RedisConnectionManager

JSON_TAG = "json:"
RAW_TAG = "raw:"

_CACHE_ERRORS = (RedisError, StoreConnectionError, OSError)


class CacheTTL(IntEnum):
    """Expiry classes in seconds."""
    SHORT = 300
    LOW_STOCK = 600
    MEDIUM = 1800
    LONG = 3600
    DAILY = 86400


@dataclass(frozen=True)
class CacheResult:
    """Outcome of one cache operation.

    ``ok`` is False when the store failed; ``hit`` is only meaningful for
    lookups. Callers decide explicitly what a failure means for them.
    """
    ok: bool
    value: Any = None
    hit: bool = False
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None, hit: bool = False) -> "CacheResult":
        return cls(ok=True, value=value, hit=hit)

    @classmethod
    def failure(cls, error: BaseException) -> "CacheResult":
        return cls(ok=False, error=str(error))


def encode_value(value: Any) -> str:
    """Tag and serialize a value for storage."""
    if isinstance(value, str):
        return RAW_TAG + value
    return JSON_TAG + json.dumps(value, separators=(",", ":"))


def decode_value(stored: str) -> Any:
    """Decode a stored payload; anything undecodable comes back as stored."""
    if stored.startswith(RAW_TAG):
        return stored[len(RAW_TAG):]
    if stored.startswith(JSON_TAG):
        try:
            return json.loads(stored[len(JSON_TAG):])
        except ValueError:
            return stored
    return stored


class RedisCache:
    """Best-effort cache store adapter over the shared Redis client.

    Operations never wait out the connection backoff; an unreachable store
    fails the operation at once and the caller falls through.
    """

    def __init__(self, connection: RedisConnectionManager, metrics: Optional[MetricsCollector] = None):
        self.connection = connection
        self.metrics = metrics
        self.logger = get_logger("inventory.cache.redis")

    async def get(self, key: str) -> CacheResult:
        """Look up a key. A miss is ``ok`` with ``hit=False``."""
        try:
            client = await self.connection.acquire(wait=False)
            stored = await client.get(key)
        except _CACHE_ERRORS as e:
            return self._failed("get", key, e)

        if stored is None:
            self.logger.debug("Cache miss", key=key)
            self._record("get", "miss")
            return CacheResult.success(hit=False)

        self.logger.debug("Cache hit", key=key)
        self._record("get", "hit")
        return CacheResult.success(decode_value(stored), hit=True)

    async def set(self, key: str, value: Any, ttl: int = CacheTTL.MEDIUM) -> CacheResult:
        """Store a value with an expiry in seconds."""
        try:
            payload = encode_value(value)
        except (TypeError, ValueError) as e:
            return self._failed("set", key, e)

        try:
            client = await self.connection.acquire(wait=False)
            await client.setex(key, int(ttl), payload)
        except _CACHE_ERRORS as e:
            return self._failed("set", key, e)

        self.logger.debug("Cached value", key=key, ttl=int(ttl), size=len(payload))
        self._record("set", "ok")
        return CacheResult.success(True)

    async def delete(self, keys: Union[str, Iterable[str]]) -> CacheResult:
        """Delete one key or a set of keys; value is the number removed."""
        key_list = [keys] if isinstance(keys, str) else list(keys)
        if not key_list:
            return CacheResult.success(0)

        try:
            client = await self.connection.acquire(wait=False)
            removed = await client.delete(*key_list)
        except _CACHE_ERRORS as e:
            return self._failed("delete", ",".join(key_list[:5]), e)

        self.logger.debug("Deleted keys", count=removed, requested=len(key_list))
        self._record("delete", "ok")
        return CacheResult.success(int(removed))

    async def existing_keys_matching(self, pattern: str) -> CacheResult:
        """Enumerate stored keys matching a glob pattern (SCAN, not KEYS)."""
        try:
            client = await self.connection.acquire(wait=False)
            found: Set[str] = set()
            async for key in client.scan_iter(match=pattern, count=500):
                found.add(key)
        except _CACHE_ERRORS as e:
            return self._failed("scan", pattern, e)

        self._record("scan", "ok")
        return CacheResult.success(found)

    async def increment(self, key: str, by: int = 1) -> CacheResult:
        """Increment a counter; value is the new count."""
        try:
            client = await self.connection.acquire(wait=False)
            value = await client.incrby(key, by)
        except _CACHE_ERRORS as e:
            return self._failed("increment", key, e)

        self._record("increment", "ok")
        return CacheResult.success(int(value))

    async def expire(self, key: str, ttl: int) -> CacheResult:
        """Set a key's expiry; value is whether the key existed."""
        try:
            client = await self.connection.acquire(wait=False)
            applied = await client.expire(key, int(ttl))
        except _CACHE_ERRORS as e:
            return self._failed("expire", key, e)

        self._record("expire", "ok")
        return CacheResult.success(bool(applied))

    async def rate_limit(self, identifier: str, max_requests: int, window: int) -> bool:
        """Fixed-window limiter. Returns True when the request is admitted.

        Cache failures admit the request.
        """
        key = f"rate_limit:{identifier}"
        current = await self.increment(key)
        if not current.ok:
            return True

        if current.value == 1:
            await self.expire(key, window)

        return current.value <= max_requests

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        try:
            client = await self.connection.acquire(wait=False)
            info = await client.info()
        except _CACHE_ERRORS as e:
            self.logger.error("Error getting cache stats", error=str(e))
            return {"error": str(e), "is_connected": False}

        return {
            "redis_version": info.get("redis_version"),
            "used_memory": info.get("used_memory_human"),
            "connected_clients": info.get("connected_clients"),
            "keyspace_hits": info.get("keyspace_hits", 0),
            "keyspace_misses": info.get("keyspace_misses", 0),
            "hit_rate": self._calculate_hit_rate(info),
            "is_connected": await self.connection.is_alive()
        }

    async def health_check(self) -> bool:
        """Check Redis health."""
        return await self.connection.is_alive()

    def _calculate_hit_rate(self, info: Dict[str, Any]) -> float:
        """Calculate cache hit rate as a percentage."""
        hits = info.get("keyspace_hits", 0) or 0
        misses = info.get("keyspace_misses", 0) or 0
        total = hits + misses

        if total == 0:
            return 0.0

        return round(hits / total * 100, 2)

    def _failed(self, operation: str, key: str, error: BaseException) -> CacheResult:
        self.logger.warning("Cache operation failed", operation=operation, key=key, error=str(error))
        self._record(operation, "error")
        return CacheResult.failure(error)

    def _record(self, operation: str, result: str):
        if self.metrics is not None:
            self.metrics.record_cache_operation(operation, result)
