"""
Invalidation policy for product mutations.
"""

from typing import Iterable, List, Optional, Tuple

from inventory_shared.logging import get_logger
from inventory_shared.metrics import MetricsCollector
from .keys import ANALYTICS_PREFIX, LIST_PREFIX, LOW_STOCK_PREFIX, SEARCH_PREFIX, product_key
from .redis_cache import RedisCache


class InvalidationPolicy:
    """Decides which cache entries a product write makes stale, and sweeps them.

    Any write drops every cached listing, search, low-stock and analytics
    payload regardless of which filters it touched, plus the single-record
    entries of the affected ids.
    """

    SWEEP_PATTERNS: Tuple[str, ...] = (
        f"{LIST_PREFIX}*",
        f"{SEARCH_PREFIX}*",
        f"{ANALYTICS_PREFIX}*",
        f"{LOW_STOCK_PREFIX}*",
    )

    def __init__(self, cache: RedisCache, metrics: Optional[MetricsCollector] = None):
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("inventory.cache.invalidation")

    def stale_keys(self, product_ids: Iterable[int]) -> List[str]:
        return [product_key(product_id) for product_id in sorted(set(product_ids))]

    async def invalidate(self, *product_ids: int) -> int:
        """Sweep the coarse patterns and the given product keys.

        Returns the number of keys removed. Cache failures are logged and
        skipped.
        """
        removed = 0

        for pattern in self.SWEEP_PATTERNS:
            matching = await self.cache.existing_keys_matching(pattern)
            if not matching.ok:
                self.logger.warning("Skipping sweep pattern", pattern=pattern, error=matching.error)
                continue
            if not matching.value:
                continue

            deleted = await self.cache.delete(matching.value)
            if deleted.ok:
                removed += deleted.value

        keys = self.stale_keys(product_ids)
        if keys:
            deleted = await self.cache.delete(keys)
            if deleted.ok:
                removed += deleted.value
            else:
                self.logger.warning("Failed to drop product keys", keys=keys, error=deleted.error)

        self.logger.info("Inventory cache invalidated", product_ids=list(product_ids), removed=removed)
        if self.metrics is not None:
            self.metrics.record_invalidation(removed)
        return removed
