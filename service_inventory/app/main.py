"""
Inventory service: product catalogue API over PostgreSQL with Redis cache-aside reads.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Query, Request
from fastapi.responses import JSONResponse

from inventory_shared.base_service import BaseService
from inventory_shared.config import ServiceConfig
from inventory_shared.errors import NotFoundError, RateLimitError, StoreConnectionError, ValidationError

from .cache.invalidation import InvalidationPolicy
from .cache.redis_cache import RedisCache
from .persistence.connection import (
    PostgresConnectionManager,
    RedisConnectionManager,
    connection_retry_config,
)
from .persistence.executor import QueryExecutor
from .persistence.schema import ensure_schema
from .products.models import BulkUpdateRequest, ProductCreateRequest, ProductUpdateRequest
from .products.repository import ProductRepository


class InventoryService(BaseService):
    """Inventory service implementation."""

    critical_dependencies = ("postgres",)

    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__("inventory", 8000, config)

        retry_config = connection_retry_config(
            retries=self.config.connect_retries,
            base_delay=self.config.connect_base_delay
        )

        # Connection managers are shared by every component of this instance
        self.postgres = PostgresConnectionManager(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool_size,
            max_size=self.config.postgres_max_pool_size,
            command_timeout=self.config.postgres_command_timeout,
            retry_config=retry_config
        )
        self.redis = RedisConnectionManager(
            self.config.redis_url,
            retry_config=retry_config,
            failure_cooldown=self.config.cache_failure_cooldown
        )

        self.executor = QueryExecutor(
            self.postgres,
            metrics=self.metrics,
            slow_query_ms=self.config.slow_query_ms
        )
        self.cache = RedisCache(self.redis, metrics=self.metrics)
        self.invalidation = InvalidationPolicy(self.cache, metrics=self.metrics)
        self.repository = ProductRepository(self.executor, self.cache, self.invalidation)

        self._setup_inventory_routes()

    def _setup_inventory_routes(self):
        """Set up inventory-specific routes."""

        guarded = [Depends(self._enforce_rate_limit)]

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "inventory",
                "message": "Inventory Access Service",
                "version": "1.0.0",
                "capabilities": ["products", "search", "analytics", "caching"]
            }

        @self.app.get("/api/inventory", dependencies=guarded)
        async def list_products(
            page: int = Query(1, ge=1, description="Page number"),
            limit: int = Query(50, ge=1, description="Items per page"),
            category: Optional[str] = Query(None, description="Filter by category"),
            status: Optional[str] = Query(None, description="Filter by status"),
            min_stock: Optional[int] = Query(None, ge=0, description="Minimum quantity")
        ):
            """List products with filtering and pagination."""
            started = time.perf_counter()
            result = await self.repository.get_all(
                page=page,
                limit=min(limit, self.config.max_page_size),
                filters={"category": category, "status": status, "min_stock": min_stock}
            )
            return {
                "success": True,
                "data": result["data"],
                "pagination": result["pagination"],
                "meta": self._meta(started, total_results=result["pagination"]["total"])
            }

        @self.app.get("/api/inventory/search", dependencies=guarded)
        async def search_products(
            q: str = Query("", description="Search text"),
            limit: int = Query(20, ge=1, description="Maximum results")
        ):
            """Full-text product search."""
            started = time.perf_counter()
            query = q.strip()
            if len(query) < self.config.min_search_length:
                raise ValidationError(
                    f"Search query must be at least {self.config.min_search_length} characters",
                    {"field": "q"}
                )

            results = await self.repository.search(query, min(limit, self.config.max_search_results))
            return {
                "success": True,
                "data": results,
                "meta": self._meta(started, query=query, total_results=len(results))
            }

        @self.app.get("/api/inventory/low-stock", dependencies=guarded)
        async def low_stock(
            threshold: Optional[int] = Query(None, ge=0, description="Quantity threshold")
        ):
            """Active products at or below the stock threshold."""
            if threshold is None:
                threshold = self.config.low_stock_threshold
            items = await self.repository.get_low_stock(threshold)
            return {
                "success": True,
                "data": items,
                "meta": {"threshold": threshold, "total_results": len(items)}
            }

        @self.app.post("/api/inventory/bulk", dependencies=guarded)
        async def bulk_update(request: BulkUpdateRequest):
            """Update several products in one transaction."""
            if not request.products:
                raise ValidationError("Products array is required", {"field": "products"})

            result = await self.repository.bulk_update(request.products)
            return {
                "success": True,
                "data": result,
                "message": f"Updated {result['updated_count']} products"
            }

        @self.app.post("/api/inventory", dependencies=guarded)
        async def create_product(request: ProductCreateRequest):
            """Create a product."""
            product = await self.repository.create(request.model_dump(exclude_unset=True))
            return JSONResponse(
                status_code=201,
                content={
                    "success": True,
                    "data": product,
                    "message": "Product created successfully"
                }
            )

        @self.app.get("/api/inventory/{product_id}", dependencies=guarded)
        async def get_product(product_id: int):
            """Get a single product."""
            product = await self.repository.get_by_id(product_id)
            if product is None:
                raise NotFoundError("Product not found", {"id": product_id})
            return {"success": True, "data": product}

        @self.app.put("/api/inventory/{product_id}", dependencies=guarded)
        async def update_product(product_id: int, request: ProductUpdateRequest):
            """Partially update a product."""
            product = await self.repository.update(product_id, request.model_dump(exclude_unset=True))
            if product is None:
                raise NotFoundError("Product not found", {"id": product_id})
            return {
                "success": True,
                "data": product,
                "message": "Product updated successfully"
            }

        @self.app.delete("/api/inventory/{product_id}", dependencies=guarded)
        async def delete_product(product_id: int):
            """Soft delete a product."""
            if not await self.repository.delete(product_id):
                raise NotFoundError("Product not found", {"id": product_id})
            return {"success": True, "message": "Product deleted successfully"}

        @self.app.get("/api/analytics/inventory", dependencies=guarded)
        async def inventory_analytics():
            """Inventory overview and category breakdown."""
            return {"success": True, "data": await self.repository.get_analytics()}

        @self.app.get("/api/analytics/performance", dependencies=guarded)
        async def performance():
            """Store statistics, inventory analytics and low-stock alerts."""
            started = time.perf_counter()
            low_stock_items = await self.repository.get_low_stock(self.config.low_stock_threshold)

            return {
                "success": True,
                "data": {
                    "database": await self.postgres.get_stats(),
                    "cache": await self.cache.get_stats(),
                    "inventory": await self.repository.get_analytics(),
                    "low_stock_alerts": low_stock_items[:5],
                    "low_stock_count": len(low_stock_items),
                    "api": {
                        "uptime_seconds": round(self._get_uptime(), 2),
                        "timestamp": datetime.now(timezone.utc).isoformat()
                    }
                },
                "meta": self._meta(started)
            }

    async def _enforce_rate_limit(self, request: Request):
        """Fixed-window per-client guard; disabled when the limit is 0."""
        max_requests = self.config.rate_limit_requests
        if max_requests <= 0:
            return

        client = request.client.host if request.client else "unknown"
        window = self.config.rate_limit_window_seconds
        if not await self.cache.rate_limit(client, max_requests, window):
            raise RateLimitError(details={"limit": max_requests, "window_seconds": window})

    @staticmethod
    def _meta(started: float, **extra: Any) -> Dict[str, Any]:
        meta = {"response_time_ms": round((time.perf_counter() - started) * 1000, 2)}
        meta.update(extra)
        return meta

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check inventory service dependencies."""
        dependencies = {}

        for name, manager in (("postgres", self.postgres), ("redis", self.redis)):
            if manager.handle is None:
                try:
                    await manager.acquire()
                except StoreConnectionError:
                    dependencies[name] = "error"
                    continue

            dependencies[name] = "ok" if await manager.is_alive() else "error"

        return dependencies

    async def start(self):
        """Start inventory service components."""
        if self.config.auto_create_schema:
            await ensure_schema(self.executor)

        # The cache is optional at startup; reads fall through to PostgreSQL
        try:
            await self.redis.acquire()
        except StoreConnectionError as e:
            self.logger.warning("Cache store unavailable at startup", error=str(e))

        self.logger.info("Inventory service started", port=self.config.port)

    async def stop(self):
        """Stop inventory service components."""
        await self.redis.close()
        await self.postgres.close()

        self.logger.info("Inventory service stopped")


def create_app():
    """Create inventory service application."""
    service = InventoryService()
    return service.app


if __name__ == "__main__":
    service = InventoryService()
    service.run()
