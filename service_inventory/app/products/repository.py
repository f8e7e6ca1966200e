"""
Cache-aside product repository.

Reads check Redis by a derived key and fall back to PostgreSQL on a miss,
caching the payload with the operation's TTL class. Writes mutate
PostgreSQL first, then run the invalidation policy, then re-read the
affected record through the read path so its cache entry is repopulated.

Two concurrent writes to the same id may interleave their invalidation and
re-read steps and leave a cache entry reflecting neither write cleanly until
the next write or TTL expiry. No locking is attempted here.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence

from inventory_shared.errors import DuplicateKeyError, QueryError, ValidationError
from inventory_shared.logging import get_logger
from ..cache.invalidation import InvalidationPolicy
from ..cache.keys import ANALYTICS_KEY, list_key, low_stock_key, product_key, search_key
from ..cache.redis_cache import CacheTTL, RedisCache
from ..persistence.executor import QueryExecutor
from . import queries
from .models import (
    LOW_STOCK_MAX,
    CategoryBreakdown,
    InventoryAnalytics,
    InventoryOverview,
    LowStockItem,
    Pagination,
    Product,
    ProductSearchHit,
    ProductStatus,
    to_money,
)

UNIQUE_VIOLATION = "23505"

# Column limits: INTEGER ids and quantity, NUMERIC(10, 2) money
MAX_INTEGER = 2_147_483_647
MAX_AMOUNT = Decimal("99999999.99")

_STATUSES = {status.value for status in ProductStatus}

_CREATE_DEFAULTS: Dict[str, Any] = {
    "category": "general",
    "description": "",
    "quantity": 0,
    "price": Decimal("0.00"),
    "cost": Decimal("0.00"),
    "status": ProductStatus.ACTIVE.value,
}


def normalize_filters(filters: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Keep allow-listed, non-empty filters with canonical value types."""
    normalized: Dict[str, Any] = {}
    for name in queries.LIST_FILTER_CLAUSES:
        value = (filters or {}).get(name)
        if value is None or value == "":
            continue

        if name == "min_stock":
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ValidationError("min_stock must be an integer", {"field": name})
            if not 0 <= value <= MAX_INTEGER:
                raise ValidationError("min_stock is out of range", {"field": name})
        elif name == "status":
            value = str(value)
            if value not in _STATUSES:
                raise ValidationError(f"Unknown status '{value}'", {"field": name})
        else:
            value = str(value)

        normalized[name] = value
    return normalized


def validate_product_data(data: Mapping[str, Any], creating: bool) -> Dict[str, Any]:
    """Validate and normalize the allow-listed fields present in ``data``.

    On create, ``name`` and ``sku`` are required and defaults fill the rest.
    Unknown fields are dropped.
    """
    values: Dict[str, Any] = {}

    for field, label in (("name", "name"), ("sku", "SKU")):
        if creating or field in data:
            value = data.get(field)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"Product {label} is required", {"field": field})
            values[field] = value.strip()

    if "category" in data:
        category = data["category"]
        if not isinstance(category, str) or not category.strip():
            raise ValidationError("Category must be a non-empty string", {"field": "category"})
        values["category"] = category.strip()

    if "description" in data:
        description = data["description"]
        if description is not None and not isinstance(description, str):
            raise ValidationError("Description must be a string", {"field": "description"})
        values["description"] = description or ""

    if "quantity" in data:
        quantity = data["quantity"]
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError("Quantity must be an integer", {"field": "quantity"})
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative", {"field": "quantity"})
        if quantity > MAX_INTEGER:
            raise ValidationError(f"Quantity cannot exceed {MAX_INTEGER}", {"field": "quantity"})
        values["quantity"] = quantity

    for field in ("price", "cost"):
        if field in data:
            values[field] = _validate_money(field, data[field])

    if "status" in data:
        status = data["status"]
        status = status.value if isinstance(status, ProductStatus) else status
        if status not in _STATUSES:
            raise ValidationError(f"Unknown status '{status}'", {"field": "status"})
        values["status"] = status

    if creating:
        return {**_CREATE_DEFAULTS, **values}
    return values


def _validate_money(field: str, value: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field.title()} must be a number", {"field": field})
    try:
        amount = to_money(value)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field.title()} must be a number", {"field": field})
    if not amount.is_finite():
        raise ValidationError(f"{field.title()} must be a number", {"field": field})
    if amount < 0:
        raise ValidationError(f"{field.title()} cannot be negative", {"field": field})
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field.title()} cannot exceed {MAX_AMOUNT}", {"field": field})
    return amount


def _parse_id(value: Any) -> Optional[int]:
    """Positive integer id from an int or a digit string; None otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    if not isinstance(value, int) or not 0 < value <= MAX_INTEGER:
        return None
    return value


def like_pattern(query: str) -> str:
    """Substring ILIKE pattern with the query's own wildcards escaped."""
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class ProductRepository:
    """Product reads and writes over PostgreSQL with a Redis cache-aside layer."""

    def __init__(self,
                 executor: QueryExecutor,
                 cache: RedisCache,
                 invalidation: Optional[InvalidationPolicy] = None):
        self.executor = executor
        self.cache = cache
        self.invalidation = invalidation or InvalidationPolicy(cache)
        self.logger = get_logger("inventory.products.repository")

    # Read path

    async def get_all(self, page: int = 1, limit: int = 50,
                      filters: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Filtered, paginated listing with pagination metadata."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive", {"page": page, "limit": limit})

        normalized = normalize_filters(filters)
        cache_key = list_key(page, limit, normalized)

        cached = await self._cached(cache_key, dict)
        if cached is not None:
            return cached

        where, params = queries.build_where(normalized)
        count_rows = await self.executor.read(queries.count_query(where), params)
        total = int(count_rows[0]["total"]) if count_rows else 0

        rows = await self.executor.read(
            queries.list_query(where),
            {**params, "limit": limit, "offset": (page - 1) * limit}
        )

        total_pages = math.ceil(total / limit)
        result = {
            "data": [self._product_payload(row) for row in rows],
            "pagination": Pagination(
                current_page=page,
                per_page=limit,
                total=total,
                total_pages=total_pages,
                has_next=page < total_pages,
                has_prev=page > 1
            ).model_dump()
        }

        await self.cache.set(cache_key, result, CacheTTL.SHORT)
        return result

    async def get_by_id(self, product_id: int) -> Optional[Dict[str, Any]]:
        """Single product, or None when absent. Absent results are not cached."""
        cache_key = product_key(product_id)

        cached = await self._cached(cache_key, dict)
        if cached is not None:
            return cached

        rows = await self.executor.read(queries.SELECT_BY_ID, {"id": product_id})
        if not rows:
            return None

        product = self._product_payload(rows[0])
        await self.cache.set(cache_key, product, CacheTTL.MEDIUM)
        return product

    async def search(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Full-text search with substring fallback, best matches first.

        ``%`` and ``_`` in the query match literally in the substring branch.
        """
        query = (query or "").strip()
        if not query:
            raise ValidationError("Search query is required", {"field": "q"})
        if limit < 1:
            raise ValidationError("limit must be positive", {"limit": limit})

        cache_key = search_key(query, limit)
        cached = await self._cached(cache_key, list)
        if cached is not None:
            return cached

        rows = await self.executor.read(
            queries.SEARCH_PRODUCTS,
            {"query": query, "like_query": like_pattern(query), "limit": limit}
        )
        results = [ProductSearchHit(**row).model_dump(mode="json") for row in rows]

        await self.cache.set(cache_key, results, CacheTTL.SHORT)
        return results

    async def get_low_stock(self, threshold: int = LOW_STOCK_MAX) -> List[Dict[str, Any]]:
        """Active products with quantity at or below ``threshold``."""
        if threshold < 0:
            raise ValidationError("threshold cannot be negative", {"threshold": threshold})

        cache_key = low_stock_key(threshold)
        cached = await self._cached(cache_key, list)
        if cached is not None:
            return cached

        rows = await self.executor.read(queries.LOW_STOCK, {"threshold": threshold})
        results = [LowStockItem(**row).model_dump(mode="json") for row in rows]

        await self.cache.set(cache_key, results, CacheTTL.LOW_STOCK)
        return results

    async def get_analytics(self) -> Dict[str, Any]:
        """Inventory overview plus per-category breakdown, cached as one payload."""
        cached = await self._cached(ANALYTICS_KEY, dict)
        if cached is not None:
            return cached

        overview_rows = await self.executor.read(
            queries.ANALYTICS_OVERVIEW, {"low_stock_max": LOW_STOCK_MAX}
        )
        category_rows = await self.executor.read(queries.ANALYTICS_CATEGORIES)

        analytics = InventoryAnalytics(
            overview=InventoryOverview(**overview_rows[0]) if overview_rows else InventoryOverview(),
            categories=[CategoryBreakdown(**row) for row in category_rows],
            generated_at=datetime.now(timezone.utc)
        ).model_dump(mode="json")

        await self.cache.set(ANALYTICS_KEY, analytics, CacheTTL.MEDIUM)
        return analytics

    # Write path

    async def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert a product and return it as stored."""
        values = validate_product_data(data, creating=True)

        try:
            product_id = await self.executor.insert(queries.INSERT_PRODUCT, values)
        except QueryError as e:
            self._raise_if_duplicate(e, values.get("sku"))
            raise

        self.logger.info("Product created", product_id=product_id, sku=values["sku"])
        await self.invalidation.invalidate()

        product = await self.get_by_id(product_id)
        if product is None:
            raise QueryError(f"Created product {product_id} could not be read back")
        return product

    async def update(self, product_id: int, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply allow-listed field changes. Returns None when the id does not exist."""
        values = validate_product_data(data, creating=False)
        statement, params = queries.build_update(product_id, values)
        if not statement:
            return await self.get_by_id(product_id)

        try:
            affected = await self.executor.write(statement, params)
        except QueryError as e:
            self._raise_if_duplicate(e, values.get("sku"))
            raise

        if affected == 0:
            return None

        self.logger.info("Product updated", product_id=product_id, fields=sorted(values))
        await self.invalidation.invalidate(product_id)
        return await self.get_by_id(product_id)

    async def delete(self, product_id: int) -> bool:
        """Soft delete. False when the id is absent or already deleted."""
        affected = await self.executor.write(queries.SOFT_DELETE, {"id": product_id})
        if affected == 0:
            return False

        self.logger.info("Product deleted", product_id=product_id)
        await self.invalidation.invalidate(product_id)
        return True

    async def bulk_update(self, items: Sequence[Any]) -> Dict[str, Any]:
        """Update several products in one transaction.

        Entries without an id, with invalid fields, with a duplicate sku or
        targeting a missing id are reported as errors while the rest commit.
        Invalidation runs once, after commit, for exactly the updated ids.
        Any other failure rolls the whole batch back and leaves the cache
        untouched.
        """
        updated_ids: List[int] = []
        errors: List[str] = []

        async with self.executor.transaction() as tx:
            for index, item in enumerate(items):
                if not isinstance(item, Mapping) or item.get("id") is None:
                    errors.append(f"Product at index {index}: ID is required")
                    continue

                product_id = _parse_id(item["id"])
                if product_id is None:
                    errors.append(f"Product at index {index}: ID must be an integer")
                    continue

                changes = {name: value for name, value in item.items() if name != "id"}
                try:
                    values = validate_product_data(changes, creating=False)
                except ValidationError as e:
                    errors.append(f"Product with ID {product_id}: {e.message}")
                    continue

                statement, params = queries.build_update(product_id, values)
                if not statement:
                    errors.append(f"Product with ID {product_id}: No updatable fields")
                    continue

                try:
                    # Savepoint so a duplicate sku does not abort the batch
                    async with tx.transaction() as item_tx:
                        affected = await item_tx.write(statement, params)
                except QueryError as e:
                    if e.sqlstate != UNIQUE_VIOLATION:
                        raise
                    errors.append(f"Product with ID {product_id}: Product SKU already exists")
                    continue

                if affected == 0:
                    errors.append(f"Product with ID {product_id}: Not found")
                    continue

                updated_ids.append(product_id)

        self.logger.info("Bulk update committed", updated=len(updated_ids), errors=len(errors))

        if updated_ids:
            await self.invalidation.invalidate(*updated_ids)

        updated_products = []
        for product_id in updated_ids:
            product = await self.get_by_id(product_id)
            if product is not None:
                updated_products.append(product)

        return {
            "updated_count": len(updated_ids),
            "error_count": len(errors),
            "updated_products": updated_products,
            "errors": errors
        }

    # Helpers

    async def _cached(self, cache_key: str, expected: type) -> Optional[Any]:
        """Cached payload of the expected shape, or None for a miss or failure."""
        cached = await self.cache.get(cache_key)
        if cached.hit and isinstance(cached.value, expected):
            return cached.value
        return None

    @staticmethod
    def _product_payload(row: Mapping[str, Any]) -> Dict[str, Any]:
        return Product(**row).model_dump(mode="json")

    def _raise_if_duplicate(self, error: QueryError, sku: Optional[str]):
        if error.sqlstate == UNIQUE_VIOLATION:
            self.logger.warning("Duplicate product SKU", sku=sku)
            raise DuplicateKeyError(details={"sku": sku}) from error
