"""
Product data models for the Inventory Service.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

CENT = Decimal("0.01")
LOW_STOCK_MAX = 10
MEDIUM_STOCK_MAX = 50


class ProductStatus(str, Enum):
    """Product lifecycle states."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    DELETED = "deleted"


class StockLevel(str, Enum):
    """Derived stock buckets."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def stock_level_for(quantity: int) -> StockLevel:
    if quantity <= LOW_STOCK_MAX:
        return StockLevel.LOW
    if quantity <= MEDIUM_STOCK_MAX:
        return StockLevel.MEDIUM
    return StockLevel.HIGH


def to_money(value: Any) -> Decimal:
    """Decimal with two fractional digits."""
    return Decimal(str(value)).quantize(CENT)


class Product(BaseModel):
    """Product record as served to callers and cached."""
    id: int
    name: str
    sku: str
    category: str = "general"
    description: str = ""
    quantity: int = 0
    price: Decimal = Decimal("0.00")
    cost: Decimal = Decimal("0.00")
    status: ProductStatus = ProductStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("price", "cost", mode="before")
    @classmethod
    def _quantize(cls, value: Any) -> Decimal:
        return to_money(value if value is not None else 0)

    @field_validator("description", mode="before")
    @classmethod
    def _empty_description(cls, value: Any) -> str:
        return value or ""

    @computed_field
    @property
    def stock_level(self) -> StockLevel:
        return stock_level_for(self.quantity)


class ProductSearchHit(BaseModel):
    """Search result row with its relevance score."""
    id: int
    name: str
    sku: str
    category: str
    description: str = ""
    quantity: int
    price: Decimal
    status: ProductStatus
    relevance: float = 0.0

    @field_validator("price", mode="before")
    @classmethod
    def _quantize(cls, value: Any) -> Decimal:
        return to_money(value if value is not None else 0)

    @field_validator("description", mode="before")
    @classmethod
    def _empty_description(cls, value: Any) -> str:
        return value or ""


class LowStockItem(BaseModel):
    """Active product at or below the low-stock threshold."""
    id: int
    name: str
    sku: str
    quantity: int
    category: str


class InventoryOverview(BaseModel):
    """Aggregate figures over non-deleted products."""
    total_products: int = 0
    total_stock: int = 0
    total_value: Decimal = Decimal("0.00")
    avg_stock_per_product: float = 0.0
    low_stock_count: int = 0
    active_products: int = 0

    @field_validator("total_value", mode="before")
    @classmethod
    def _quantize(cls, value: Any) -> Decimal:
        return to_money(value if value is not None else 0)

    @field_validator("total_stock", "avg_stock_per_product", mode="before")
    @classmethod
    def _zero_when_null(cls, value: Any) -> Any:
        return 0 if value is None else value


class CategoryBreakdown(BaseModel):
    """Per-category aggregate."""
    category: str
    product_count: int
    total_stock: int
    category_value: Decimal

    @field_validator("category_value", mode="before")
    @classmethod
    def _quantize(cls, value: Any) -> Decimal:
        return to_money(value if value is not None else 0)


class InventoryAnalytics(BaseModel):
    """Cached analytics payload."""
    overview: InventoryOverview
    categories: List[CategoryBreakdown]
    generated_at: datetime


class Pagination(BaseModel):
    """Pagination metadata for list responses."""
    current_page: int
    per_page: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class ProductCreateRequest(BaseModel):
    """Create request body. Field constraints are enforced by the repository."""
    name: Optional[str] = None
    sku: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[int] = None
    price: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    status: Optional[str] = None


class ProductUpdateRequest(ProductCreateRequest):
    """Partial update body; only fields present in the request are applied."""


class BulkUpdateRequest(BaseModel):
    """Bulk update body: each entry carries an ``id`` plus the fields to change."""
    products: List[Dict[str, Any]] = Field(..., description="Products to update")
