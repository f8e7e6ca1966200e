"""
SQL for the products table.

Dynamic fragments are only ever taken from the fixed allow-lists below;
caller-supplied names select fragments but never become SQL text.
"""

from typing import Any, Dict, List, Mapping, Tuple

from ..persistence.schema import SEARCH_DOCUMENT

PRODUCT_COLUMNS = (
    "id, name, sku, category, description, quantity, price, cost, status, created_at, updated_at"
)

# filter name -> clause
LIST_FILTER_CLAUSES: Dict[str, str] = {
    "category": "category = :category",
    "status": "status = :status",
    "min_stock": "quantity >= :min_stock",
}

NOT_DELETED = "status <> 'deleted'"

# field name -> SET fragment
UPDATE_FIELD_CLAUSES: Dict[str, str] = {
    "name": "name = :name",
    "sku": "sku = :sku",
    "category": "category = :category",
    "description": "description = :description",
    "quantity": "quantity = :quantity",
    "price": "price = :price",
    "cost": "cost = :cost",
    "status": "status = :status",
}

SELECT_BY_ID = f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id = :id"

INSERT_PRODUCT = """
    INSERT INTO products (name, sku, category, description, quantity, price, cost, status)
    VALUES (:name, :sku, :category, :description, :quantity, :price, :cost, :status)
    RETURNING id
"""

SOFT_DELETE = """
    UPDATE products
    SET status = 'deleted', updated_at = NOW()
    WHERE id = :id AND status <> 'deleted'
"""

# Deleted rows are excluded from every match branch
SEARCH_PRODUCTS = f"""
    SELECT
        id, name, sku, category, description, quantity, price, status,
        ts_rank({SEARCH_DOCUMENT}, plainto_tsquery('english', :query)) AS relevance
    FROM products
    WHERE status <> 'deleted'
      AND (
          {SEARCH_DOCUMENT} @@ plainto_tsquery('english', :query)
          OR name ILIKE :like_query
          OR sku ILIKE :like_query
      )
    ORDER BY relevance DESC, name ASC
    LIMIT :limit
"""

LOW_STOCK = """
    SELECT id, name, sku, quantity, category
    FROM products
    WHERE quantity <= :threshold AND status = 'active'
    ORDER BY quantity ASC, name ASC
"""

ANALYTICS_OVERVIEW = """
    SELECT
        COUNT(*) AS total_products,
        COALESCE(SUM(quantity), 0) AS total_stock,
        COALESCE(SUM(quantity * cost), 0) AS total_value,
        COALESCE(AVG(quantity), 0) AS avg_stock_per_product,
        COUNT(*) FILTER (WHERE quantity <= :low_stock_max) AS low_stock_count,
        COUNT(*) FILTER (WHERE status = 'active') AS active_products
    FROM products
    WHERE status <> 'deleted'
"""

ANALYTICS_CATEGORIES = """
    SELECT
        category,
        COUNT(*) AS product_count,
        COALESCE(SUM(quantity), 0) AS total_stock,
        COALESCE(SUM(quantity * cost), 0) AS category_value
    FROM products
    WHERE status <> 'deleted'
    GROUP BY category
    ORDER BY category_value DESC, category ASC
"""


def build_where(filters: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """WHERE clause and params for normalized list filters.

    Without an explicit status filter, soft-deleted rows are excluded.
    """
    conditions: List[str] = []
    params: Dict[str, Any] = {}

    for name, clause in LIST_FILTER_CLAUSES.items():
        if name in filters:
            conditions.append(clause)
            params[name] = filters[name]

    if "status" not in filters:
        conditions.append(NOT_DELETED)

    return "WHERE " + " AND ".join(conditions), params


def count_query(where: str) -> str:
    return f"SELECT COUNT(*) AS total FROM products {where}"


def list_query(where: str) -> str:
    return f"""
        SELECT {PRODUCT_COLUMNS}
        FROM products
        {where}
        ORDER BY updated_at DESC, id DESC
        LIMIT :limit OFFSET :offset
    """


def build_update(product_id: int, changes: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """UPDATE statement for the allow-listed fields present in ``changes``.

    Returns an empty statement when no allow-listed field is present.
    """
    assignments: List[str] = []
    params: Dict[str, Any] = {"id": product_id}

    for name, clause in UPDATE_FIELD_CLAUSES.items():
        if name in changes:
            assignments.append(clause)
            params[name] = changes[name]

    if not assignments:
        return "", params

    assignments.append("updated_at = NOW()")
    return f"UPDATE products SET {', '.join(assignments)} WHERE id = :id", params
