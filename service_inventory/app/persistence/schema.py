"""
Products table bootstrap.
"""

from inventory_shared.logging import get_logger
from .executor import QueryExecutor

SEARCH_DOCUMENT = "to_tsvector('english', name || ' ' || coalesce(description, ''))"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS products (
        id SERIAL PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        sku VARCHAR(100) NOT NULL UNIQUE,
        category VARCHAR(100) NOT NULL DEFAULT 'general',
        description TEXT NOT NULL DEFAULT '',
        quantity INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),
        price NUMERIC(10, 2) NOT NULL DEFAULT 0.00 CHECK (price >= 0),
        cost NUMERIC(10, 2) NOT NULL DEFAULT 0.00 CHECK (cost >= 0),
        status VARCHAR(16) NOT NULL DEFAULT 'active'
            CHECK (status IN ('active', 'inactive', 'deleted')),
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_products_category ON products(category)",
    "CREATE INDEX IF NOT EXISTS idx_products_status ON products(status)",
    "CREATE INDEX IF NOT EXISTS idx_products_quantity ON products(quantity)",
    "CREATE INDEX IF NOT EXISTS idx_products_updated ON products(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_products_category_status ON products(category, status)",
    f"CREATE INDEX IF NOT EXISTS idx_products_search ON products USING GIN ({SEARCH_DOCUMENT})",
)


async def ensure_schema(executor: QueryExecutor):
    """Create the products table and its indexes if missing."""
    logger = get_logger("inventory.persistence.schema")
    async with executor.transaction() as tx:
        for statement in SCHEMA_STATEMENTS:
            await tx.write(statement)
    logger.info("Products schema ensured", statements=len(SCHEMA_STATEMENTS))
