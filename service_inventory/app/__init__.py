"""
Inventory Service package for the Inventory Access Service.

This package serves the product catalogue: listing, search, low-stock
reporting, analytics and product writes. It provides:

- app.main: API surface for products, analytics and health.
- app.persistence: Connection managers, query executor and schema for PostgreSQL.
- app.cache: Redis cache store adapter, key derivation and invalidation policy.
- app.products: Product models, SQL and the cache-aside repository.

Guidelines:
- PostgreSQL is the source of truth; Redis only ever holds derived copies.
- Cache failures degrade to relational reads and never fail a request.
- Every write invalidates after commit and before the repopulating read.
"""
