"""
Integration tests against a real PostgreSQL database.

Set INVENTORY_TEST_POSTGRES_DSN to a disposable database to run them; the
products table is truncated before every test.
"""

import os
from contextlib import asynccontextmanager
from decimal import Decimal

import pytest

from inventory_shared.errors import DuplicateKeyError
from service_inventory.app.cache.redis_cache import RedisCache
from service_inventory.app.persistence.connection import PostgresConnectionManager
from service_inventory.app.persistence.executor import QueryExecutor
from service_inventory.app.persistence.schema import ensure_schema
from service_inventory.app.products import queries
from service_inventory.app.products.repository import ProductRepository

from conftest import FakeRedis, StubConnectionManager

POSTGRES_DSN = os.getenv("INVENTORY_TEST_POSTGRES_DSN")

pytestmark = pytest.mark.skipif(not POSTGRES_DSN, reason="INVENTORY_TEST_POSTGRES_DSN not set")

CATALOGUE = [
    ("Laptop Dell XPS 13", "DELL-XPS13-001", "electronics", "High-performance ultrabook with Intel i7 processor", 25, "1299.99", "899.99"),
    ("iPhone 15 Pro", "APPLE-IP15P-128", "electronics", "Latest iPhone with A17 Pro chip and titanium design", 50, "999.99", "699.99"),
    ("Samsung Galaxy S24", "SAMSUNG-GS24-256", "electronics", "Android flagship with AI features", 30, "899.99", "599.99"),
    ("MacBook Pro 14", "APPLE-MBP14-M3", "electronics", "Professional laptop with M3 chip", 15, "1999.99", "1399.99"),
    ("Sony WH-1000XM5", "SONY-WH1000XM5", "audio", "Premium noise-cancelling headphones", 75, "399.99", "199.99"),
    ("iPad Air", "APPLE-IPAD-AIR-64", "tablets", "Versatile tablet for work and creativity", 40, "599.99", "399.99"),
    ("Gaming Mouse Logitech", "LOGI-GMX-RGB", "accessories", "High-precision gaming mouse with RGB lighting", 10, "79.99", "39.99"),
    ("USB-C Hub", "GENERIC-USBC-HUB", "accessories", "Multi-port USB-C hub for connectivity", 10, "49.99", "19.99"),
    ("Wireless Charger", "GENERIC-QI-CHARGE", "accessories", "Fast wireless charging pad", 3, "29.99", "12.99"),
    ("Bluetooth Speaker", "JBL-FLIP6-BLU", "audio", "Portable waterproof speaker", 60, "129.99", "69.99"),
]


@asynccontextmanager
async def seeded_repository():
    manager = PostgresConnectionManager(POSTGRES_DSN, min_size=1, max_size=2)
    executor = QueryExecutor(manager)
    repository = ProductRepository(executor, RedisCache(StubConnectionManager(FakeRedis())))
    try:
        await ensure_schema(executor)
        await executor.write("TRUNCATE products RESTART IDENTITY")
        for name, sku, category, description, quantity, price, cost in CATALOGUE:
            await executor.insert(queries.INSERT_PRODUCT, {
                "name": name,
                "sku": sku,
                "category": category,
                "description": description,
                "quantity": quantity,
                "price": Decimal(price),
                "cost": Decimal(cost),
                "status": "active",
            })
        yield repository
    finally:
        await manager.close()


@pytest.mark.asyncio
async def test_low_stock_ordering():
    async with seeded_repository() as repository:
        items = await repository.get_low_stock(10)

    assert [item["name"] for item in items] == ["Wireless Charger", "Gaming Mouse Logitech", "USB-C Hub"]


@pytest.mark.asyncio
async def test_pagination():
    async with seeded_repository() as repository:
        last = await repository.get_all(page=3, limit=4)

    assert last["pagination"]["total"] == 10
    assert last["pagination"]["total_pages"] == 3
    assert last["pagination"]["has_next"] is False
    assert len(last["data"]) == 2


@pytest.mark.asyncio
async def test_search_full_text_and_substring():
    async with seeded_repository() as repository:
        by_text = await repository.search("laptop")
        by_sku = await repository.search("USBC")
        by_wildcard = await repository.search("%")

    assert {hit["sku"] for hit in by_text} >= {"DELL-XPS13-001", "APPLE-MBP14-M3"}
    assert [hit["sku"] for hit in by_sku] == ["GENERIC-USBC-HUB"]
    assert by_wildcard == []


@pytest.mark.asyncio
async def test_deleted_products_are_hidden():
    async with seeded_repository() as repository:
        assert await repository.delete(1) is True
        assert await repository.delete(1) is False
        hits = await repository.search("Dell")
        listing = await repository.get_all()

    assert hits == []
    assert listing["pagination"]["total"] == 9


@pytest.mark.asyncio
async def test_create_and_duplicate_sku():
    async with seeded_repository() as repository:
        created = await repository.create({"name": "Desk Lamp", "sku": "LAMP-001", "quantity": 51, "price": 19.5})
        with pytest.raises(DuplicateKeyError):
            await repository.create({"name": "Desk Lamp", "sku": "LAMP-001"})
        listing = await repository.get_all()

    assert created["stock_level"] == "high"
    assert created["price"] == "19.50"
    assert listing["pagination"]["total"] == 11


@pytest.mark.asyncio
async def test_bulk_update_with_missing_id():
    async with seeded_repository() as repository:
        result = await repository.bulk_update([
            {"id": 1, "quantity": 2},
            {"id": 2, "quantity": 3},
            {"id": 999, "quantity": 4},
        ])
        low_stock = await repository.get_low_stock(10)

    assert result["updated_count"] == 2
    assert result["error_count"] == 1
    assert {item["id"] for item in low_stock} >= {1, 2}


@pytest.mark.asyncio
async def test_analytics_overview():
    async with seeded_repository() as repository:
        analytics = await repository.get_analytics()

    assert analytics["overview"]["total_products"] == 10
    assert analytics["overview"]["low_stock_count"] == 3
    assert analytics["categories"][0]["category"] == "electronics"
