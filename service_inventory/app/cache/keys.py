"""
Cache key derivation for product queries.

Keys are deterministic in the query shape: filter sets are normalized and
serialized with sorted keys before hashing, so ``{"a": 1, "b": 2}`` and
``{"b": 2, "a": 1}`` share a key while any differing value does not.
"""

import hashlib
import json
from typing import Any, Mapping

LIST_PREFIX = "list:"
SEARCH_PREFIX = "search:"
PRODUCT_PREFIX = "product:"
LOW_STOCK_PREFIX = "low_stock:"
ANALYTICS_PREFIX = "analytics:"

ANALYTICS_KEY = f"{ANALYTICS_PREFIX}inventory_overview"


def _digest(value: Any) -> str:
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(encoded.encode("utf-8")).hexdigest()


def list_key(page: int, limit: int, filters: Mapping[str, Any]) -> str:
    return f"{LIST_PREFIX}page_{page}_limit_{limit}_{_digest(dict(filters))}"


def product_key(product_id: int) -> str:
    return f"{PRODUCT_PREFIX}{product_id}"


def search_key(query: str, limit: int) -> str:
    # List encoding keeps ("ab", 10) and ("ab1", 0) apart
    return f"{SEARCH_PREFIX}{_digest([query, limit])}"


def low_stock_key(threshold: int) -> str:
    return f"{LOW_STOCK_PREFIX}{threshold}"
