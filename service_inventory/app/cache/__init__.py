"""
Cache package for the Inventory Service.

Provides the Redis-backed cache store adapter, cache key derivation and the
invalidation policy applied after product writes.
"""
