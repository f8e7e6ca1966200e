"""
Relational store access: connection managers, query executor, schema.
"""

from .connection import ConnectionManager, PostgresConnectionManager, RedisConnectionManager
from .executor import QueryExecutor, bind_named

__all__ = [
    "ConnectionManager",
    "PostgresConnectionManager",
    "RedisConnectionManager",
    "QueryExecutor",
    "bind_named",
]
