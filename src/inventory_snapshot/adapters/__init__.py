"""Store adapters package.

Provides the ``StoreClient`` Protocol, the SQLAlchemy-backed
``AsyncSQLAdapter`` (PostgreSQL via asyncpg, SQLite via aiosqlite) and
the dict-backed ``InMemoryAdapter``.

Usage:
    from inventory_snapshot.adapters import StoreClient, AsyncSQLAdapter
"""

from inventory_snapshot.adapters.base import StoreClient
from inventory_snapshot.adapters.memory import InMemoryAdapter
from inventory_snapshot.adapters.sql import AsyncSQLAdapter

__all__ = [
    "StoreClient",
    "AsyncSQLAdapter",
    "InMemoryAdapter",
]
