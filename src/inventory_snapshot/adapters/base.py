"""Store client protocol definition.

Defines the ``StoreClient`` Protocol that every store adapter must
implement.  All methods are ``async def``.

``transaction()`` groups operations: it yields a client whose calls all
run inside one store transaction.  Leaving the block normally commits;
leaving it with any exception (including cancellation) rolls back.

Usage:
    from inventory_snapshot.adapters.base import StoreClient

    async def move_all(client: StoreClient) -> None:
        async with client.transaction() as tx:
            await tx.delete("Item", {})
            await tx.insert("Item", {"id": "i1", "name": "Drill"})
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class StoreClient(Protocol):
    """Store client interface that all adapters must implement."""

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: ``"*"`` or comma-separated column names.
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional column name to sort by.

        Returns:
            List of dicts, one per row.  Empty list if no matches.
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row into table and return the created row.

        Raises:
            Exception: If duplicate key or constraint violation.
        """
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update rows in table and return the first updated row.

        Raises:
            ValueError: If no rows match filters.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        """Delete rows from table and return the number removed.

        Empty ``filters`` delete every row of the table.
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager["StoreClient"]:
        """Open a transaction scope yielding a client bound to it."""
        ...

    async def close(self) -> None:
        """Close the store connection and clean up resources."""
        ...
