"""In-memory store adapter.

``InMemoryAdapter`` keeps every table as a list of row dicts.  A
transaction works on a deep copy of all tables; an exception inside
the block puts the original tables back, leaving the store untouched.

Nested transactions join the outer one.

Usage:
    from inventory_snapshot.adapters.memory import InMemoryAdapter

    store = InMemoryAdapter({"Location": [{"id": "L1", "name": "Shelf A"}]})
    async with store.transaction() as tx:
        await tx.insert("Item", {"id": "I1", "name": "Drill", "locationId": "L1"})
"""

import copy
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator


class InMemoryAdapter:
    """Dict-backed implementation of the ``StoreClient`` protocol.

    Args:
        tables: Optional initial contents, table name -> list of rows.
        unique: Optional unique columns per table, e.g. ``{"Brand": ["name"]}``.
            The primary key column ``id`` is always unique.
    """

    def __init__(
        self,
        tables: dict[str, list[dict]] | None = None,
        unique: dict[str, list[str]] | None = None,
    ) -> None:
        self._tables: dict[str, list[dict]] = copy.deepcopy(tables or {})
        self._unique = unique or {}
        self._in_transaction = False

    @property
    def tables(self) -> dict[str, list[dict]]:
        """Live table contents (read access for callers and tests)."""
        return self._tables

    # ------------------------------------------------------------------
    # CRUD Methods
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        rows = [r for r in self._tables.get(table, []) if _matches(r, filters)]
        if order_by:
            rows = sorted(rows, key=lambda r: (r.get(order_by) is None, r.get(order_by)))
        if columns.strip() == "*":
            return [dict(r) for r in rows]
        names = [c.strip() for c in columns.split(",")]
        return [{n: r.get(n) for n in names} for r in rows]

    async def insert(self, table: str, data: dict) -> dict:
        rows = self._tables.setdefault(table, [])
        for column in ["id", *self._unique.get(table, [])]:
            if column in data and any(r.get(column) == data[column] for r in rows):
                raise ValueError(
                    f"duplicate key value violates unique constraint {table}.{column}"
                )
        row = dict(data)
        rows.append(row)
        return dict(row)

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        matched = [r for r in self._tables.get(table, []) if _matches(r, filters)]
        if not matched:
            raise ValueError(f"No rows matched filters: {filters}")
        for row in matched:
            row.update(data)
        return dict(matched[0])

    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        rows = self._tables.get(table, [])
        keep = [r for r in rows if not _matches(r, filters)]
        self._tables[table] = keep
        return len(rows) - len(keep)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["InMemoryAdapter"]:
        """Copy-on-begin transaction; the copy replaces the tables on commit."""
        if self._in_transaction:
            yield self
            return

        saved = self._tables
        self._tables = copy.deepcopy(saved)
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._tables = saved
            raise
        finally:
            self._in_transaction = False

    async def close(self) -> None:
        """Nothing to release."""


def _matches(row: dict, filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(row.get(k) == v for k, v in filters.items())
