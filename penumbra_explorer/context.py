"""Shared resources handed to the query resolvers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class Database:
    """Thin async facade over a PostgreSQL pool.

    The wrapped pool must offer ``execute``, ``fetch`` and ``fetchrow``
    coroutines taking a query with ``$n`` placeholders followed by its
    arguments. Rows are returned as the pool returns them: mappings that
    also support positional access.
    """

    def __init__(self, pool: Any) -> None:
        self.pool = pool

    async def execute(self, query: str, *args: Any) -> Any:
        """Run a statement and return the pool's status result."""
        return await self.pool.execute(query, *args)

    async def fetch_one(self, query: str, *args: Any) -> Any:
        """Return the first row, raising LookupError if there is none."""
        row = await self.pool.fetchrow(query, *args)
        if row is None:
            raise LookupError(
                "no rows returned by a query that expected to return at least one row"
            )
        return row

    async def fetch_optional(self, query: str, *args: Any) -> Any | None:
        """Return the first row, or None if there is none."""
        return await self.pool.fetchrow(query, *args)

    async def fetch_all(self, query: str, *args: Any) -> list[Any]:
        """Return every row the query produces."""
        return list(await self.pool.fetch(query, *args))


@dataclass
class ApiContext:
    """Context for resolvers: the database they read from."""

    db: Database