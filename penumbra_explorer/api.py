"""The root of the query API, combining the block, transaction and raw lookups."""

from __future__ import annotations

from typing import Optional

from .context import Database
from .models import Block, DbBlock, DbRawTransaction, Transaction
from .queries import (
    SearchResult,
    resolve_block,
    resolve_blocks,
    resolve_blocks_collection,
    resolve_search,
    resolve_stats,
    resolve_transaction,
    resolve_transactions,
    resolve_transactions_collection,
)
from .types import (
    BlockCollection,
    BlockFilter,
    BlocksSelector,
    CollectionLimit,
    Stats,
    TransactionCollection,
    TransactionFilter,
    TransactionsSelector,
)


class QueryRoot:
    """Every query the API answers, bound to one database."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def block(self, height: int) -> Optional[Block]:
        """Get a block by height."""
        return await resolve_block(self.db, height)

    async def blocks(self, selector: BlocksSelector) -> list[Block]:
        """Get blocks by selector."""
        return await resolve_blocks(self.db, selector)

    async def blocks_collection(
        self, limit: CollectionLimit, filter: Optional[BlockFilter] = None
    ) -> BlockCollection:
        """Get blocks with pagination and optional filtering."""
        return await resolve_blocks_collection(self.db, limit, filter)

    async def transaction(self, hash: str) -> Optional[Transaction]:
        """Get a transaction by hash."""
        return await resolve_transaction(self.db, hash)

    async def transactions(self, selector: TransactionsSelector) -> list[Transaction]:
        """Get transactions by selector."""
        return await resolve_transactions(self.db, selector)

    async def transactions_collection(
        self, limit: CollectionLimit, filter: Optional[TransactionFilter] = None
    ) -> TransactionCollection:
        """Get transactions with pagination and optional filtering."""
        return await resolve_transactions_collection(self.db, limit, filter)

    async def search(self, slug: str) -> Optional[SearchResult]:
        """Search for a block by height or a transaction by hash."""
        return await resolve_search(self.db, slug)

    async def stats(self) -> Stats:
        """Get chain statistics."""
        return await resolve_stats(self.db)

    async def db_block(self, height: int) -> Optional[DbBlock]:
        """Get a block row by height."""
        return await DbBlock.get_by_height(self.db, height)

    async def db_blocks(
        self, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> list[DbBlock]:
        """Get a page of block rows."""
        return await DbBlock.get_all(self.db, limit, offset)

    async def db_latest_block(self) -> Optional[DbBlock]:
        """Get the latest block row."""
        return await DbBlock.get_latest(self.db)

    async def db_raw_transaction(self, tx_hash_hex: str) -> Optional[DbRawTransaction]:
        """Get a transaction row by hex hash."""
        return await DbRawTransaction.get_by_hash(self.db, tx_hash_hex)

    async def db_raw_transactions(
        self, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> list[DbRawTransaction]:
        """Get a page of transaction rows."""
        return await DbRawTransaction.get_all(self.db, limit, offset)