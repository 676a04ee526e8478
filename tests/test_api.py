from datetime import datetime, timezone

import pytest

from penumbra_explorer.api import QueryRoot
from penumbra_explorer.context import Database
from penumbra_explorer.models import Block
from penumbra_explorer.types import (
    BlocksSelector,
    CollectionLimit,
    LatestBlock,
    TransactionFilter,
)

TIMESTAMP = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class Row(dict):
    def __getitem__(self, key):
        if isinstance(key, int):
            return list(self.values())[key]
        return super().__getitem__(key)


class FakePool:
    def __init__(self, row=None, rows=()):
        self.row = row
        self.rows = list(rows)
        self.calls = []

    async def fetchrow(self, query, *args):
        self.calls.append((query, args))
        return self.row

    async def fetch(self, query, *args):
        self.calls.append((query, args))
        return self.rows

    async def execute(self, query, *args):
        self.calls.append((query, args))
        return "OK"


def block_row(height):
    return Row(height=height, timestamp=TIMESTAMP, raw_json=None)


def root_for(pool):
    return QueryRoot(Database(pool))


@pytest.mark.asyncio
async def test_block_found():
    pool = FakePool(row=block_row(7))
    block = await root_for(pool).block(7)
    assert isinstance(block, Block)
    assert block.height == 7
    assert block.created_at.value == TIMESTAMP
    assert pool.calls[0][1] == (7,)


@pytest.mark.asyncio
async def test_block_missing():
    assert await root_for(FakePool(row=None)).block(7) is None


@pytest.mark.asyncio
async def test_blocks_latest_passes_limit():
    pool = FakePool(rows=[block_row(9), block_row(8)])
    blocks = await root_for(pool).blocks(BlocksSelector(latest=LatestBlock(limit=3)))
    assert [b.height for b in blocks] == [9, 8]
    assert pool.calls[0][1] == (3,)


@pytest.mark.asyncio
async def test_blocks_collection_counts_and_pages():
    pool = FakePool(row=Row(count=42), rows=[block_row(9)])
    collection = await root_for(pool).blocks_collection(CollectionLimit(), None)
    assert collection.total == 42
    assert [b.height for b in collection.items] == [9]
    assert "LIMIT 10 OFFSET 0" in pool.calls[-1][0]


@pytest.mark.asyncio
async def test_stats_counts_transactions():
    stats = await root_for(FakePool(row=Row(count=42))).stats()
    assert stats.total_transactions_count == 42


@pytest.mark.asyncio
async def test_search_by_height_returns_block():
    pool = FakePool(row=block_row(7))
    result = await root_for(pool).search("7")
    assert isinstance(result, Block)
    assert result.height == 7


@pytest.mark.asyncio
async def test_search_non_hex_slug_finds_nothing():
    pool = FakePool(row=None)
    assert await root_for(pool).search("not-a-hash") is None


@pytest.mark.asyncio
async def test_transactions_collection_with_bad_hash_is_empty():
    pool = FakePool()
    collection = await root_for(pool).transactions_collection(
        CollectionLimit(), TransactionFilter(hash="zz")
    )
    assert collection.total == 0
    assert collection.items == []
    assert pool.calls == []


@pytest.mark.asyncio
async def test_db_raw_transaction_with_bad_hex_skips_query():
    pool = FakePool()
    assert await root_for(pool).db_raw_transaction("xyz") is None
    assert pool.calls == []


@pytest.mark.asyncio
async def test_db_blocks_default_paging():
    pool = FakePool(rows=[])
    assert await root_for(pool).db_blocks() == []
    assert pool.calls[0][1] == (10, 0)


@pytest.mark.asyncio
async def test_db_latest_block_reads_row():
    row = Row(
        height=11,
        root=bytes([1, 2, 3]),
        timestamp=TIMESTAMP,
        num_transactions=4,
        total_fees="0",
        validator_identity_key=None,
        previous_block_hash=None,
        block_hash=None,
        chain_id="penumbra-testnet",
    )
    block = await root_for(FakePool(row=row)).db_latest_block()
    assert block.height == 11
    assert block.root_hex == "010203"
    assert block.block_hash_hex is None
    assert block.chain_id == "penumbra-testnet"