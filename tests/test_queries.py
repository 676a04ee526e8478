from datetime import datetime, timezone

import pytest

from penumbra_explorer.context import Database
from penumbra_explorer.models import Block, Transaction
from penumbra_explorer.queries import (
    build_blocks_query,
    build_transactions_query,
    resolve_block,
    resolve_blocks,
    resolve_blocks_collection,
    resolve_search,
    resolve_stats,
    resolve_transaction,
    resolve_transactions,
    resolve_transactions_collection,
    transaction_from_row,
)
from penumbra_explorer.types import (
    BlockFilter,
    BlockHeightRange,
    BlocksSelector,
    CollectionLimit,
    LatestBlock,
    LatestTransactions,
    RangeDirection,
    TransactionFilter,
    TransactionRange,
    TransactionsSelector,
)

TS = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class Row(dict):
    def __getitem__(self, key):
        if isinstance(key, int):
            return list(self.values())[key]
        return super().__getitem__(key)


class FakePool:
    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    async def fetch(self, query, *args):
        self.calls.append((query, args))
        return self.responder(query, args)

    async def fetchrow(self, query, *args):
        self.calls.append((query, args))
        rows = self.responder(query, args)
        return rows[0] if rows else None

    async def execute(self, query, *args):
        self.calls.append((query, args))
        return "OK"


def block_row(height, raw_json=None):
    return Row(height=height, timestamp=TS, raw_json=raw_json)


def tx_row(tx_hash, index="0", block_height=7, raw_json=True):
    document = {"index": index, "events": [{"type": "tx"}]} if raw_json else None
    return Row(
        tx_hash=tx_hash,
        block_height=block_height,
        timestamp=TS,
        fee_amount_str="0",
        chain_id=None,
        raw_data="AQID",
        raw_json=document,
        block_timestamp=TS,
    )


def make_db(responder):
    pool = FakePool(responder)
    return Database(pool), pool


def test_build_blocks_query_variants():
    query, count = build_blocks_query(
        BlocksSelector(range=BlockHeightRange(from_=1, to=5))
    )
    assert count == 2
    assert query.endswith(" WHERE height BETWEEN $1 AND $2 ORDER BY height DESC")

    query, count = build_blocks_query(BlocksSelector(latest=LatestBlock(limit=3)))
    assert count == 1
    assert query.endswith(" ORDER BY height DESC LIMIT $1")

    query, count = build_blocks_query(BlocksSelector())
    assert count == 0
    assert query.endswith(" ORDER BY height DESC LIMIT 10")


def test_build_transactions_query_variants():
    nxt = TransactionsSelector(
        range=TransactionRange(from_tx_hash="AA", direction=RangeDirection.NEXT, limit=5)
    )
    query, count = build_transactions_query(nxt, "BASE")
    assert count == 2
    assert query.startswith("BASE WHERE (t.timestamp < ")
    assert query.endswith(" ORDER BY t.timestamp DESC, t.tx_hash ASC LIMIT $2")
    assert "t.tx_hash > $1" in query

    prev = TransactionsSelector(
        range=TransactionRange(
            from_tx_hash="AA", direction=RangeDirection.PREVIOUS, limit=5
        )
    )
    query, count = build_transactions_query(prev, "BASE")
    assert count == 2
    assert query.endswith(" ORDER BY t.timestamp ASC, t.tx_hash DESC LIMIT $2")
    assert "t.tx_hash < $1" in query

    query, count = build_transactions_query(
        TransactionsSelector(latest=LatestTransactions(limit=2)), "BASE"
    )
    assert (query, count) == ("BASE ORDER BY t.timestamp DESC, t.tx_hash ASC LIMIT $1", 1)

    query, count = build_transactions_query(TransactionsSelector(), "BASE")
    assert (query, count) == ("BASE ORDER BY t.timestamp DESC, t.tx_hash ASC LIMIT 10", 0)


@pytest.mark.asyncio
async def test_resolve_block_found_and_missing():
    document = {"block": {"events": [{"type": "tx"}]}}
    db, pool = make_db(lambda q, a: [block_row(a[0], document)] if a[0] == 5 else [])

    block = await resolve_block(db, 5)
    assert block.height == 5
    assert block.raw_json == document
    assert block.created_at.value == TS
    assert pool.calls[0][1] == (5,)

    assert await resolve_block(db, 6) is None


@pytest.mark.asyncio
async def test_resolve_block_height_out_of_range_becomes_zero():
    db, _ = make_db(lambda q, a: [block_row(2**40)])
    block = await resolve_block(db, 1)
    assert block.height == 0


@pytest.mark.asyncio
async def test_resolve_blocks_binds_selector():
    db, pool = make_db(lambda q, a: [block_row(5), block_row(4)])
    blocks = await resolve_blocks(
        db, BlocksSelector(range=BlockHeightRange(from_=4, to=5))
    )
    assert [b.height for b in blocks] == [5, 4]
    assert pool.calls[0][1] == (4, 5)

    await resolve_blocks(db, BlocksSelector(latest=LatestBlock(limit=2)))
    assert pool.calls[1][1] == (2,)

    await resolve_blocks(db, BlocksSelector())
    assert pool.calls[2][1] == ()


@pytest.mark.asyncio
async def test_resolve_blocks_collection_defaults_and_filter():
    def responder(query, args):
        if "COUNT(*)" in query:
            return [Row(count=2)]
        return [block_row(2), block_row(1)]

    db, pool = make_db(responder)
    collection = await resolve_blocks_collection(db, CollectionLimit())
    assert collection.total == 2
    assert [b.height for b in collection.items] == [2, 1]
    assert pool.calls[1][0].endswith(" ORDER BY height DESC LIMIT 10 OFFSET 0")

    await resolve_blocks_collection(
        db, CollectionLimit(length=3, offset=6), BlockFilter(height=2)
    )
    count_query, count_args = pool.calls[2]
    page_query, page_args = pool.calls[3]
    assert count_query.endswith(" WHERE height = $1")
    assert count_args == (2,)
    assert page_query.endswith(" WHERE height = $1 ORDER BY height DESC LIMIT 3 OFFSET 6")
    assert page_args == (2,)


@pytest.mark.asyncio
async def test_resolve_transaction_invalid_hex_skips_database():
    db, pool = make_db(lambda q, a: [])
    assert await resolve_transaction(db, "not-hex") is None
    assert pool.calls == []


@pytest.mark.asyncio
async def test_resolve_transaction_found():
    hash_bytes = bytes([0xAB, 0xCD, 0xEF])
    db, pool = make_db(lambda q, a: [tx_row(a[0], index="2")])
    tx = await resolve_transaction(db, "0xabcdef")
    assert isinstance(tx, Transaction)
    assert tx.hash == "ABCDEF"
    assert tx.index == 2
    assert tx.raw == "AQID"
    assert tx.block.height == 7
    assert tx.block.raw_json is None
    assert tx.body.parameters.chain_id == "penumbra-1"
    assert [e.type_ for e in tx.raw_events] == ["tx"]
    assert pool.calls[0][1] == (hash_bytes,)


@pytest.mark.asyncio
async def test_resolve_transaction_without_json_is_none():
    db, _ = make_db(lambda q, a: [tx_row(a[0], raw_json=False)])
    assert await resolve_transaction(db, "abcd") is None


def test_transaction_from_row_decodes_text_json():
    row = tx_row(b"\x01\x02")
    row["raw_json"] = '{"index": "4"}'
    tx = transaction_from_row(row)
    assert tx.hash == "0102"
    assert tx.index == 4
    assert tx.raw_json == {"index": "4"}


@pytest.mark.asyncio
async def test_resolve_transactions_previous_reverses():
    rows = [tx_row(b"\x01"), tx_row(b"\x02")]
    db, pool = make_db(lambda q, a: rows)

    selector = TransactionsSelector(
        range=TransactionRange(
            from_tx_hash="0x01", direction=RangeDirection.PREVIOUS, limit=2
        )
    )
    txs = await resolve_transactions(db, selector)
    assert [t.hash for t in txs] == ["02", "01"]
    assert pool.calls[0][1] == (b"\x01", 2)

    nxt = TransactionsSelector(
        range=TransactionRange(from_tx_hash="01", direction=RangeDirection.NEXT, limit=2)
    )
    txs = await resolve_transactions(db, nxt)
    assert [t.hash for t in txs] == ["01", "02"]


@pytest.mark.asyncio
async def test_resolve_transactions_invalid_range_hash_is_empty():
    db, pool = make_db(lambda q, a: [tx_row(b"\x01")])
    selector = TransactionsSelector(
        range=TransactionRange(from_tx_hash="zz", direction=RangeDirection.NEXT, limit=2)
    )
    assert await resolve_transactions(db, selector) == []
    assert pool.calls == []


@pytest.mark.asyncio
async def test_resolve_transactions_skips_rows_without_json():
    db, pool = make_db(lambda q, a: [tx_row(b"\x01"), tx_row(b"\x02", raw_json=False)])
    txs = await resolve_transactions(
        db, TransactionsSelector(latest=LatestTransactions(limit=5))
    )
    assert [t.hash for t in txs] == ["01"]
    assert pool.calls[0][1] == (5,)


@pytest.mark.asyncio
async def test_resolve_transactions_collection():
    def responder(query, args):
        if "COUNT(*)" in query:
            return [Row(count=1)]
        return [tx_row(b"\x0a")]

    db, pool = make_db(responder)
    collection = await resolve_transactions_collection(
        db, CollectionLimit(), TransactionFilter(hash="0a")
    )
    assert collection.total == 1
    assert [t.hash for t in collection.items] == ["0A"]
    assert pool.calls[0][0].endswith(" WHERE tx_hash = $1")
    assert pool.calls[1][0].endswith(
        " WHERE t.tx_hash = $1 ORDER BY t.timestamp DESC, t.tx_hash ASC LIMIT 10 OFFSET 0"
    )
    assert pool.calls[1][1] == (b"\x0a",)


@pytest.mark.asyncio
async def test_resolve_transactions_collection_invalid_hash():
    db, pool = make_db(lambda q, a: [Row(count=5)])
    collection = await resolve_transactions_collection(
        db, CollectionLimit(), TransactionFilter(hash="xyz")
    )
    assert collection.items == []
    assert collection.total == 0
    assert pool.calls == []


@pytest.mark.asyncio
async def test_resolve_search_prefers_block():
    def responder(query, args):
        if "explorer_transactions t" in query:
            return [tx_row(args[0])]
        return [block_row(args[0])] if args[0] == 12 else []

    db, _ = make_db(responder)
    result = await resolve_search(db, "12")
    assert isinstance(result, Block)
    assert result.height == 12

    result = await resolve_search(db, "13")
    assert isinstance(result, Transaction)
    assert result.hash == "13"

    result = await resolve_search(db, "beef")
    assert isinstance(result, Transaction)
    assert result.hash == "BEEF"


@pytest.mark.asyncio
async def test_resolve_search_nothing_found():
    db, _ = make_db(lambda q, a: [])
    assert await resolve_search(db, "12") is None
    assert await resolve_search(db, "hello") is None


@pytest.mark.asyncio
async def test_resolve_stats():
    db, pool = make_db(lambda q, a: [Row(count=42)])
    stats = await resolve_stats(db)
    assert stats.total_transactions_count == 42
    assert "explorer_transactions" in pool.calls[0][0]


@pytest.mark.asyncio
async def test_resolve_stats_empty_raises():
    db, _ = make_db(lambda q, a: [])
    with pytest.raises(LookupError):
        await resolve_stats(db)