"""Query resolvers for blocks, transactions, search and statistics."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping, Optional, Union

from .context import Database
from .models import (
    Block,
    Transaction,
    decode_hex_hash,
    extract_events_from_json,
    extract_index_from_json,
    extract_transaction_body,
)
from .parsing import encode_to_hex
from .types import (
    BlockCollection,
    BlockFilter,
    BlocksSelector,
    CollectionLimit,
    RangeDirection,
    Stats,
    TransactionCollection,
    TransactionFilter,
    TransactionsSelector,
)

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1
_I32_TEXT = re.compile(r"[+-]?[0-9]+")

DEFAULT_PAGE_LENGTH = 10
DEFAULT_PAGE_OFFSET = 0

_BLOCK_COLUMNS = "SELECT height, timestamp, raw_json FROM explorer_block_details"

TRANSACTION_BASE_QUERY = """
    SELECT
        t.tx_hash,
        t.block_height,
        t.timestamp,
        t.fee_amount::TEXT as fee_amount_str,
        t.chain_id,
        t.raw_data,
        t.raw_json,
        b.timestamp as block_timestamp
    FROM
        explorer_transactions t
    JOIN
        explorer_block_details b ON t.block_height = b.height
"""

_TX_REF_QUERY = "(SELECT timestamp FROM explorer_transactions WHERE tx_hash = $1)"

SearchResult = Union[Block, Transaction]


def _i32_or_zero(value: int) -> int:
    return value if _I32_MIN <= value <= _I32_MAX else 0


def _parse_i32(text: str) -> Optional[int]:
    if not _I32_TEXT.fullmatch(text):
        return None
    value = int(text)
    return value if _I32_MIN <= value <= _I32_MAX else None


def _json_value(value: Any) -> Any:
    if isinstance(value, (str, bytes, bytearray)):
        return json.loads(value)
    return value


def _block_from_row(row: Mapping[str, Any]) -> Block:
    raw_json = row["raw_json"]
    return Block(
        height=_i32_or_zero(row["height"]),
        created_at=row["timestamp"],
        raw_json=None if raw_json is None else _json_value(raw_json),
    )


def _page(limit: CollectionLimit) -> str:
    length = DEFAULT_PAGE_LENGTH if limit.length is None else limit.length
    offset = DEFAULT_PAGE_OFFSET if limit.offset is None else limit.offset
    return f" LIMIT {length} OFFSET {offset}"


def build_blocks_query(selector: BlocksSelector) -> tuple[str, int]:
    """Return the block query for a selector and how many parameters it takes."""
    if selector.range is not None:
        return _BLOCK_COLUMNS + " WHERE height BETWEEN $1 AND $2 ORDER BY height DESC", 2
    if selector.latest is not None:
        return _BLOCK_COLUMNS + " ORDER BY height DESC LIMIT $1", 1
    return _BLOCK_COLUMNS + " ORDER BY height DESC LIMIT 10", 0


async def resolve_block(db: Database, height: int) -> Optional[Block]:
    """Return the block at a height, if it is indexed."""
    row = await db.fetch_optional(_BLOCK_COLUMNS + " WHERE height = $1", height)
    return None if row is None else _block_from_row(row)


async def resolve_blocks(db: Database, selector: BlocksSelector) -> list[Block]:
    """Return the blocks a selector picks, highest first."""
    query, _ = build_blocks_query(selector)
    if selector.range is not None:
        args: tuple[Any, ...] = (selector.range.from_, selector.range.to)
    elif selector.latest is not None:
        args = (selector.latest.limit,)
    else:
        args = ()
    rows = await db.fetch_all(query, *args)
    return [_block_from_row(row) for row in rows]


async def resolve_blocks_collection(
    db: Database, limit: CollectionLimit, filter: Optional[BlockFilter] = None
) -> BlockCollection:
    """Return a page of blocks and the total number matching the filter."""
    where = ""
    args: tuple[Any, ...] = ()
    if filter is not None and filter.height is not None:
        where = " WHERE height = $1"
        args = (filter.height,)

    count_row = await db.fetch_one(
        "SELECT COUNT(*) FROM explorer_block_details" + where, *args
    )
    total = count_row[0]

    query = _BLOCK_COLUMNS + where + " ORDER BY height DESC" + _page(limit)
    rows = await db.fetch_all(query, *args)
    return BlockCollection(
        items=[_block_from_row(row) for row in rows], total=_i32_or_zero(total)
    )


def build_transactions_query(
    selector: TransactionsSelector, base: str = TRANSACTION_BASE_QUERY
) -> tuple[str, int]:
    """Return the transaction query for a selector and how many parameters it takes."""
    if selector.range is not None:
        if selector.range.direction is RangeDirection.NEXT:
            clause = (
                f" WHERE (t.timestamp < {_TX_REF_QUERY})"
                f" OR (t.timestamp = {_TX_REF_QUERY} AND t.tx_hash > $1)"
                " ORDER BY t.timestamp DESC, t.tx_hash ASC LIMIT $2"
            )
        else:
            clause = (
                f" WHERE (t.timestamp > {_TX_REF_QUERY})"
                f" OR (t.timestamp = {_TX_REF_QUERY} AND t.tx_hash < $1)"
                " ORDER BY t.timestamp ASC, t.tx_hash DESC LIMIT $2"
            )
        return base + clause, 2
    if selector.latest is not None:
        return base + " ORDER BY t.timestamp DESC, t.tx_hash ASC LIMIT $1", 1
    return base + " ORDER BY t.timestamp DESC, t.tx_hash ASC LIMIT 10", 0


def transaction_from_row(row: Mapping[str, Any]) -> Optional[Transaction]:
    """Build a transaction from a joined row; None when it has no JSON document."""
    raw_json = row["raw_json"]
    if raw_json is None:
        return None
    document = _json_value(raw_json)
    return Transaction(
        hash=encode_to_hex(row["tx_hash"]),
        anchor="",
        binding_sig="",
        index=extract_index_from_json(document) or 0,
        raw=row["raw_data"],
        block=Block(
            height=_i32_or_zero(row["block_height"]),
            created_at=row["block_timestamp"],
            raw_json=None,
        ),
        body=extract_transaction_body(document),
        raw_events=extract_events_from_json(document),
        raw_json=document,
    )


def _transactions_from_rows(rows: list[Any]) -> list[Transaction]:
    return [tx for tx in map(transaction_from_row, rows) if tx is not None]


async def resolve_transaction(db: Database, hash: str) -> Optional[Transaction]:
    """Return the transaction with a hex hash; None if unknown or not hex."""
    hash_bytes = decode_hex_hash(hash)
    if hash_bytes is None:
        return None
    row = await db.fetch_optional(
        TRANSACTION_BASE_QUERY + " WHERE t.tx_hash = $1", hash_bytes
    )
    return None if row is None else transaction_from_row(row)


async def resolve_transactions(
    db: Database, selector: TransactionsSelector
) -> list[Transaction]:
    """Return the transactions a selector picks."""
    query, _ = build_transactions_query(selector, TRANSACTION_BASE_QUERY)
    tx_range = selector.range
    if tx_range is not None:
        hash_bytes = decode_hex_hash(tx_range.from_tx_hash)
        if hash_bytes is None:
            return []
        rows = await db.fetch_all(query, hash_bytes, tx_range.limit)
    elif selector.latest is not None:
        rows = await db.fetch_all(query, selector.latest.limit)
    else:
        rows = await db.fetch_all(query)

    transactions = _transactions_from_rows(rows)
    if tx_range is not None and tx_range.direction is RangeDirection.PREVIOUS:
        transactions.reverse()
    return transactions


async def resolve_transactions_collection(
    db: Database, limit: CollectionLimit, filter: Optional[TransactionFilter] = None
) -> TransactionCollection:
    """Return a page of transactions and the total number matching the filter."""
    count_where = ""
    where = ""
    args: tuple[Any, ...] = ()
    if filter is not None and filter.hash is not None:
        hash_bytes = decode_hex_hash(filter.hash)
        if hash_bytes is None:
            return TransactionCollection(items=[], total=0)
        count_where = " WHERE tx_hash = $1"
        where = " WHERE t.tx_hash = $1"
        args = (hash_bytes,)

    count_row = await db.fetch_one(
        "SELECT COUNT(*) FROM explorer_transactions" + count_where, *args
    )
    total = count_row[0]

    query = (
        TRANSACTION_BASE_QUERY
        + where
        + " ORDER BY t.timestamp DESC, t.tx_hash ASC"
        + _page(limit)
    )
    rows = await db.fetch_all(query, *args)
    return TransactionCollection(
        items=_transactions_from_rows(rows), total=_i32_or_zero(total)
    )


async def resolve_search(db: Database, slug: str) -> Optional[SearchResult]:
    """Find a block by height or, failing that, a transaction by hash."""
    height = _parse_i32(slug)
    if height is not None:
        block = await resolve_block(db, height)
        if block is not None:
            return block
    return await resolve_transaction(db, slug)


async def resolve_stats(db: Database) -> Stats:
    """Return chain statistics."""
    row = await db.fetch_one("SELECT COUNT(*) as count FROM explorer_transactions")
    return Stats(total_transactions_count=row[0])