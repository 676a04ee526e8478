"""Live update streams for blocks, transactions and the transaction count."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional, TypeVar, Union

from .context import Database
from .parsing import encode_to_hex
from .pubsub import BroadcastReceiver, Lagged, PubSub
from .scalars import DateTime
from .types import BlockUpdate, TransactionCountUpdate, TransactionUpdate

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_LATEST_LIMIT = 10

_BLOCK_DATA_QUERY = (
    "SELECT timestamp, num_transactions FROM explorer_block_details WHERE height = $1"
)
_TRANSACTION_DATA_QUERY = (
    "SELECT tx_hash, raw_data FROM explorer_transactions WHERE block_height = $1 LIMIT 1"
)
_LATEST_BLOCKS_QUERY = (
    "SELECT height, timestamp, num_transactions FROM explorer_block_details "
    "ORDER BY height DESC LIMIT $1"
)
_LATEST_TRANSACTIONS_QUERY = (
    "SELECT block_height, tx_hash, raw_data FROM explorer_transactions "
    "ORDER BY block_height DESC LIMIT $1"
)
_COUNT_QUERY = "SELECT COUNT(*) FROM explorer_transactions"


def _as_datetime(value: Union[DateTime, datetime]) -> DateTime:
    return value if isinstance(value, DateTime) else DateTime(value)


async def get_block_data(db: Database, height: int) -> tuple[DateTime, int]:
    """Return the creation time and transaction count of a block.

    Raises LookupError if the block is not indexed.
    """
    row = await db.fetch_one(_BLOCK_DATA_QUERY, height)
    return _as_datetime(row["timestamp"]), row["num_transactions"]


async def get_transaction_data(db: Database, block_height: int) -> tuple[str, str]:
    """Return the hex hash and raw data of a transaction at a block height.

    Raises LookupError if the block has no transactions.
    """
    row = await db.fetch_one(_TRANSACTION_DATA_QUERY, block_height)
    return encode_to_hex(row["tx_hash"]), row["raw_data"]


async def get_latest_blocks(db: Database, limit: int) -> list[BlockUpdate]:
    """Return the latest blocks, oldest first."""
    rows = await db.fetch_all(_LATEST_BLOCKS_QUERY, limit)
    return [
        BlockUpdate(
            height=row["height"],
            created_at=_as_datetime(row["timestamp"]),
            transactions_count=row["num_transactions"],
        )
        for row in reversed(rows)
    ]


async def get_latest_transactions(db: Database, limit: int) -> list[TransactionUpdate]:
    """Return the latest transactions, oldest first."""
    rows = await db.fetch_all(_LATEST_TRANSACTIONS_QUERY, limit)
    return [
        TransactionUpdate(
            id=row["block_height"],
            hash=encode_to_hex(row["tx_hash"]),
            raw=row["raw_data"],
        )
        for row in reversed(rows)
    ]


async def _block_updates(
    receiver: BroadcastReceiver[int], db: Database
) -> AsyncIterator[BlockUpdate]:
    try:
        while True:
            try:
                height = await receiver.recv()
            except Lagged:
                continue
            try:
                created_at, count = await get_block_data(db, height)
            except Exception as exc:
                log.error("Failed to get block data: %s", exc)
                continue
            yield BlockUpdate(
                height=height, created_at=created_at, transactions_count=count
            )
    finally:
        receiver.close()


async def _transaction_updates(
    receiver: BroadcastReceiver[int], db: Database
) -> AsyncIterator[TransactionUpdate]:
    try:
        while True:
            try:
                block_height = await receiver.recv()
            except Lagged:
                continue
            try:
                tx_hash, raw = await get_transaction_data(db, block_height)
            except Exception as exc:
                log.error("Failed to get transaction data: %s", exc)
                continue
            yield TransactionUpdate(id=block_height, hash=tx_hash, raw=raw)
    finally:
        receiver.close()


async def _count_updates(
    initial: int, receiver: BroadcastReceiver[int]
) -> AsyncIterator[TransactionCountUpdate]:
    try:
        yield TransactionCountUpdate(count=initial)
        while True:
            try:
                count = await receiver.recv()
            except Lagged:
                log.error("Failed to receive transaction count from broadcast channel")
                continue
            yield TransactionCountUpdate(count=count)
    finally:
        receiver.close()


async def _prepend(initial: Iterable[T], stream: AsyncIterator[T]) -> AsyncIterator[T]:
    try:
        for item in initial:
            yield item
        async for item in stream:
            yield item
    finally:
        await stream.aclose()  # type: ignore[attr-defined]


class SubscriptionRoot:
    """Entry points for the live update subscriptions.

    Each method subscribes to its channel as soon as it is awaited, so no
    update published afterwards is missed, and returns an async iterator.
    """

    async def blocks(self, pubsub: PubSub, db: Database) -> AsyncIterator[BlockUpdate]:
        """Stream every newly published block."""
        return _block_updates(pubsub.blocks_subscribe(), db)

    async def transactions(
        self, pubsub: PubSub, db: Database
    ) -> AsyncIterator[TransactionUpdate]:
        """Stream a transaction for every newly published transaction height."""
        return _transaction_updates(pubsub.transactions_subscribe(), db)

    async def transaction_count(
        self, pubsub: PubSub, db: Database
    ) -> AsyncIterator[TransactionCountUpdate]:
        """Stream the current transaction count, then every change to it."""
        receiver = pubsub.transaction_count_subscribe()
        try:
            row = await db.fetch_one(_COUNT_QUERY)
            initial = row[0]
        except Exception:
            initial = 0
        return _count_updates(initial, receiver)

    async def latest_blocks(
        self, pubsub: PubSub, db: Database, limit: Optional[int] = None
    ) -> AsyncIterator[BlockUpdate]:
        """Stream the latest blocks, oldest first, then every new block."""
        limit = DEFAULT_LATEST_LIMIT if limit is None else limit
        initial = await get_latest_blocks(db, limit)
        return _prepend(initial, _block_updates(pubsub.blocks_subscribe(), db))

    async def latest_transactions(
        self, pubsub: PubSub, db: Database, limit: Optional[int] = None
    ) -> AsyncIterator[TransactionUpdate]:
        """Stream the latest transactions, oldest first, then every new one."""
        limit = DEFAULT_LATEST_LIMIT if limit is None else limit
        initial = await get_latest_transactions(db, limit)
        return _prepend(
            initial, _transaction_updates(pubsub.transactions_subscribe(), db)
        )