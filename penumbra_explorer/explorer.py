"""The indexing view that turns chain events into explorer blocks and transactions."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from .context import Database
from .parsing import ContextualizedEvent, encode_to_base64, encode_to_hex, event_to_json
from .scalars import DateTime
from .tx_json import (
    TransactionDecoder,
    create_transaction_json,
    extract_chain_id,
    extract_chain_id_from_bytes,
    extract_fee_amount,
    parse_block_root,
)

log = logging.getLogger(__name__)

UNKNOWN_CHAIN_ID = "unknown"
FOREIGN_KEY_VIOLATION = "23503"

_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1
_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1

_INIT_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS explorer_block_details (
        height BIGINT PRIMARY KEY,
        root BYTEA NOT NULL,
        timestamp TIMESTAMPTZ NOT NULL,
        num_transactions INT NOT NULL DEFAULT 0,
        total_fees NUMERIC(39, 0) DEFAULT 0,
        validator_identity_key TEXT,
        previous_block_hash BYTEA,
        block_hash BYTEA,
        chain_id TEXT,
        raw_json JSONB
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_explorer_block_details_timestamp
    ON explorer_block_details(timestamp DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_explorer_block_details_validator
    ON explorer_block_details(validator_identity_key)
    """,
    """
    CREATE TABLE IF NOT EXISTS explorer_transactions (
        tx_hash BYTEA PRIMARY KEY,
        block_height BIGINT NOT NULL,
        timestamp TIMESTAMPTZ NOT NULL,
        fee_amount NUMERIC(39, 0) DEFAULT 0,
        chain_id TEXT,
        raw_data TEXT,
        raw_json JSONB,
        FOREIGN KEY (block_height) REFERENCES explorer_block_details(height)
            DEFERRABLE INITIALLY DEFERRED
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_explorer_transactions_block_height
    ON explorer_transactions(block_height)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_explorer_transactions_timestamp
    ON explorer_transactions(timestamp DESC)
    """,
    """
    CREATE OR REPLACE VIEW explorer_recent_blocks AS
    SELECT
        height,
        timestamp,
        num_transactions,
        total_fees,
        validator_identity_key,
        chain_id,
        raw_json
    FROM
        explorer_block_details
    ORDER BY
        height DESC
    """,
    """
    CREATE OR REPLACE VIEW explorer_transaction_summary AS
    SELECT
        t.tx_hash,
        t.block_height,
        t.timestamp,
        t.fee_amount,
        t.chain_id,
        t.raw_json
    FROM
        explorer_transactions t
    ORDER BY
        t.timestamp DESC
    """,
)

_BLOCK_EXISTS = "SELECT EXISTS(SELECT 1 FROM explorer_block_details WHERE height = $1)"
_BLOCK_UPDATE = """
    UPDATE explorer_block_details
    SET
        root = $2,
        timestamp = $3,
        num_transactions = $4,
        chain_id = $5,
        raw_json = $6::jsonb
    WHERE height = $1
"""
_BLOCK_INSERT = """
    INSERT INTO explorer_block_details
    (height, root, timestamp, num_transactions, chain_id,
     validator_identity_key, previous_block_hash, block_hash, raw_json)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb)
"""

_TX_EXISTS = "SELECT EXISTS(SELECT 1 FROM explorer_transactions WHERE tx_hash = $1)"
_TX_UPDATE = """
    UPDATE explorer_transactions
    SET
        block_height = $2,
        timestamp = $3,
        fee_amount = $4,
        chain_id = $5,
        raw_data = $6,
        raw_json = $7::jsonb
    WHERE tx_hash = $1
"""
_TX_INSERT = """
    INSERT INTO explorer_transactions
    (tx_hash, block_height, timestamp, fee_amount, chain_id, raw_data, raw_json)
    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
"""


def _json_timestamp(value: datetime) -> str:
    return DateTime(value).to_value()[: -len("+00:00")] + "Z"


def _checked_i64(value: int, what: str) -> int:
    if not _I64_MIN <= value <= _I64_MAX:
        raise ValueError(f"{what} value too large: {value}")
    return value


def _i32_or_zero(value: int) -> int:
    return value if _I32_MIN <= value <= _I32_MAX else 0


def _i64_or_zero(value: int) -> int:
    return value if _I64_MIN <= value <= _I64_MAX else 0


@dataclass
class BlockEvents:
    """The events and transactions of one block in a batch."""

    height: int
    events: list[ContextualizedEvent] = field(default_factory=list)
    transactions: list[tuple[bytes, bytes]] = field(default_factory=list)

    def tx_count(self) -> int:
        """Return the number of transactions in the block."""
        return len(self.transactions)


@dataclass
class ProcessedBlock:
    """A block ready to be stored, with the transactions that belong to it.

    Each transaction is a tuple of hash, bytes, index within the block and
    the events emitted by it.
    """

    height: int
    root: bytes
    timestamp: datetime
    tx_count: int
    chain_id: Optional[str]
    raw_json: dict[str, Any]
    transactions: list[tuple[bytes, bytes, int, list[ContextualizedEvent]]] = field(
        default_factory=list
    )


@dataclass(frozen=True)
class BlockMetadata:
    """The columns written for a block."""

    height: int
    root: bytes
    timestamp: datetime
    tx_count: int
    chain_id: str
    raw_json: Any


@dataclass(frozen=True)
class TransactionMetadata:
    """The columns written for a transaction."""

    tx_hash: bytes
    height: int
    timestamp: datetime
    fee_amount: int
    chain_id: str
    tx_bytes_base64: str
    decoded_tx_json: Any


def process_block_events(
    batch: Iterable[BlockEvents], decoder: Optional[TransactionDecoder] = None
) -> list[ProcessedBlock]:
    """Turn the blocks of a batch into storable blocks.

    Blocks without a block root event carrying a root are left out.
    """
    decoder = decoder or TransactionDecoder()
    results: list[ProcessedBlock] = []

    for block in batch:
        height = block.height
        tx_count = block.tx_count()
        log.info("Processing block height %s with %s transactions", height, tx_count)

        root: Optional[bytes] = None
        timestamp: Optional[datetime] = None
        block_events: list[Any] = []
        tx_events: list[Any] = []
        events_by_tx: dict[bytes, list[ContextualizedEvent]] = {}

        for event in block.events:
            block_root = parse_block_root(event.event)
            if block_root is not None:
                timestamp = block_root.timestamp
                root = block_root.root

            tx_hash = event.tx_hash()
            event_json = event_to_json(event, tx_hash)
            if tx_hash is None:
                block_events.append(event_json)
            else:
                events_by_tx.setdefault(bytes(tx_hash), []).append(event)
                tx_events.append(event_json)

        chain_id: Optional[str] = None
        if block.transactions:
            chain_id = extract_chain_id_from_bytes(block.transactions[0][1], decoder)

        created_at = None if timestamp is None else _json_timestamp(timestamp)
        transactions_json = [
            {
                "block_id": height,
                "index": index,
                "created_at": created_at,
                "tx_hash": encode_to_hex(tx_hash),
            }
            for index, (tx_hash, _) in enumerate(block.transactions)
        ]

        raw_json = {
            "block": {
                "height": height,
                "chain_id": UNKNOWN_CHAIN_ID if chain_id is None else chain_id,
                "created_at": created_at,
                "transactions": transactions_json,
                "events": block_events + tx_events,
            }
        }

        if root is None or timestamp is None:
            continue

        block_txs = [
            (
                bytes(tx_hash),
                bytes(tx_bytes),
                index,
                list(events_by_tx.get(bytes(tx_hash), [])),
            )
            for index, (tx_hash, tx_bytes) in enumerate(block.transactions)
        ]
        results.append(
            ProcessedBlock(
                height=height,
                root=root,
                timestamp=timestamp,
                tx_count=tx_count,
                chain_id=chain_id,
                raw_json=raw_json,
                transactions=block_txs,
            )
        )

    return results


def _is_foreign_key_error(exc: BaseException) -> bool:
    code = getattr(exc, "sqlstate", None) or getattr(exc, "pgcode", None)
    return code == FOREIGN_KEY_VIOLATION


class ExplorerView:
    """Indexes blocks and transactions into the explorer tables."""

    def __init__(self, decoder: Optional[TransactionDecoder] = None) -> None:
        self.decoder = decoder or TransactionDecoder()

    def name(self) -> str:
        """Return the view's name."""
        return "explorer"

    async def init_chain(self, dbtx: Database, app_state: Any = None) -> None:
        """Create the explorer tables, indexes and views."""
        for statement in _INIT_STATEMENTS:
            await dbtx.execute(statement)

    async def insert_block(self, dbtx: Database, meta: BlockMetadata) -> None:
        """Insert a block, or update it if its height is already stored."""
        if not _I64_MIN <= meta.height <= _I64_MAX:
            raise ValueError(f"Height conversion error: {meta.height}")
        height = meta.height

        row = await dbtx.fetch_one(_BLOCK_EXISTS, height)
        exists = bool(row[0])
        raw_json_str = json.dumps(meta.raw_json)
        num_transactions = _i32_or_zero(meta.tx_count)

        if exists:
            await dbtx.execute(
                _BLOCK_UPDATE,
                height,
                meta.root,
                meta.timestamp,
                num_transactions,
                meta.chain_id,
                raw_json_str,
            )
            log.debug("Updated block %s", height)
        else:
            await dbtx.execute(
                _BLOCK_INSERT,
                height,
                meta.root,
                meta.timestamp,
                num_transactions,
                meta.chain_id,
                None,
                None,
                None,
                raw_json_str,
            )
            log.debug("Inserted block %s", height)

    async def insert_transaction(self, dbtx: Database, meta: TransactionMetadata) -> None:
        """Insert a transaction, or update it if its hash is already stored."""
        height = _checked_i64(meta.height, "Height")

        row = await dbtx.fetch_one(_TX_EXISTS, meta.tx_hash)
        exists = bool(row[0])
        json_str = json.dumps(meta.decoded_tx_json)
        fee_amount = _i64_or_zero(meta.fee_amount)

        await dbtx.execute(
            _TX_UPDATE if exists else _TX_INSERT,
            meta.tx_hash,
            height,
            meta.timestamp,
            fee_amount,
            meta.chain_id,
            meta.tx_bytes_base64,
            json_str,
        )

    async def process_transaction(
        self,
        dbtx: Database,
        tx_hash: bytes,
        tx_bytes: bytes,
        tx_index: int,
        height: int,
        timestamp: datetime,
        tx_events: Sequence[ContextualizedEvent],
        chain_id: Optional[str] = None,
    ) -> bool:
        """Build and store a transaction; return False if storing it failed.

        Storage failures are logged, not raised.
        """
        document = create_transaction_json(
            tx_hash, tx_bytes, height, timestamp, tx_index, tx_events, self.decoder
        )
        decoded = document["tx_result_decoded"]
        fee_amount = extract_fee_amount(decoded)
        tx_chain_id = extract_chain_id(decoded)
        if tx_chain_id is None:
            tx_chain_id = UNKNOWN_CHAIN_ID if chain_id is None else chain_id

        meta = TransactionMetadata(
            tx_hash=bytes(tx_hash),
            height=height,
            timestamp=timestamp,
            fee_amount=fee_amount,
            chain_id=tx_chain_id,
            tx_bytes_base64=encode_to_base64(tx_bytes),
            decoded_tx_json=document,
        )

        try:
            await self.insert_transaction(dbtx, meta)
        except Exception as exc:
            tx_hash_hex = encode_to_hex(tx_hash)
            if _is_foreign_key_error(exc):
                log.warning(
                    "Block %s not found for transaction %s. Foreign key constraint failed.",
                    height,
                    tx_hash_hex,
                )
            else:
                log.error("Error inserting transaction %s: %r", tx_hash_hex, exc)
            return False
        return True

    async def index_batch(self, dbtx: Database, batch: Iterable[BlockEvents]) -> None:
        """Store every block of a batch, then every transaction in it."""
        processed = process_block_events(batch, self.decoder)
        log.info("Processed %s blocks from batch", len(processed))

        for block in processed:
            await self.insert_block(
                dbtx,
                BlockMetadata(
                    height=block.height,
                    root=block.root,
                    timestamp=block.timestamp,
                    tx_count=block.tx_count,
                    chain_id=UNKNOWN_CHAIN_ID if block.chain_id is None else block.chain_id,
                    raw_json=block.raw_json,
                ),
            )

        for block in processed:
            for tx_hash, tx_bytes, tx_index, tx_events in block.transactions:
                await self.process_transaction(
                    dbtx,
                    tx_hash,
                    tx_bytes,
                    tx_index,
                    block.height,
                    block.timestamp,
                    tx_events,
                    block.chain_id,
                )