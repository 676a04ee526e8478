"""Blocks and transactions as the API presents them, with their database lookups."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from .context import Database
from .parsing import encode_to_hex
from .scalars import DateTime
from .types import Action, AssetId, Event, NotYetSupportedAction

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1
_HEX = re.compile(r"[0-9a-fA-F]*")
_I32_TEXT = re.compile(r"[+-]?[0-9]+")

DEFAULT_CHAIN_ID = "penumbra-1"
NOT_SUPPORTED_DEBUG = "Transaction action not fully implemented yet"

_DB_BLOCK_COLUMNS = """
    SELECT
        height,
        root,
        timestamp,
        num_transactions,
        COALESCE(total_fees::TEXT, '0') as total_fees,
        validator_identity_key,
        previous_block_hash,
        block_hash,
        chain_id
    FROM
        explorer_block_details
"""

_DB_TX_COLUMNS = """
    SELECT
        tx_hash,
        block_height,
        timestamp,
        COALESCE(fee_amount::TEXT, '0') as fee_amount,
        chain_id,
        raw_data,
        raw_json
    FROM
        explorer_transactions
"""

_BLOCK_TXS_QUERY = """
    SELECT
        tx_hash,
        block_height,
        timestamp,
        fee_amount::TEXT as fee_amount_str,
        chain_id,
        raw_data,
        raw_json
    FROM
        explorer_transactions
    WHERE
        block_height = $1
    ORDER BY
        timestamp ASC
"""


def _json_value(value: Any) -> Any:
    """Return a JSON column as Python data, decoding it if the driver gave text."""
    if isinstance(value, (str, bytes, bytearray)):
        return json.loads(value)
    return value


def _to_json_string(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def _as_datetime(value: Union[DateTime, datetime]) -> DateTime:
    return value if isinstance(value, DateTime) else DateTime(value)


def _hex_or_none(data: Optional[bytes]) -> Optional[str]:
    return None if data is None else encode_to_hex(data)


def _path(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def decode_hex_hash(text: str) -> Optional[bytes]:
    """Decode a hex hash, ignoring any leading ``0x``; None if it is not valid hex."""
    while text.startswith("0x"):
        text = text[2:]
    if len(text) % 2 or not _HEX.fullmatch(text):
        return None
    return bytes.fromhex(text)


def extract_index_from_json(json_value: Any) -> Optional[int]:
    """Read the transaction index, stored as a decimal string under ``index``."""
    index = _path(json_value, "index")
    if not isinstance(index, str) or not _I32_TEXT.fullmatch(index):
        return None
    number = int(index)
    return number if _I32_MIN <= number <= _I32_MAX else None


def _events_from_array(events: Any) -> list[Event]:
    if not isinstance(events, list):
        return []
    return [
        Event(type_=item["type"], value=_to_json_string(item))
        for item in events
        if isinstance(item, Mapping) and isinstance(item.get("type"), str)
    ]


def extract_events_from_json(json_value: Any) -> list[Event]:
    """Collect the typed events of a transaction document."""
    return _events_from_array(_path(json_value, "events"))


def extract_events_from_block_json(json_value: Any) -> list[Event]:
    """Collect the typed events of a block document."""
    return _events_from_array(_path(json_value, "block", "events"))


@dataclass(frozen=True)
class Fee:
    """A transaction fee."""

    amount: str
    asset_id: Optional[AssetId] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": self.amount,
            "assetId": None if self.asset_id is None else self.asset_id.to_dict(),
        }


@dataclass(frozen=True)
class TransactionParameters:
    """Chain, expiry and fee of a transaction."""

    chain_id: str
    expiry_height: int
    fee: Fee

    def to_dict(self) -> dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "expiryHeight": self.expiry_height,
            "fee": self.fee.to_dict(),
        }


@dataclass(frozen=True)
class TransactionBody:
    """The body of a transaction."""

    actions: list[Action]
    actions_count: int
    detection_data: list[str]
    memo: Optional[str]
    parameters: TransactionParameters
    raw_actions: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "actions": [action.to_dict() for action in self.actions],
            "actionsCount": self.actions_count,
            "detectionData": list(self.detection_data),
            "memo": self.memo,
            "parameters": self.parameters.to_dict(),
            "rawActions": list(self.raw_actions),
        }


def extract_transaction_body(json_value: Any) -> TransactionBody:
    """Build a transaction body from a stored transaction document."""
    body = _path(json_value, "tx_result_decoded", "body")
    memo = _path(body, "memo")
    chain_id = _path(body, "transactionParameters", "chainId")
    fee_amount = _path(body, "transactionParameters", "fee", "amount", "lo")

    return TransactionBody(
        actions=[NotYetSupportedAction(debug=NOT_SUPPORTED_DEBUG)],
        actions_count=1,
        detection_data=[],
        memo=memo if isinstance(memo, str) else None,
        parameters=TransactionParameters(
            chain_id=chain_id if isinstance(chain_id, str) else DEFAULT_CHAIN_ID,
            expiry_height=0,
            fee=Fee(amount=fee_amount if isinstance(fee_amount, str) else "0"),
        ),
        raw_actions=[],
    )


@dataclass
class Block:
    """A block: its height, creation time and stored JSON document."""

    height: int
    created_at: DateTime
    raw_json: Optional[Any] = None

    def __post_init__(self) -> None:
        self.created_at = _as_datetime(self.created_at)

    async def transactions_count(self, db: Database) -> int:
        """Return the number of transactions recorded for this block."""
        row = await db.fetch_one(
            "SELECT num_transactions FROM explorer_block_details WHERE height = $1",
            self.height,
        )
        return row["num_transactions"]

    async def transactions(self, db: Database) -> list[Transaction]:
        """Return the block's transactions in timestamp order."""
        rows = await db.fetch_all(_BLOCK_TXS_QUERY, self.height)
        transactions = []
        for row in rows:
            raw_json = row["raw_json"]
            if raw_json is None:
                continue
            document = _json_value(raw_json)
            transactions.append(
                Transaction(
                    hash=encode_to_hex(row["tx_hash"]),
                    anchor="",
                    binding_sig="",
                    index=extract_index_from_json(document) or 0,
                    raw=row["raw_data"],
                    block=self,
                    body=extract_transaction_body(document),
                    raw_events=extract_events_from_json(document),
                    raw_json=document,
                )
            )
        return transactions

    def raw_events(self) -> list[Event]:
        """Return the events stored in the block document."""
        if self.raw_json is None:
            return []
        return extract_events_from_block_json(_json_value(self.raw_json))

    def to_dict(self) -> dict[str, Any]:
        return {
            "height": self.height,
            "createdAt": self.created_at.to_value(),
            "rawEvents": [event.to_dict() for event in self.raw_events()],
            "rawJson": self.raw_json,
        }


@dataclass
class Transaction:
    """A transaction as presented by the API."""

    hash: str
    anchor: str
    binding_sig: str
    index: int
    raw: str
    block: Block
    body: TransactionBody
    raw_events: list[Event] = field(default_factory=list)
    raw_json: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "anchor": self.anchor,
            "bindingSig": self.binding_sig,
            "index": self.index,
            "raw": self.raw,
            "block": self.block.to_dict(),
            "body": self.body.to_dict(),
            "rawEvents": [event.to_dict() for event in self.raw_events],
            "rawJson": self.raw_json,
        }


@dataclass(frozen=True)
class DbBlock:
    """A block row read straight from the database."""

    height: int
    root_hex: str
    timestamp: DateTime
    num_transactions: int
    total_fees: Optional[str]
    validator_identity_key: Optional[str]
    previous_block_hash_hex: Optional[str]
    block_hash_hex: Optional[str]
    chain_id: Optional[str]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> DbBlock:
        """Build from an ``explorer_block_details`` row."""
        return cls(
            height=row["height"],
            root_hex=encode_to_hex(row["root"]),
            timestamp=_as_datetime(row["timestamp"]),
            num_transactions=row["num_transactions"],
            total_fees=row["total_fees"],
            validator_identity_key=row["validator_identity_key"],
            previous_block_hash_hex=_hex_or_none(row["previous_block_hash"]),
            block_hash_hex=_hex_or_none(row["block_hash"]),
            chain_id=row["chain_id"],
        )

    @classmethod
    async def get_by_height(cls, db: Database, height: int) -> Optional[DbBlock]:
        """Return the block at a height, if it is indexed."""
        row = await db.fetch_optional(_DB_BLOCK_COLUMNS + " WHERE height = $1", height)
        return None if row is None else cls.from_row(row)

    @classmethod
    async def get_all(
        cls, db: Database, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> list[DbBlock]:
        """Return a page of blocks, highest first."""
        rows = await db.fetch_all(
            _DB_BLOCK_COLUMNS + " ORDER BY height DESC LIMIT $1 OFFSET $2",
            10 if limit is None else limit,
            0 if offset is None else offset,
        )
        return [cls.from_row(row) for row in rows]

    @classmethod
    async def get_latest(cls, db: Database) -> Optional[DbBlock]:
        """Return the highest indexed block, if any."""
        row = await db.fetch_optional(_DB_BLOCK_COLUMNS + " ORDER BY height DESC LIMIT 1")
        return None if row is None else cls.from_row(row)


@dataclass(frozen=True)
class DbRawTransaction:
    """A transaction row read straight from the database."""

    tx_hash_hex: str
    block_height: int
    timestamp: DateTime
    fee_amount: Optional[str]
    chain_id: Optional[str]
    raw_data_hex: Optional[str]
    raw_json: Optional[Any]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> DbRawTransaction:
        """Build from an ``explorer_transactions`` row."""
        raw_json = row["raw_json"]
        return cls(
            tx_hash_hex=encode_to_hex(row["tx_hash"]),
            block_height=row["block_height"],
            timestamp=_as_datetime(row["timestamp"]),
            fee_amount=row["fee_amount"],
            chain_id=row["chain_id"],
            raw_data_hex=row["raw_data"],
            raw_json=None if raw_json is None else _json_value(raw_json),
        )

    @classmethod
    async def get_by_hash(
        cls, db: Database, tx_hash_hex: str
    ) -> Optional[DbRawTransaction]:
        """Return the transaction with a hex hash; None if unknown or not hex."""
        tx_hash = decode_hex_hash(tx_hash_hex)
        if tx_hash is None:
            return None
        row = await db.fetch_optional(_DB_TX_COLUMNS + " WHERE tx_hash = $1", tx_hash)
        return None if row is None else cls.from_row(row)

    @classmethod
    async def get_all(
        cls, db: Database, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> list[DbRawTransaction]:
        """Return a page of transactions, newest first."""
        rows = await db.fetch_all(
            _DB_TX_COLUMNS + " ORDER BY timestamp DESC LIMIT $1 OFFSET $2",
            10 if limit is None else limit,
            0 if offset is None else offset,
        )
        return [cls.from_row(row) for row in rows]