"""Plain API types: inputs, updates, collections and transaction actions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from .scalars import DateTime

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1


class RangeDirection(enum.Enum):
    """Which way a transaction range walks from its starting hash."""

    NEXT = "NEXT"
    PREVIOUS = "PREVIOUS"


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise TypeError(f"{what} must be an object")
    return data


def _int(data: Mapping[str, Any], key: str, required: bool) -> Optional[int]:
    value = data.get(key)
    if value is None:
        if required:
            raise ValueError(f'field "{key}" is required')
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f'field "{key}" must be an Int')
    if not _I32_MIN <= value <= _I32_MAX:
        raise ValueError(f'field "{key}" is out of range for Int')
    return value


def _str(data: Mapping[str, Any], key: str, required: bool) -> Optional[str]:
    value = data.get(key)
    if value is None:
        if required:
            raise ValueError(f'field "{key}" is required')
        return None
    if not isinstance(value, str):
        raise TypeError(f'field "{key}" must be a String')
    return value


def _nested(data: Mapping[str, Any], key: str) -> Optional[Mapping[str, Any]]:
    value = data.get(key)
    return None if value is None else _mapping(value, key)


@dataclass(frozen=True)
class AssetId:
    """An asset identifier with its alternative denominations."""

    alt_base_denom: str
    alt_bech32m: str
    inner: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "altBaseDenom": self.alt_base_denom,
            "altBech32m": self.alt_bech32m,
            "altBech32M": self.alt_bech32m,
            "inner": self.inner,
        }


@dataclass(frozen=True)
class Event:
    """An event type and its JSON-encoded body."""

    type_: str
    value: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type_, "value": self.value}


@dataclass(frozen=True)
class BlockHeightRange:
    from_: int
    to: int


@dataclass(frozen=True)
class LatestBlock:
    limit: int


@dataclass(frozen=True)
class BlocksSelector:
    """Select either the latest blocks or a height range."""

    latest: Optional[LatestBlock] = None
    range: Optional[BlockHeightRange] = None

    @classmethod
    def from_dict(cls, data: Any) -> BlocksSelector:
        data = _mapping(data, "BlocksSelector")
        latest = _nested(data, "latest")
        rng = _nested(data, "range")
        return cls(
            latest=None if latest is None else LatestBlock(_int(latest, "limit", True)),
            range=None
            if rng is None
            else BlockHeightRange(_int(rng, "from", True), _int(rng, "to", True)),
        )


@dataclass(frozen=True)
class LatestTransactions:
    limit: int


@dataclass(frozen=True)
class TransactionRange:
    from_tx_hash: str
    direction: RangeDirection
    limit: int


@dataclass(frozen=True)
class TransactionsSelector:
    """Select either the latest transactions or a range from a given hash."""

    latest: Optional[LatestTransactions] = None
    range: Optional[TransactionRange] = None

    @classmethod
    def from_dict(cls, data: Any) -> TransactionsSelector:
        data = _mapping(data, "TransactionsSelector")
        latest = _nested(data, "latest")
        rng = _nested(data, "range")
        tx_range = None
        if rng is not None:
            direction = _str(rng, "direction", True)
            tx_range = TransactionRange(
                from_tx_hash=_str(rng, "fromTxHash", True),
                direction=RangeDirection(direction),
                limit=_int(rng, "limit", True),
            )
        return cls(
            latest=None
            if latest is None
            else LatestTransactions(_int(latest, "limit", True)),
            range=tx_range,
        )


@dataclass(frozen=True)
class CollectionLimit:
    """Page size and offset for collections."""

    length: Optional[int] = None
    offset: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> CollectionLimit:
        data = _mapping(data, "CollectionLimit")
        return cls(length=_int(data, "length", False), offset=_int(data, "offset", False))


@dataclass(frozen=True)
class BlockFilter:
    height: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> BlockFilter:
        data = _mapping(data, "BlockFilter")
        return cls(height=_int(data, "height", False))


@dataclass(frozen=True)
class TransactionFilter:
    hash: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> TransactionFilter:
        data = _mapping(data, "TransactionFilter")
        return cls(hash=_str(data, "hash", False))


@dataclass(frozen=True)
class Stats:
    total_transactions_count: int

    def to_dict(self) -> dict[str, Any]:
        return {"totalTransactionsCount": self.total_transactions_count}


@dataclass(frozen=True)
class BlockUpdate:
    height: int
    created_at: DateTime
    transactions_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "height": self.height,
            "createdAt": self.created_at.to_value(),
            "transactionsCount": self.transactions_count,
        }


@dataclass(frozen=True)
class TransactionUpdate:
    id: int
    hash: str
    raw: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "hash": self.hash, "raw": self.raw}


@dataclass(frozen=True)
class TransactionCountUpdate:
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count}


@dataclass
class BlockCollection:
    """A page of blocks and the total number that match."""

    items: list[Any] = field(default_factory=list)
    total: int = 0


@dataclass
class TransactionCollection:
    """A page of transactions and the total number that match."""

    items: list[Any] = field(default_factory=list)
    total: int = 0


@dataclass(frozen=True)
class NotYetSupportedAction:
    debug: str

    def to_dict(self) -> dict[str, Any]:
        return {"__typename": "NotYetSupportedAction", "debug": self.debug}


@dataclass(frozen=True)
class IbcRelay:
    raw_action: str


@dataclass(frozen=True)
class NotePayload:
    encrypted_note: str
    ephemeral_key: str
    note_commitment: str


@dataclass(frozen=True)
class OutputBody:
    balance_commitment: str
    note_payload: NotePayload
    ovk_wrapped_key: str
    wrapped_memo_key: str


@dataclass(frozen=True)
class Output:
    body: OutputBody
    proof: str


@dataclass(frozen=True)
class SpendBody:
    balance_commitment: str
    nullifier: str
    rk: str


@dataclass(frozen=True)
class Spend:
    auth_sig: str
    body: SpendBody
    proof: str


Action = Union[NotYetSupportedAction, IbcRelay, Output, Spend]