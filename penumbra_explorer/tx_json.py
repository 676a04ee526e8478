"""Decoding of transactions and building of the stored transaction documents."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

from .parsing import (
    AbciEvent,
    ContextualizedEvent,
    encode_to_hex,
    parse_attribute_string,
)
from .scalars import DateTime

log = logging.getLogger(__name__)

EVENT_BLOCK_ROOT_KIND = "penumbra.core.component.sct.v1.EventBlockRoot"

_U64_MAX = 2**64 - 1
_U64_TEXT = re.compile(r"\+?[0-9]+")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

Parser = Callable[[bytes], Mapping[str, Any]]


@dataclass(frozen=True)
class TransactionDecoder:
    """Decodes transaction bytes into their JSON form using pluggable parsers.

    Each parser takes the raw bytes and returns the message as a JSON-style
    mapping, raising ValueError when the bytes are not such a message. A
    decoder without a parser for a message kind rejects every input for it.
    """

    view_parser: Optional[Parser] = None
    transaction_parser: Optional[Parser] = None

    @staticmethod
    def _run(parser: Optional[Parser], tx_bytes: bytes, name: str) -> dict[str, Any]:
        if parser is None:
            raise ValueError(f"no {name} parser configured")
        result = parser(bytes(tx_bytes))
        if not isinstance(result, Mapping):
            raise ValueError(f"{name} parser did not return an object")
        return dict(result)

    def decode_view(self, tx_bytes: bytes) -> dict[str, Any]:
        """Decode the bytes as a transaction view."""
        return self._run(self.view_parser, tx_bytes, "TransactionView")

    def decode_transaction(self, tx_bytes: bytes) -> dict[str, Any]:
        """Decode the bytes as a plain transaction."""
        return self._run(self.transaction_parser, tx_bytes, "Transaction")


@dataclass(frozen=True)
class BlockRoot:
    """The block root event: the block's height, state root and time."""

    height: int
    root: Optional[bytes]
    timestamp: datetime


def _path(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def _parse_u64(text: str) -> Optional[int]:
    if not _U64_TEXT.fullmatch(text):
        return None
    value = int(text)
    return value if value <= _U64_MAX else None


def _json_timestamp(value: datetime) -> str:
    return DateTime(value).to_value()[: -len("+00:00")] + "Z"


def extract_fee_amount(tx_result: Any) -> int:
    """Return the low part of the fee amount, or 0 when absent or invalid."""
    lo = _path(tx_result, "body", "transactionParameters", "fee", "amount", "lo")
    if not isinstance(lo, str):
        return 0
    value = _parse_u64(lo)
    return 0 if value is None else value


def extract_chain_id(tx_result: Any) -> Optional[str]:
    """Return the chain id of a decoded transaction, if present."""
    chain_id = _path(tx_result, "body", "transactionParameters", "chainId")
    return chain_id if isinstance(chain_id, str) else None


def decode_transaction(
    tx_hash: bytes, tx_bytes: bytes, decoder: Optional[TransactionDecoder] = None
) -> dict[str, Any]:
    """Decode as a view, else as a transaction; an empty object if both fail."""
    decoder = decoder or TransactionDecoder()
    start = time.perf_counter()
    hash_hex = encode_to_hex(tx_hash)
    try:
        decoded = decoder.decode_view(tx_bytes)
    except ValueError as exc:
        log.debug(
            "Error decoding tx %s with TransactionView: %s, trying Transaction",
            hash_hex,
            exc,
        )
    else:
        log.debug(
            "Decoded tx %s with TransactionView in %.6fs",
            hash_hex,
            time.perf_counter() - start,
        )
        return decoded

    try:
        decoded = decoder.decode_transaction(tx_bytes)
    except ValueError as exc:
        log.warning("Failed to decode tx %s with both methods: %s", hash_hex, exc)
        return {}
    log.debug(
        "Decoded tx %s with Transaction in %.6fs", hash_hex, time.perf_counter() - start
    )
    return decoded


def _event_document(event: ContextualizedEvent) -> dict[str, Any]:
    attributes = []
    for attr in event.event.attributes:
        attr_str = attr.debug_string()
        parsed = parse_attribute_string(attr_str)
        if parsed is None:
            attributes.append({"key": attr_str, "value": "Unknown"})
        else:
            key, value = parsed
            attributes.append({"key": key, "value": value})
    return {"type": event.event.kind, "attributes": attributes}


def create_transaction_json(
    tx_hash: bytes,
    tx_bytes: bytes,
    height: int,
    timestamp: datetime,
    tx_index: int,
    tx_events: Sequence[ContextualizedEvent],
    decoder: Optional[TransactionDecoder] = None,
) -> dict[str, Any]:
    """Build the JSON document stored for a transaction."""
    hash_hex = encode_to_hex(tx_hash)
    events: list[dict[str, Any]] = [
        {
            "type": "tx",
            "attributes": [
                {"key": "hash", "value": hash_hex},
                {"key": "height", "value": str(height)},
            ],
        }
    ]
    events.extend(_event_document(event) for event in tx_events)

    return {
        "hash": hash_hex,
        "height": str(height),
        "index": str(tx_index),
        "timestamp": _json_timestamp(timestamp),
        "tx_result": encode_to_hex(tx_bytes),
        "tx_result_decoded": decode_transaction(tx_hash, tx_bytes, decoder),
        "events": events,
    }


def extract_chain_id_from_bytes(
    tx_bytes: bytes, decoder: Optional[TransactionDecoder] = None
) -> Optional[str]:
    """Read the chain id straight from transaction bytes, if they decode."""
    decoder = decoder or TransactionDecoder()
    try:
        view = decoder.decode_view(tx_bytes)
    except ValueError:
        try:
            tx = decoder.decode_transaction(tx_bytes)
        except ValueError:
            return None
        params = _path(tx, "body", "transactionParameters")
    else:
        params = _path(view, "bodyView", "transactionParameters")

    if not isinstance(params, Mapping):
        return None
    chain_id = params.get("chainId", "")
    return chain_id if isinstance(chain_id, str) else None


def _decode_bytes_field(text: str) -> bytes:
    normalized = text.replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    return base64.b64decode(normalized, validate=True)


def parse_block_root(event: AbciEvent) -> Optional[BlockRoot]:
    """Read a block root event; None if the event is not a well-formed one."""
    if event.kind != EVENT_BLOCK_ROOT_KIND:
        return None
    try:
        fields = {attr.key: json.loads(attr.value) for attr in event.attributes}
    except json.JSONDecodeError:
        return None

    height_field = fields.get("height", 0)
    if isinstance(height_field, bool):
        return None
    if isinstance(height_field, int):
        height: Optional[int] = height_field if 0 <= height_field <= _U64_MAX else None
    elif isinstance(height_field, str):
        height = _parse_u64(height_field)
    else:
        height = None
    if height is None:
        return None

    root: Optional[bytes] = None
    root_field = fields.get("root")
    if root_field is not None:
        inner = _path(root_field, "inner")
        if not isinstance(root_field, Mapping):
            return None
        if inner is None:
            root = b""
        elif isinstance(inner, str):
            try:
                root = _decode_bytes_field(inner)
            except (binascii.Error, ValueError):
                return None
        else:
            return None

    timestamp_field = fields.get("timestamp")
    if timestamp_field is None:
        timestamp = _EPOCH
    else:
        try:
            timestamp = DateTime.parse(timestamp_field).value
        except (TypeError, ValueError):
            return None

    return BlockRoot(height=height, root=root, timestamp=timestamp)