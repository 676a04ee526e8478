"""Event attribute parsing and byte encoding helpers."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Iterable

_DEBUG_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\0": "\\0",
}


def _debug_quote(text: str) -> str:
    return '"' + "".join(_DEBUG_ESCAPES.get(ch, ch) for ch in text) + '"'


@dataclass(frozen=True)
class EventAttribute:
    """A single key/value attribute attached to an ABCI event."""

    key: str
    value: str
    index: bool = False

    def debug_string(self) -> str:
        """Return the attribute in its structured debug form."""
        return (
            f"EventAttribute {{ key: {_debug_quote(self.key)}, "
            f"value: {_debug_quote(self.value)}, "
            f"index: {'true' if self.index else 'false'} }}"
        )


@dataclass(frozen=True)
class AbciEvent:
    """An ABCI event: a kind and its attributes."""

    kind: str
    attributes: tuple[EventAttribute, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ContextualizedEvent:
    """An event together with the block and transaction it came from."""

    block_height: int
    event: AbciEvent
    tx: tuple[bytes, bytes] | None = None
    local_rowid: int = 0

    def tx_hash(self) -> bytes | None:
        """Return the hash of the transaction that emitted the event, if any."""
        return self.tx[0] if self.tx is not None else None


def encode_to_hex(data: Iterable[int] | bytes) -> str:
    """Encode bytes as an upper-case hexadecimal string."""
    return bytes(data).hex().upper()


def encode_to_base64(data: Iterable[int] | bytes) -> str:
    """Encode bytes as a padded standard base64 string."""
    return base64.b64encode(bytes(data)).decode("ascii")


def _field_after(attr_str: str, marker: str) -> str:
    start = attr_str.find(marker) + len(marker)
    end = attr_str.find(",", start)
    if end == -1:
        end = len(attr_str)
    return attr_str[start:end].strip().strip('"')


def parse_attribute_string(attr_str: str) -> tuple[str, str] | None:
    """Extract a ``(key, value)`` pair from an attribute's textual form."""
    if "key:" in attr_str and "value:" in attr_str:
        return _field_after(attr_str, "key:"), _field_after(attr_str, "value:")

    if "{" in attr_str and "}" in attr_str:
        json_start = attr_str.find("{")
        field_name = attr_str[:json_start].strip()
        if field_name:
            return field_name, attr_str[json_start:]

    return None


def event_to_json(event: ContextualizedEvent, tx_hash: bytes | None) -> dict[str, Any]:
    """Render an event as a JSON-compatible dictionary."""
    kind = event.event.kind
    attributes = []
    for attr in event.event.attributes:
        attr_str = attr.debug_string()
        attributes.append(
            {
                "key": attr_str,
                "composite_key": f"{kind}.{attr_str}",
                "value": "Unknown",
            }
        )

    return {
        "block_id": event.block_height,
        "tx_id": encode_to_hex(tx_hash) if tx_hash is not None else None,
        "type": kind,
        "attributes": attributes,
    }