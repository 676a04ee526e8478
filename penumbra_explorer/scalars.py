"""The RFC 3339 date-time scalar used by the API."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"(?:([Zz])|([+-])(\d{2}):(\d{2}))"
)


@dataclass(frozen=True)
class DateTime:
    """A UTC instant, exchanged as an RFC 3339 string."""

    value: datetime

    def __post_init__(self) -> None:
        if not isinstance(self.value, datetime):
            raise TypeError("DateTime wraps a datetime")
        if self.value.tzinfo is None:
            normalized = self.value.replace(tzinfo=timezone.utc)
        else:
            normalized = self.value.astimezone(timezone.utc)
        object.__setattr__(self, "value", normalized)

    @classmethod
    def parse(cls, value: Any) -> DateTime:
        """Parse an RFC 3339 string, converting any offset to UTC."""
        if not isinstance(value, str):
            raise TypeError(f"expected a string, found {type(value).__name__}")
        match = _RFC3339.fullmatch(value)
        if match is None:
            raise ValueError("Invalid DateTime format")
        year, month, day, hour, minute, second, fraction, zulu, sign, off_h, off_m = (
            match.groups()
        )
        microsecond = int((fraction or "0")[:6].ljust(6, "0"))
        try:
            if zulu:
                tz = timezone.utc
            else:
                offset = timedelta(hours=int(off_h), minutes=int(off_m))
                tz = timezone(-offset if sign == "-" else offset)
            parsed = datetime(
                int(year), int(month), int(day),
                int(hour), int(minute), int(second),
                microsecond, tzinfo=tz,
            )
        except ValueError as exc:
            raise ValueError("Invalid DateTime format") from exc
        return cls(parsed)

    def to_value(self) -> str:
        """Render as RFC 3339 with a ``+00:00`` offset."""
        v = self.value
        text = (
            f"{v.year:04d}-{v.month:02d}-{v.day:02d}"
            f"T{v.hour:02d}:{v.minute:02d}:{v.second:02d}"
        )
        micro = v.microsecond
        if micro:
            text += f".{micro // 1000:03d}" if micro % 1000 == 0 else f".{micro:06d}"
        return text + "+00:00"

    def __str__(self) -> str:
        return self.to_value()