"""
ULID generation and timestamp utilities.

Every instant that crosses a boundary in indexsync (source payloads, index
documents, watermarks, leases) goes through these helpers so that
timezone handling is the same everywhere: instants are timezone-aware UTC
``datetime`` objects in memory and epoch milliseconds in the index.

Features:
    - **generate_ulid():** Time-sortable unique IDs (cycle ids, lease holders)
    - **utc_now():** Timezone-aware UTC datetime
    - **to_iso8601() / from_iso8601():** Serialization; ``Z`` suffix and
      naive values are read as UTC
    - **to_epoch_ms() / from_epoch_ms():** Index date representation
    - **parse_instant():** ISO string, epoch seconds or datetime → UTC datetime

Tags:
    timestamps, ulid, utc, datetime, epoch-millis, indexsync
"""

import secrets
import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def generate_ulid() -> str:
    """26-char Crockford base32 id: 10 chars of epoch ms, then 16 random chars.

    Ids sort by creation time to the millisecond.
    """
    stamp = _encode_base32(time.time_ns() // 1_000_000, 10)
    noise = _encode_base32(secrets.randbits(80), 16)
    return stamp + noise


def to_iso8601(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat()


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to a UTC-aware datetime."""
    if s is None:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(s))


def to_epoch_ms(dt: datetime) -> int:
    """Epoch milliseconds for a datetime (naive values are taken as UTC)."""
    return int(round(_as_utc(dt).timestamp() * 1000))


def from_epoch_ms(ms: int | float) -> datetime:
    """UTC datetime from epoch milliseconds."""
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def parse_instant(value: str | int | float | datetime | None) -> datetime | None:
    """Coerce an API timestamp into a UTC datetime.

    Numbers are epoch *seconds* (the workflow-execution API convention);
    strings are ISO 8601.

    Raises:
        ValueError: If the value cannot be interpreted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"Not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, str):
        return from_iso8601(value)
    raise ValueError(f"Not a timestamp: {value!r}")


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


_CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def _encode_base32(value: int, length: int) -> str:
    chars = [""] * length
    for i in range(length - 1, -1, -1):
        value, digit = divmod(value, 32)
        chars[i] = _CROCKFORD[digit]
    return "".join(chars)
