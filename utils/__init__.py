"""Small utilities shared across modules."""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from loguru import logger


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def from_epoch_ms(ms: int) -> datetime:
    try:
        return datetime.fromtimestamp(ms / 1000, tz=UTC)
    except (OverflowError, OSError) as e:
        raise ValueError(f"epoch milliseconds out of range: {str(ms)[:32]}") from e


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp header into an aware UTC datetime.

    Accepts RFC 1123 dates ("Tue, 19 Nov 2013 01:13:52 GMT", what Google sends
    in X-Goog-Channel-Expiration), ISO 8601 and epoch milliseconds.
    Raises ValueError when nothing matches.
    """

    s = (value or "").strip()
    if not s:
        raise ValueError("empty timestamp")
    if s.isdigit():
        return from_epoch_ms(int(s))
    try:
        dt = parsedate_to_datetime(s)
    except (TypeError, ValueError):
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def read_json(path: str, default: Any) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except ValueError as e:
        logger.warning("Could not read JSON '{}': {}", path, e)
        return default


def write_json(path: str, obj: Any) -> None:
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)
    os.replace(tmp, path)
