"""
Utility functions for certledger.

Time, encoding and comparison helpers shared by the ledger, the relay and
the service layer.
"""

import base64
import time
from datetime import datetime, timezone
from typing import Union


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes."""
    return base64.b64decode(s.encode('ascii'), validate=True)


def utc_rfc3339(ts_epoch: int) -> str:
    """Convert Unix timestamp to RFC3339 UTC string."""
    return datetime.fromtimestamp(ts_epoch, tz=timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_rfc3339(s: str) -> int:
    """Parse RFC3339 UTC string to Unix timestamp."""
    dt = datetime.strptime(s, '%Y-%m-%dT%H:%M:%SZ').replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def to_epoch(value: Union[int, str, None]) -> Union[int, None]:
    """Accept an epoch int or an RFC3339 string; None passes through."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("timestamp must be an int or RFC3339 string")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if value.isdigit():
            return int(value)
        return parse_rfc3339(value)
    raise ValueError(f"unsupported timestamp type: {type(value)}")


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """Mask a sensitive value, showing only the last N characters."""
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]
