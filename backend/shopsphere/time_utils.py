from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.utcnow()


def epoch_millis() -> int:
    """Wall-clock milliseconds since the epoch; used to stamp generated codes."""
    return time.time_ns() // 1_000_000


def compact_stamp(dt: Optional[datetime] = None) -> str:
    """YYYYMMDDHHMMSS rendering of dt (defaults to utcnow())."""
    return (dt or utcnow()).strftime("%Y%m%d%H%M%S")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
