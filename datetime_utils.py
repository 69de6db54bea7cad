from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional


UTC = timezone.utc


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""

    return time.time_ns() // 1_000_000


def from_epoch_ms(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def format_epoch_ms(value: Optional[int]) -> str:
    """Human readable local time for an epoch-ms timestamp."""

    dt = from_epoch_ms(value)
    if dt is None:
        return "—"
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S")


__all__ = [
    "UTC",
    "format_epoch_ms",
    "from_epoch_ms",
    "now_ms",
]
