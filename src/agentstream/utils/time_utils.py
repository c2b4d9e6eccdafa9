"""Date and time utilities."""

from __future__ import annotations

from datetime import UTC, datetime
import time
from typing import Literal


TimeZoneMode = Literal["utc", "local"]


def get_now(tz_mode: TimeZoneMode = "utc") -> datetime:
    """Get current datetime in UTC or local timezone.

    Args:
        tz_mode: "utc" or "local" (default: "utc")

    Returns:
        Timezone-aware datetime object
    """
    now = datetime.now(UTC)
    return now.astimezone() if tz_mode == "local" else now


def now_ms() -> int:
    """Milliseconds since the epoch, as stored on readiness entries and parts."""
    return int(time.time() * 1000)


def elapsed_ms(start: float) -> int:
    """Milliseconds elapsed since a ``time.monotonic()`` reading."""
    return int((time.monotonic() - start) * 1000)
