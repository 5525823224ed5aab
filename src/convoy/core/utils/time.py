"""Timezone-aware time helpers."""
from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_timestamp(dt: datetime | None = None) -> str:
    """Return an ISO 8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    value = (dt or utc_now()).astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def compact_timestamp(dt: datetime | None = None) -> str:
    """Return a filesystem-safe UTC timestamp, e.g. ``20250101T120000123Z``."""
    value = (dt or utc_now()).astimezone(timezone.utc)
    return value.strftime("%Y%m%dT%H%M%S") + f"{value.microsecond // 1000:03d}Z"


__all__ = ["utc_now", "utc_timestamp", "compact_timestamp"]
