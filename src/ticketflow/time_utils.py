"""Timezone-safe datetime helpers."""

from __future__ import annotations

from datetime import datetime

import pytz


def now_utc() -> datetime:
    return datetime.now(pytz.UTC)


def coerce_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def hours_between(start: datetime | None, end: datetime | None) -> float | None:
    """Elapsed hours from ``start`` to ``end``; ``None`` if either side is unknown."""
    start = coerce_utc(start)
    end = coerce_utc(end)
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / 3600.0
