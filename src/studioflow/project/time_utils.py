from __future__ import annotations

from datetime import datetime, timedelta, timezone


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_within(dt: datetime, window: timedelta, now: datetime | None = None) -> bool:
    """Return True when ``dt`` is no older than ``window`` relative to ``now``."""
    reference = ensure_utc(now or utc_now())
    return reference - ensure_utc(dt) < window
