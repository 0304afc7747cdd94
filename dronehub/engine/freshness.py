"""Absolute-deadline checks for optimistic records."""
from __future__ import annotations

from datetime import datetime, timedelta


def is_fresh(recorded_at: datetime | None, now: datetime, window_seconds: float) -> bool:
    """True while *recorded_at* is less than *window_seconds* old.

    A missing timestamp is never fresh. Timestamps in the future count
    as fresh.
    """
    if recorded_at is None:
        return False
    return now - recorded_at < timedelta(seconds=window_seconds)


def deadline(now: datetime, window_seconds: float) -> datetime:
    return now + timedelta(seconds=max(window_seconds, 0.0))
