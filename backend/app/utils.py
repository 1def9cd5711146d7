"""
Shared utility functions.
"""

import logging
import os
import time
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple
from fastapi import HTTPException

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """
    Return the current UTC time as a naive datetime (no tzinfo).
    Naive datetimes are used because our DB columns are TIMESTAMP WITHOUT TIME ZONE.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clean_env(name: str) -> str:
    """Read an env var, trimmed and stripped of one pair of surrounding quotes."""
    value = (os.environ.get(name) or "").strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return value


def parse_iso_date(value: str, field_name: str = "date") -> date:
    """Parse YYYY-MM-DD, raising a 400 instead of letting ValueError become a 500."""
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {field_name}: {value!r}. Expected YYYY-MM-DD.",
        )


def shop_day_window(
    start: Optional[date],
    end: Optional[date],
    utc_offset_hours: int = 8,
) -> Tuple[datetime, datetime]:
    """
    Shop-local calendar window: start day 00:00:00 through end day 23:59:59.999
    at the given UTC offset. Missing dates default to today in that zone.
    """
    tz = timezone(timedelta(hours=utc_offset_hours))
    if start is None or end is None:
        today = datetime.now(tz).date()
        start = start or today
        end = end or today
    window_start = datetime(start.year, start.month, start.day, tzinfo=tz)
    window_end = datetime(end.year, end.month, end.day, 23, 59, 59, 999000, tzinfo=tz)
    return window_start, window_end


def deadline_from_now(seconds: float) -> float:
    """A ``time.monotonic()`` deadline ``seconds`` from now."""
    return time.monotonic() + seconds


def safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0 when the denominator is not positive."""
    return numerator / denominator if denominator > 0 else 0.0
