"""
Date utilities for lookback windows and command line dates.
"""

from datetime import date, datetime, timedelta
from typing import Optional

FIRST_RUN_LOOKBACK_DAYS = 180
DEFAULT_LOOKBACK_DAYS = 30


def lookback_days(days: Optional[int] = None, first_run: bool = False) -> int:
    """
    Number of days of mail to scan.

    An explicit value always wins. Otherwise the first run (nothing
    processed yet) reaches back 180 days and later runs 30 days.

    Raises:
        ValueError: If days is negative
    """
    if days is not None:
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")
        return days
    return FIRST_RUN_LOOKBACK_DAYS if first_run else DEFAULT_LOOKBACK_DAYS


def lookback_start(days: int) -> date:
    """The first day inside a lookback window ending today."""
    return (datetime.now() - timedelta(days=days)).date()


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a YYYY-MM-DD string.

    Returns:
        The date, or None for an empty value

    Raises:
        ValueError: If the value is not a valid YYYY-MM-DD date
    """
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD") from None
