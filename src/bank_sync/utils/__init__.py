"""
Utility functions for bank sync.
"""

from bank_sync.utils.date_utils import lookback_days, lookback_start, parse_iso_date

__all__ = [
    "lookback_days",
    "lookback_start",
    "parse_iso_date",
]
