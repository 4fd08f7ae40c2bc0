"""Calendar helpers for the distribution period.

Tokens are only handed out from the 1st to the 15th of each month. Every
function takes an optional ``now`` so callers (and tests) can pin the date;
without it the local wall clock is used.
"""

from __future__ import annotations

from datetime import datetime

PERIOD_FIRST_DAY = 1
PERIOD_LAST_DAY = 15


def _resolve(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now()


def current_date_key(now: datetime | None = None) -> str:
    """Local date as ``YYYY-MM-DD``."""
    return _resolve(now).strftime("%Y-%m-%d")


def is_distribution_period(now: datetime | None = None) -> bool:
    day = _resolve(now).day
    return PERIOD_FIRST_DAY <= day <= PERIOD_LAST_DAY


def days_remaining_in_period(now: datetime | None = None) -> int:
    """Days left after today in the current distribution period (0 outside it)."""
    day = _resolve(now).day
    if day <= PERIOD_LAST_DAY:
        return PERIOD_LAST_DAY - day
    return 0
