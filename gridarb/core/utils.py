"""
Utility helpers.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

MARKET_TZ = ZoneInfo("America/New_York")


def now_in_market_tz() -> datetime:
    return datetime.now(MARKET_TZ)


def today_str() -> str:
    return now_in_market_tz().date().isoformat()


def current_timestamp() -> str:
    """Timestamp used on trading logs when the quote carries none, e.g. '03-21-2025 at 10:15:02AM ET'."""
    now = now_in_market_tz()
    return f"{now.strftime('%m-%d-%Y')} at {now.strftime('%I:%M:%S%p')} ET"
