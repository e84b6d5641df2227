"""
Market session clock in New York time.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time as dtime
from typing import Callable, Optional

from gridarb.core.errors import ConfigurationError
from gridarb.core.utils import MARKET_TZ, now_in_market_tz
from gridarb.infra.logging_cfg import log_event

log = logging.getLogger("gridarb")


def parse_clock_time(raw: str) -> dtime:
    try:
        return dtime.fromisoformat(raw)
    except ValueError as exc:
        raise ConfigurationError(f"invalid market time {raw!r}, expected HH:MM[:SS]") from exc


class MarketClock:
    def __init__(
        self,
        open_at: str = "09:30:10",
        close_at: str = "15:55:00",
        trading_end_at: str = "15:50:00",
        now_fn: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.open_at = parse_clock_time(open_at)
        self.close_at = parse_clock_time(close_at)
        self.trading_end_at = parse_clock_time(trading_end_at)
        if not self.open_at < self.trading_end_at <= self.close_at:
            raise ConfigurationError("market times must satisfy open < trading end <= close")
        self._now = now_fn or now_in_market_tz

    def now(self) -> datetime:
        current = self._now()
        if current.tzinfo is None:
            return current.replace(tzinfo=MARKET_TZ)
        return current.astimezone(MARKET_TZ)

    def _at(self, t: dtime) -> datetime:
        return self.now().replace(hour=t.hour, minute=t.minute, second=t.second, microsecond=0)

    def is_weekday(self) -> bool:
        return self.now().weekday() < 5

    def has_opened(self) -> bool:
        return self.now() >= self._at(self.open_at)

    def is_closed(self) -> bool:
        return self.now() >= self._at(self.close_at)

    def is_open(self) -> bool:
        return self.is_weekday() and self.has_opened() and not self.is_closed()

    def is_trading_end_passed(self) -> bool:
        return self.now() >= self._at(self.trading_end_at)

    def seconds_until_open(self) -> float:
        return max(0.0, (self._at(self.open_at) - self.now()).total_seconds())

    async def wait_until_open(self, poll_sec: float = 30.0) -> bool:
        """Sleep until the open. Returns False when today's session is already over."""
        while not self.has_opened():
            remaining = self.seconds_until_open()
            log_event(log, "market_not_open", seconds_until_open=round(remaining, 1))
            await asyncio.sleep(min(poll_sec, max(remaining, 0.01)))
        return not self.is_closed() and self.is_weekday()
