"""Exchange session calendar.

Weekday-only by default; known holidays and early closes can be supplied
so the cache does not wake up for sessions that never open.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterable, Mapping

from chartfeed.config import Settings, get_settings
from chartfeed.marketdata.timezones import EASTERN

REGULAR_OPEN = time(9, 30)
REGULAR_CLOSE = time(16, 0)

_MAX_SCAN_DAYS = 15


def _as_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class TradingCalendar:
    """Session days and open/close times in New York time.

    ``holidays`` are ``YYYY-MM-DD`` strings or dates; ``early_closes`` maps a
    day to its close time as ``"HH:MM"`` (e.g. ``{"2024-11-29": "13:00"}``).
    """

    def __init__(
        self,
        holidays: Iterable[date | str] = (),
        early_closes: Mapping[date | str, str] | None = None,
    ) -> None:
        self._holidays = {_as_date(d) for d in holidays}
        self._early_closes: dict[date, time] = {}
        for day, hhmm in (early_closes or {}).items():
            hour, minute = str(hhmm).split(":", 1)
            self._early_closes[_as_date(day)] = time(int(hour), int(minute))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> TradingCalendar:
        settings = settings or get_settings()
        return cls(settings.market_holidays, settings.market_early_closes)

    def is_trading_day(self, day: date | str) -> bool:
        day = _as_date(day)
        return day.weekday() < 5 and day not in self._holidays

    def close_time(self, day: date | str) -> time:
        return self._early_closes.get(_as_date(day), REGULAR_CLOSE)

    def next_trading_day(self, day: date | str) -> date:
        cursor = _as_date(day)
        for _ in range(_MAX_SCAN_DAYS):
            cursor += timedelta(days=1)
            if self.is_trading_day(cursor):
                return cursor
        return cursor

    def previous_trading_day(self, day: date | str) -> date:
        cursor = _as_date(day)
        for _ in range(_MAX_SCAN_DAYS):
            cursor -= timedelta(days=1)
            if self.is_trading_day(cursor):
                return cursor
        return cursor

    def market_open(self, day: date | str) -> datetime:
        return datetime.combine(_as_date(day), REGULAR_OPEN, tzinfo=EASTERN)

    def market_close(self, day: date | str) -> datetime:
        day = _as_date(day)
        return datetime.combine(day, self.close_time(day), tzinfo=EASTERN)

    def is_open(self, now: datetime) -> bool:
        local = now.astimezone(EASTERN)
        if not self.is_trading_day(local.date()):
            return False
        return self.market_open(local.date()) <= local < self.market_close(local.date())

    def next_market_open(self, now: datetime) -> datetime:
        """The first regular open strictly after ``now``."""
        local = now.astimezone(EASTERN)
        today = local.date()
        if self.is_trading_day(today) and local < self.market_open(today):
            return self.market_open(today)
        return self.market_open(self.next_trading_day(today))
