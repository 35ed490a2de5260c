from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from chartfeed.config import Settings
from chartfeed.marketdata.cache import (
    FixedTTLCache,
    MarketAwareCache,
    TimedCache,
    get_next_cache_expiry,
    run_periodic_sweep,
)
from chartfeed.marketdata.calendar import TradingCalendar
from chartfeed.marketdata.timezones import EASTERN


class FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _et(*args: int) -> datetime:
    return datetime(*args, tzinfo=EASTERN)


def test_entry_expiring_in_the_past_is_a_miss() -> None:
    clock = FakeClock(1_000.0)
    cache: TimedCache[str] = TimedCache(clock=clock)
    cache.set("k", "v", expires_at=999.0)
    assert cache.get("k") is None
    assert "k" not in cache


def test_entry_is_served_until_expiry() -> None:
    clock = FakeClock(1_000.0)
    cache: TimedCache[str] = TimedCache(clock=clock)
    cache.set("k", "v", expires_at=1_010.0)
    assert cache.get("k") == "v"
    clock.now = 1_010.0
    assert cache.get("k") is None


def test_timed_cache_requires_explicit_expiry() -> None:
    with pytest.raises(TypeError):
        TimedCache().set("k", "v")


def test_lru_cap_evicts_least_recent() -> None:
    clock = FakeClock(0.0)
    cache: TimedCache[int] = TimedCache(max_entries=2, clock=clock)
    cache.set("a", 1, expires_at=100)
    cache.set("b", 2, expires_at=100)
    assert cache.get("a") == 1
    cache.set("c", 3, expires_at=100)
    assert cache.get("b") is None
    assert cache.get("a") == 1 and cache.get("c") == 3
    assert len(cache) == 2


def test_sweep_removes_only_expired() -> None:
    clock = FakeClock(50.0)
    cache: TimedCache[int] = TimedCache(clock=clock)
    cache.set("old", 1, expires_at=10)
    cache.set("new", 2, expires_at=100)
    assert cache.sweep() == 1
    assert len(cache) == 1


def test_fixed_ttl_cache() -> None:
    clock = FakeClock(100.0)
    cache: FixedTTLCache[str] = FixedTTLCache(300, clock=clock)
    cache.set("k", "v")
    clock.now = 399.0
    assert cache.get("k") == "v"
    clock.now = 400.0
    assert cache.get("k") is None


def test_expiry_during_session_is_capped_at_close() -> None:
    now = _et(2024, 3, 13, 15, 0)
    assert get_next_cache_expiry(now, 7200) == _et(2024, 3, 13, 16, 0)
    morning = _et(2024, 3, 13, 10, 0)
    assert get_next_cache_expiry(morning, 7200) == morning + timedelta(hours=2)


def test_expiry_outside_session_is_next_open() -> None:
    # Saturday -> Monday open
    assert get_next_cache_expiry(_et(2024, 3, 16, 12, 0), 7200) == _et(2024, 3, 18, 9, 30)
    # Friday after close -> Monday open
    assert get_next_cache_expiry(_et(2024, 3, 15, 16, 30), 7200) == _et(2024, 3, 18, 9, 30)
    # Pre-market -> same-day open
    assert get_next_cache_expiry(_et(2024, 3, 13, 7, 0), 7200) == _et(2024, 3, 13, 9, 30)


def test_calendar_holidays_and_early_closes() -> None:
    calendar = TradingCalendar(holidays={"2024-03-18"}, early_closes={"2024-11-29": "13:00"})
    assert get_next_cache_expiry(_et(2024, 3, 16, 12, 0), 7200, calendar) == _et(2024, 3, 19, 9, 30)
    assert get_next_cache_expiry(_et(2024, 11, 29, 12, 30), 7200, calendar) == _et(2024, 11, 29, 13, 0)
    assert not calendar.is_trading_day("2024-03-18")
    assert calendar.previous_trading_day("2024-03-19").isoformat() == "2024-03-15"
    assert calendar.next_trading_day("2024-03-15").isoformat() == "2024-03-19"


def test_calendar_from_settings_skips_configured_holiday() -> None:
    settings = Settings(
        _env_file=None,
        market_holidays=["2024-12-25"],
        market_early_closes={"2024-12-24": "13:00"},
    )
    calendar = TradingCalendar.from_settings(settings)
    # Christmas Eve closes early; the next open skips Christmas Day.
    assert get_next_cache_expiry(_et(2024, 12, 24, 12, 0), 7200, calendar) == _et(2024, 12, 24, 13, 0)
    assert get_next_cache_expiry(_et(2024, 12, 24, 14, 0), 7200, calendar) == _et(2024, 12, 26, 9, 30)
    assert not calendar.is_open(_et(2024, 12, 25, 11, 0))


def test_expiry_is_never_before_now() -> None:
    start = datetime(2024, 3, 10, tzinfo=timezone.utc)
    for step in range(0, 14 * 24 * 4):
        now = start + timedelta(minutes=15 * step)
        assert get_next_cache_expiry(now, 7200) >= now


def test_market_aware_cache_uses_session_expiry() -> None:
    clock = FakeClock(_et(2024, 3, 13, 15, 30).timestamp())
    cache: MarketAwareCache[str] = MarketAwareCache(7200, clock=clock)
    cache.set("k", "v")
    clock.now = _et(2024, 3, 13, 15, 59).timestamp()
    assert cache.get("k") == "v"
    clock.now = _et(2024, 3, 13, 16, 0).timestamp()
    assert cache.get("k") is None


@pytest.mark.asyncio
async def test_periodic_sweep_runs_until_cancelled() -> None:
    clock = FakeClock(100.0)
    cache: TimedCache[int] = TimedCache(clock=clock)
    cache.set("gone", 1, expires_at=50)
    task = asyncio.create_task(run_periodic_sweep([cache], interval_seconds=0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(cache) == 0
