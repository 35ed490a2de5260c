from __future__ import annotations

import pytest

from chartfeed.marketdata.errors import CloseOnlySeriesError
from chartfeed.marketdata.normalize import (
    IntradayBar,
    normalize_cumulative_volumes,
    normalize_daily_rows,
    normalize_intraday_rows,
    normalize_provider_datetime,
)


def test_close_only_daily_series_is_rejected() -> None:
    rows = [
        {"date": "2024-03-01", "price": 10.0, "volume": 100},
        {"date": "2024-03-04", "price": 10.5, "volume": 120},
    ]
    with pytest.raises(CloseOnlySeriesError):
        normalize_daily_rows(rows)

    relaxed = normalize_daily_rows(rows, require_ohlc=False)
    assert [b.close for b in relaxed] == [10.0, 10.5]
    assert relaxed[0].open == relaxed[0].high == relaxed[0].low == 10.0


def test_one_explicit_ohlc_row_accepts_the_series() -> None:
    rows = [
        {"date": "2024-03-01", "close": 10.0},
        {"date": "2024-03-04", "open": 10.0, "high": 11.0, "low": 9.5, "close": 10.5},
    ]
    bars = normalize_daily_rows(rows)
    assert len(bars) == 2


def test_daily_high_low_are_repaired_sorted_and_deduplicated() -> None:
    rows = [
        {"date": "2024-03-04", "open": 12.0, "high": 11.0, "low": 10.0, "close": 9.0, "volume": "5"},
        {"date": "2024-03-01", "open": 10.0, "high": 10.5, "low": 9.8, "close": 10.2},
        {"date": "2024-03-01", "open": 10.0, "high": 10.6, "low": 9.7, "close": 10.3},
        {"date": "", "close": 1.0},
        {"date": "2024-03-05", "close": "nan"},
    ]
    bars = normalize_daily_rows(rows)
    assert [b.date for b in bars] == ["2024-03-01", "2024-03-04"]
    assert bars[0].close == 10.3
    repaired = bars[1]
    assert repaired.high == 12.0
    assert repaired.low == 9.0
    assert repaired.volume == 5.0
    for bar in bars:
        assert bar.high >= max(bar.open, bar.close)
        assert bar.low <= min(bar.open, bar.close)


def test_empty_daily_series_is_not_close_only() -> None:
    assert normalize_daily_rows([]) == []


def test_provider_datetime_formats() -> None:
    assert normalize_provider_datetime("2024-03-01T09:30:00.000Z") == "2024-03-01 09:30:00"
    assert normalize_provider_datetime("2024-03-01 9:35") == "2024-03-01 09:35:00"
    assert normalize_provider_datetime("2024-03-01") is None
    assert normalize_provider_datetime("garbage") is None
    assert normalize_provider_datetime(None) is None


def test_intraday_rows_default_missing_fields() -> None:
    rows = [
        {"datetime": "2024-03-01T09:35:00Z", "close": 10.0},
        {"date": "2024-03-01 09:30:00", "open": 9.0, "high": 10.5, "low": 8.9, "close": 9.5, "volume": 300},
        {"date": "2024-03-01", "close": 9.0},
        {"date": "2024-03-01 09:40:00"},
    ]
    bars = normalize_intraday_rows(rows)
    assert [b.datetime for b in bars] == ["2024-03-01 09:30:00", "2024-03-01 09:35:00"]
    flat = bars[1]
    assert (flat.open, flat.high, flat.low, flat.volume) == (10.0, 10.0, 10.0, 0.0)
    assert flat.time is None


def _bar(stamp: str, volume: float) -> IntradayBar:
    return IntradayBar(datetime=stamp, open=1, high=1, low=1, close=1, volume=volume)


def test_cumulative_volumes_are_converted_per_day() -> None:
    cumulative = [_bar(f"2024-03-01 09:{30 + i * 5}:00", v) for i, v in enumerate([100, 150, 200, 250, 300, 350])]
    per_bar = [_bar(f"2024-03-04 09:{30 + i * 5}:00", v) for i, v in enumerate([500, 120, 300, 90, 400])]
    out = normalize_cumulative_volumes(cumulative + per_bar)
    assert [b.volume for b in out[:6]] == [100, 50, 50, 50, 50, 50]
    assert [b.volume for b in out[6:]] == [500, 120, 300, 90, 400]


def test_short_days_are_left_alone() -> None:
    bars = [_bar("2024-03-01 09:30:00", 10), _bar("2024-03-01 09:35:00", 20), _bar("2024-03-01 09:40:00", 30)]
    assert [b.volume for b in normalize_cumulative_volumes(bars)] == [10, 20, 30]
