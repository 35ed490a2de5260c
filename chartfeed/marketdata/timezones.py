"""Exchange time handling: Eastern wall clock <-> UTC epoch, session checks, buckets.

The provider stamps intraday bars with New York wall-clock strings. All joins
between independently fetched series key on the epoch produced here, never
on the raw provider string.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Iterable
from zoneinfo import ZoneInfo

from chartfeed.marketdata.normalize import IntradayBar, normalize_provider_datetime

EASTERN = ZoneInfo("America/New_York")

REGULAR_OPEN_MINUTES = 9 * 60 + 30
REGULAR_CLOSE_MINUTES = 16 * 60


def parse_provider_datetime(value: str | None) -> datetime | None:
    """Naive exchange-local datetime from a provider timestamp string."""
    stamp = normalize_provider_datetime(value)
    if stamp is None:
        return None
    try:
        return datetime.strptime(stamp, "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None


def eastern_to_epoch(value: str | datetime | None) -> int | None:
    """Exchange-local wall clock -> UTC epoch seconds.

    The UTC offset is resolved for that specific date, so EST and EDT bars
    both land on the right instant.
    """
    if isinstance(value, datetime):
        local = value
    else:
        local = parse_provider_datetime(value)
    if local is None:
        return None
    if local.tzinfo is None:
        local = local.replace(tzinfo=EASTERN)
    return int(local.timestamp())


def epoch_to_eastern(epoch: float) -> datetime:
    return datetime.fromtimestamp(float(epoch), tz=timezone.utc).astimezone(EASTERN)


def eastern_date_key(epoch: float) -> str:
    return epoch_to_eastern(epoch).strftime("%Y-%m-%d")


def eastern_midnight_epoch(day: str | date) -> int:
    """Epoch of 00:00 New York time on ``day`` (used as the daily bar time)."""
    if isinstance(day, str):
        day = date.fromisoformat(day[:10])
    return int(datetime(day.year, day.month, day.day, tzinfo=EASTERN).timestamp())


def _as_eastern(value: float | int | str | datetime) -> datetime | None:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=EASTERN)
        return value.astimezone(EASTERN)
    if isinstance(value, str):
        local = parse_provider_datetime(value)
        return local.replace(tzinfo=EASTERN) if local else None
    return epoch_to_eastern(value)


def is_regular_hours(value: float | int | str | datetime) -> bool:
    """09:30 <= local time < 16:00, Monday to Friday."""
    local = _as_eastern(value)
    if local is None or local.weekday() >= 5:
        return False
    minutes = local.hour * 60 + local.minute
    return REGULAR_OPEN_MINUTES <= minutes < REGULAR_CLOSE_MINUTES


def floor_to_bucket(epoch: float, minutes: int) -> int:
    size = max(1, int(minutes)) * 60
    return int(epoch) // size * size


def align_intraday_bars(bars: Iterable[IntradayBar]) -> list[IntradayBar]:
    """Fill ``time`` on each bar; unparseable bars are dropped. Sorted by time."""
    aligned: list[IntradayBar] = []
    for bar in bars:
        epoch = eastern_to_epoch(bar.datetime)
        if epoch is None:
            continue
        aligned.append(replace(bar, time=epoch))
    aligned.sort(key=lambda b: b.time)
    return aligned


def align_close_series(
    benchmark_bars: Iterable[IntradayBar],
    comparison_bars: Iterable[IntradayBar],
    bucket_minutes: int = 30,
    days: int | None = None,
) -> list[dict[str, float | int]]:
    """Point-wise close comparison of two series on common regular-hours buckets."""

    def _bucketed(bars: Iterable[IntradayBar]) -> dict[int, float]:
        out: dict[int, float] = {}
        for bar in bars:
            epoch = bar.time if bar.time is not None else eastern_to_epoch(bar.datetime)
            if epoch is None or not is_regular_hours(epoch):
                continue
            out[floor_to_bucket(epoch, bucket_minutes)] = bar.close
        return out

    bench = _bucketed(benchmark_bars)
    comp = _bucketed(comparison_bars)
    common = sorted(set(bench) & set(comp))

    if days is not None and days > 0:
        keep = sorted({eastern_date_key(t) for t in common})[-days:]
        allowed = set(keep)
        common = [t for t in common if eastern_date_key(t) in allowed]

    return [
        {"time": t, "benchmark": round(bench[t], 2), "comparison": round(comp[t], 2)}
        for t in common
    ]
