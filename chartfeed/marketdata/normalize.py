"""Map heterogeneous provider rows onto canonical daily and intraday bars.

All provider shape sniffing for row fields (``close`` vs ``price``, ``date``
vs ``datetime``, missing OHLC) lives here. Rows that cannot be repaired are
dropped, never emitted half-built.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, replace
from typing import Any, Iterable

from chartfeed.marketdata.errors import CloseOnlySeriesError

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")
_DATETIME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ](\d{1,2}):(\d{2})(?::(\d{2}))?")


@dataclass(frozen=True)
class DailyBar:
    date: str
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class IntradayBar:
    """One intraday bar.

    ``datetime`` is the exchange-local wall clock as ``YYYY-MM-DD HH:MM:SS``.
    ``time`` is the UTC epoch second, filled in by the time-zone aligner.
    """

    datetime: str
    open: float
    high: float
    low: float
    close: float
    volume: float
    time: int | None = None


def _finite(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _volume(value: Any) -> float:
    number = _finite(value)
    return number if number is not None and number > 0 else 0.0


def normalize_provider_datetime(value: Any) -> str | None:
    """``2024-03-01T09:30:00.000Z`` -> ``2024-03-01 09:30:00``; date-only -> None."""
    if not isinstance(value, str):
        return None
    match = _DATETIME_RE.match(value.strip())
    if not match:
        return None
    day, hour, minute, second = match.groups()
    if int(hour) > 23 or int(minute) > 59 or int(second or 0) > 59:
        return None
    return f"{day} {int(hour):02d}:{minute}:{second or '00'}"


def normalize_daily_rows(rows: Iterable[dict[str, Any]], *, require_ohlc: bool = True) -> list[DailyBar]:
    """Canonical daily bars, ascending and unique by date.

    Raises :class:`CloseOnlySeriesError` when rows exist but none of them
    carries its own open/high/low and ``require_ohlc`` is set.
    """
    by_date: dict[str, DailyBar] = {}
    saw_rows = False
    saw_explicit_ohlc = False

    for row in rows or []:
        if not isinstance(row, dict):
            continue
        match = _DATE_RE.match(str(row.get("date") or "").strip())
        close = _finite(row.get("close"))
        if close is None:
            close = _finite(row.get("price"))
        if not match or close is None:
            continue
        saw_rows = True

        raw_open = _finite(row.get("open"))
        raw_high = _finite(row.get("high"))
        raw_low = _finite(row.get("low"))
        if raw_open is not None or raw_high is not None or raw_low is not None:
            saw_explicit_ohlc = True

        open_ = raw_open if raw_open is not None else close
        high = max(raw_high if raw_high is not None else close, open_, close)
        low = min(raw_low if raw_low is not None else close, open_, close)
        day = match.group(1)
        by_date[day] = DailyBar(
            date=day,
            open=open_,
            high=high,
            low=low,
            close=close,
            volume=_volume(row.get("volume")),
        )

    if require_ohlc and saw_rows and not saw_explicit_ohlc:
        raise CloseOnlySeriesError(
            "daily series carries close prices only",
            context={"rows": len(by_date)},
        )
    return [by_date[day] for day in sorted(by_date)]


def normalize_intraday_row(row: dict[str, Any]) -> IntradayBar | None:
    if not isinstance(row, dict):
        return None
    stamp = normalize_provider_datetime(row.get("date") or row.get("datetime"))
    close = _finite(row.get("close"))
    if close is None:
        close = _finite(row.get("price"))
    if stamp is None or close is None:
        return None

    open_ = _finite(row.get("open"))
    open_ = close if open_ is None else open_
    high = _finite(row.get("high"))
    low = _finite(row.get("low"))
    return IntradayBar(
        datetime=stamp,
        open=open_,
        high=max(close if high is None else high, open_, close),
        low=min(close if low is None else low, open_, close),
        close=close,
        volume=_volume(row.get("volume")),
    )


def normalize_intraday_rows(rows: Iterable[dict[str, Any]]) -> list[IntradayBar]:
    """Canonical intraday bars sorted by timestamp; last row wins per timestamp."""
    by_stamp: dict[str, IntradayBar] = {}
    for row in rows or []:
        bar = normalize_intraday_row(row)
        if bar is not None:
            by_stamp[bar.datetime] = bar
    return [by_stamp[key] for key in sorted(by_stamp)]


def _looks_cumulative(volumes: list[float]) -> bool:
    if len(volumes) < 4:
        return False
    steps = len(volumes) - 1
    non_decreasing = sum(1 for prev, cur in zip(volumes, volumes[1:]) if cur >= prev)
    positive = [cur - prev for prev, cur in zip(volumes, volumes[1:]) if cur > prev]
    if not positive or non_decreasing / steps < 0.9:
        return False
    avg_step = sum(positive) / len(positive)
    return avg_step > 0 and max(volumes) / avg_step >= 6


def normalize_cumulative_volumes(bars: list[IntradayBar]) -> list[IntradayBar]:
    """Convert running-total volumes to per-bar volumes, one exchange day at a time.

    Some provider feeds report session-cumulative volume. A day is treated as
    cumulative when at least 90% of its steps are non-decreasing and the
    largest volume dwarfs the average positive step (ratio >= 6).
    """
    if len(bars) < 2:
        return list(bars)

    days: dict[str, list[int]] = {}
    for index, bar in enumerate(bars):
        days.setdefault(bar.datetime[:10], []).append(index)

    out = list(bars)
    for day, indexes in days.items():
        volumes = [bars[i].volume for i in indexes]
        if not _looks_cumulative(volumes):
            continue
        logger.debug("Converting cumulative volumes for %s (%d bars)", day, len(indexes))
        for position in range(1, len(indexes)):
            i = indexes[position]
            out[i] = replace(bars[i], volume=max(0.0, volumes[position] - volumes[position - 1]))
    return out
