"""Signed (buy/sell attributed) volume per parent bar from a finer bar stream."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)

INTERVAL_SECONDS: dict[str, int] = {
    "1min": 60,
    "5min": 5 * 60,
    "15min": 15 * 60,
    "30min": 30 * 60,
    "1hour": 60 * 60,
    "4hour": 4 * 60 * 60,
    "1day": 24 * 60 * 60,
    "1week": 7 * 24 * 60 * 60,
}


class TimedBar(Protocol):
    time: int | None
    open: float
    close: float
    volume: float


@dataclass(frozen=True)
class VolumeDeltaPoint:
    """``delta`` is None when the parent bar had no fine bars at all."""

    time: int
    delta: float | None


def interval_seconds(interval: str) -> int:
    try:
        return INTERVAL_SECONDS[interval]
    except KeyError:
        raise ValueError(f"unsupported interval: {interval!r}") from None


def compute_volume_delta(
    parent_bars: Sequence[TimedBar],
    fine_bars: Sequence[TimedBar],
    interval_seconds: int,
) -> list[VolumeDeltaPoint]:
    """Sum signed fine-bar volume into each parent window.

    A fine bar at ``t`` belongs to parent ``i`` when
    ``parent[i].time <= t < parent[i].time + interval_seconds``; bars before the
    first parent or inside gaps are ignored. Parents must be sorted ascending.

    Direction: close > open is bullish, close < open bearish. A flat bar is
    compared with the previous fine bar's close, and if that is flat too it
    carries the previous direction. Direction state runs across parent
    boundaries. With no direction known yet a flat bar contributes nothing.
    """
    if not parent_bars:
        return []

    starts = [int(bar.time) for bar in parent_bars]
    buckets: list[list[TimedBar]] = [[] for _ in parent_bars]
    index = 0
    for bar in sorted((b for b in fine_bars if b.time is not None), key=lambda b: b.time):
        t = int(bar.time)
        while index + 1 < len(starts) and t >= starts[index + 1]:
            index += 1
        if starts[index] <= t < starts[index] + interval_seconds:
            buckets[index].append(bar)

    last_close: float | None = None
    last_bull: bool | None = None
    points: list[VolumeDeltaPoint] = []

    for start, bucket in zip(starts, buckets):
        if not bucket:
            points.append(VolumeDeltaPoint(time=start, delta=None))
            continue

        delta = 0.0
        for bar in bucket:
            if bar.close > bar.open:
                bull: bool | None = True
            elif bar.close < bar.open:
                bull = False
            elif last_close is not None and bar.close > last_close:
                bull = True
            elif last_close is not None and bar.close < last_close:
                bull = False
            else:
                bull = last_bull

            if bull is True:
                delta += bar.volume
            elif bull is False:
                delta -= bar.volume
            if bull is not None:
                last_bull = bull
            last_close = bar.close

        points.append(VolumeDeltaPoint(time=start, delta=delta))

    return points
