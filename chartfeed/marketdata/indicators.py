"""Wilder RSI over prices and over volume delta."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol, Sequence

from chartfeed.marketdata.volume_delta import VolumeDeltaPoint


class ClosingBar(Protocol):
    time: int | None
    close: float


@dataclass(frozen=True)
class OscillatorPoint:
    time: int
    value: float


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    rs = 100.0 if avg_loss == 0 else avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def calculate_rsi(closes: Sequence[float], period: int = 14) -> list[float]:
    """Wilder RSI with a partial warm-up.

    For ``i < period`` the averages are simple means of the ``i`` changes seen
    so far, so early bars still get a value. At ``i == period`` they are the
    simple mean of the first ``period`` changes, and Wilder smoothing applies
    after that. Index 0 copies index 1.
    """
    n = len(closes)
    if n == 0:
        return []
    if n == 1:
        return [50.0]
    period = max(1, int(period))

    values = [50.0] * n
    gain_sum = 0.0
    loss_sum = 0.0
    avg_gain = 0.0
    avg_loss = 0.0

    for i in range(1, n):
        change = float(closes[i]) - float(closes[i - 1])
        gain = max(change, 0.0)
        loss = max(-change, 0.0)

        if i <= period:
            gain_sum += gain
            loss_sum += loss
            avg_gain = gain_sum / i
            avg_loss = loss_sum / i
        else:
            avg_gain = (avg_gain * (period - 1) + gain) / period
            avg_loss = (avg_loss * (period - 1) + loss) / period

        value = _rsi_from_averages(avg_gain, avg_loss)
        values[i] = value if math.isfinite(value) else values[i - 1]

    values[0] = values[1]
    return values


def rsi_points(bars: Sequence[ClosingBar], period: int = 14) -> list[OscillatorPoint]:
    values = calculate_rsi([bar.close for bar in bars], period)
    return [
        OscillatorPoint(time=int(bar.time), value=round(value, 2))
        for bar, value in zip(bars, values)
        if bar.time is not None
    ]


def calculate_rma(values: Sequence[float | None], period: int = 14) -> list[float | None]:
    """Null-tolerant Wilder moving average.

    The first defined value seeds the average. Later None entries are skipped
    without touching the running value and stay None in the output, as does
    everything before the seed.
    """
    period = max(1, int(period))
    out: list[float | None] = [None] * len(values)
    rma: float | None = None
    for i, value in enumerate(values):
        if value is None or not math.isfinite(value):
            continue
        rma = float(value) if rma is None else (rma * (period - 1) + value) / period
        out[i] = rma
    return out


def volume_delta_rsi(points: Sequence[VolumeDeltaPoint], period: int = 14) -> list[OscillatorPoint]:
    """RSI of the volume-delta series; bars without a defined average are omitted."""
    gains = [None if p.delta is None else max(p.delta, 0.0) for p in points]
    losses = [None if p.delta is None else max(-p.delta, 0.0) for p in points]
    avg_gains = calculate_rma(gains, period)
    avg_losses = calculate_rma(losses, period)

    out: list[OscillatorPoint] = []
    for point, avg_gain, avg_loss in zip(points, avg_gains, avg_losses):
        if avg_gain is None or avg_loss is None:
            continue
        value = _rsi_from_averages(avg_gain, avg_loss)
        if math.isfinite(value):
            out.append(OscillatorPoint(time=point.time, value=round(value, 2)))
    return out
