from __future__ import annotations

from dataclasses import dataclass

import pytest

from chartfeed.marketdata.indicators import calculate_rma, calculate_rsi, rsi_points, volume_delta_rsi
from chartfeed.marketdata.volume_delta import VolumeDeltaPoint


@dataclass
class Bar:
    time: int
    close: float


def test_rsi_edge_lengths() -> None:
    assert calculate_rsi([]) == []
    assert calculate_rsi([42.0]) == [50.0]
    values = calculate_rsi([1.0, 2.0, 1.5])
    assert values[0] == values[1]


def test_partial_warmup_uses_mean_of_changes_seen_so_far() -> None:
    values = calculate_rsi([10.0, 11.0, 10.0], period=14)
    # One gain, no losses: RS is pinned to 100.
    assert values[1] == pytest.approx(100 - 100 / 101)
    # Mean gain 0.5, mean loss 0.5.
    assert values[2] == pytest.approx(50.0)


def test_wilder_smoothing_after_period() -> None:
    closes = [10.0, 11.0, 10.0, 12.0]
    values = calculate_rsi(closes, period=2)
    # i=2: simple mean of first two changes -> gain 0.5, loss 0.5
    assert values[2] == pytest.approx(50.0)
    # i=3: gain (0.5*1 + 2)/2 = 1.25, loss (0.5*1 + 0)/2 = 0.25 -> RS 5
    assert values[3] == pytest.approx(100 - 100 / 6)


def test_strictly_rising_series_tends_to_top_and_never_falls() -> None:
    closes = [100.0 + i for i in range(40)]
    values = calculate_rsi(closes, period=14)
    assert all(b >= a for a, b in zip(values, values[1:]))
    assert values[-1] > 99.0


def test_rsi_is_bounded_and_aligned_with_bars() -> None:
    closes = [50, 52, 49, 49, 55, 40, 41, 60, 58, 58, 57, 70, 20, 25, 30, 29, 31, 31, 35, 10]
    bars = [Bar(time=1_700_000_000 + i * 300, close=float(c)) for i, c in enumerate(closes)]
    points = rsi_points(bars, period=5)
    assert len(points) <= len(bars)
    times = {b.time for b in bars}
    for point in points:
        assert 0.0 <= point.value <= 100.0
        assert point.time in times
        assert round(point.value, 2) == point.value


def test_rma_skips_none_without_resetting() -> None:
    assert calculate_rma([None, 2.0, None, 4.0], period=2) == [None, 2.0, None, 3.0]
    assert calculate_rma([None, None], period=3) == [None, None]
    assert calculate_rma([], period=3) == []


def test_volume_delta_rsi_omits_bars_without_data() -> None:
    points = [
        VolumeDeltaPoint(time=1, delta=None),
        VolumeDeltaPoint(time=2, delta=100.0),
        VolumeDeltaPoint(time=3, delta=None),
        VolumeDeltaPoint(time=4, delta=-100.0),
    ]
    out = volume_delta_rsi(points, period=2)
    assert [p.time for p in out] == [2, 4]
    assert out[0].value == round(100 - 100 / 101, 2)
    # Gains 100 -> 50, losses 0 -> 50: balanced.
    assert out[1].value == 50.0
    assert volume_delta_rsi([VolumeDeltaPoint(time=1, delta=None)]) == []
