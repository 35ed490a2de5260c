"""Chart data gateway: bars + price RSI + volume-delta RSI behind a session-aware cache.

API routes and the CLI should consume chart data through this module.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any

from chartfeed.config import Settings, get_settings
from chartfeed.marketdata.cache import FixedTTLCache, MarketAwareCache, TimedCache
from chartfeed.marketdata.calendar import TradingCalendar
from chartfeed.marketdata.client import DataApiClient
from chartfeed.marketdata.errors import ChartFeedError, InvalidRequestError, NoDataError
from chartfeed.marketdata.history import HistoryLoader
from chartfeed.marketdata.indicators import OscillatorPoint, rsi_points, volume_delta_rsi
from chartfeed.marketdata.normalize import DailyBar, IntradayBar, normalize_cumulative_volumes
from chartfeed.marketdata.symbols import normalize_symbol
from chartfeed.marketdata.timezones import align_close_series, align_intraday_bars, eastern_midnight_epoch
from chartfeed.marketdata.volume_delta import VolumeDeltaPoint, compute_volume_delta, interval_seconds
from chartfeed.utils import gather_or_cancel, utc_now

logger = logging.getLogger(__name__)

CHART_INTERVALS = ("5min", "15min", "30min", "1hour", "4hour", "1day", "1week")
VD_SOURCE_INTERVALS = ("1min", "5min", "15min", "30min", "1hour", "4hour")

# Fine bars are kept from this many parent spans before the first parent bar.
_FINE_WINDOW_PARENTS = 20
_MAX_RSI_LENGTH = 200
_MAX_COMPARISON_DAYS = 60


@dataclass(frozen=True)
class CandleBar:
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class ChartResult:
    symbol: str
    interval: str
    bars: list[CandleBar]
    rsi: list[OscillatorPoint]
    volume_delta_rsi: list[OscillatorPoint]
    volume_delta: list[VolumeDeltaPoint] = field(default_factory=list)
    vd_source_interval: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "interval": self.interval,
            "bars": [asdict(b) for b in self.bars],
            "rsi": [asdict(p) for p in self.rsi],
            "volumeDeltaRsi": {
                "rsi": [asdict(p) for p in self.volume_delta_rsi],
                "sourceInterval": self.vd_source_interval,
            },
            "volumeDelta": [asdict(p) for p in self.volume_delta],
        }


def default_vd_source_interval(interval: str) -> str:
    return "1min" if interval == "5min" else "5min"


def aggregate_weekly(bars: list[DailyBar]) -> list[DailyBar]:
    """Roll daily bars up into Monday-keyed weekly bars."""
    weeks: dict[str, list[DailyBar]] = {}
    for bar in sorted(bars, key=lambda b: b.date):
        day = date.fromisoformat(bar.date)
        monday = (day - timedelta(days=day.weekday())).isoformat()
        weeks.setdefault(monday, []).append(bar)

    out: list[DailyBar] = []
    for monday in sorted(weeks):
        group = weeks[monday]
        out.append(
            DailyBar(
                date=monday,
                open=group[0].open,
                high=max(b.high for b in group),
                low=min(b.low for b in group),
                close=group[-1].close,
                volume=sum(b.volume for b in group),
            )
        )
    return out


def _candle(bar: IntradayBar) -> CandleBar:
    return CandleBar(
        time=int(bar.time),
        open=bar.open,
        high=bar.high,
        low=bar.low,
        close=bar.close,
        volume=bar.volume,
    )


def _daily_candle(bar: DailyBar) -> CandleBar:
    return CandleBar(
        time=eastern_midnight_epoch(bar.date),
        open=bar.open,
        high=bar.high,
        low=bar.low,
        close=bar.close,
        volume=bar.volume,
    )


class ChartDataGateway:
    """Single entrypoint for chart data in chartfeed."""

    def __init__(
        self,
        client: DataApiClient,
        *,
        history: HistoryLoader | None = None,
        chart_cache: TimedCache[ChartResult] | None = None,
        comparison_cache: TimedCache[dict[str, Any]] | None = None,
        rsi_length: int = 14,
        intraday_lookback_days: int = 548,
        daily_lookback_days: int = 400,
    ) -> None:
        self._client = client
        self._history = history or HistoryLoader(client, lookback_days=intraday_lookback_days)
        self._chart_cache = chart_cache if chart_cache is not None else MarketAwareCache()
        self._comparison_cache = comparison_cache if comparison_cache is not None else FixedTTLCache()
        self._rsi_length = rsi_length
        self._intraday_lookback_days = intraday_lookback_days
        self._daily_lookback_days = daily_lookback_days

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        client: DataApiClient | None = None,
        calendar: TradingCalendar | None = None,
    ) -> ChartDataGateway:
        settings = settings or get_settings()
        client = client or DataApiClient.from_settings(settings)
        return cls(
            client,
            history=HistoryLoader(
                client,
                slice_days=settings.intraday_slice_days,
                lookback_days=settings.intraday_lookback_days,
            ),
            chart_cache=MarketAwareCache(
                settings.chart_cache_regular_hours_seconds,
                calendar=calendar or TradingCalendar.from_settings(settings),
                max_entries=settings.cache_max_entries,
            ),
            comparison_cache=FixedTTLCache(
                settings.auxiliary_cache_ttl_seconds,
                max_entries=settings.cache_max_entries,
            ),
            rsi_length=settings.rsi_length,
            intraday_lookback_days=settings.intraday_lookback_days,
            daily_lookback_days=settings.daily_lookback_days,
        )

    @property
    def caches(self) -> list[TimedCache[Any]]:
        return [self._chart_cache, self._comparison_cache]

    @property
    def has_api_key(self) -> bool:
        return self._client.has_api_key

    async def close(self) -> None:
        await self._client.close()

    # ── Chart data ────────────────────────────────────────────────────

    async def get_chart_data(
        self,
        symbol: str,
        interval: str,
        lookback_days: int | None = None,
        rsi_length: int | None = None,
        vd_source_interval: str | None = None,
    ) -> ChartResult:
        """Bars, price RSI and volume-delta RSI for one symbol/interval.

        Raises:
            InvalidRequestError: bad symbol, interval, source interval or length.
            NoDataError: the provider has no bars for the request.
            DataApiError / MissingApiKeyError: upstream failures.
        """
        sym = normalize_symbol(symbol)
        if not sym:
            raise InvalidRequestError("symbol is required")
        if interval not in CHART_INTERVALS:
            raise InvalidRequestError(
                f"unsupported interval {interval!r}", context={"supported": list(CHART_INTERVALS)}
            )
        length = self._rsi_length if rsi_length is None else int(rsi_length)
        if not 1 <= length <= _MAX_RSI_LENGTH:
            raise InvalidRequestError(f"rsi_length must be between 1 and {_MAX_RSI_LENGTH}")
        if lookback_days is not None and lookback_days < 1:
            raise InvalidRequestError("lookback_days must be positive")

        source = vd_source_interval or default_vd_source_interval(interval)
        if source not in VD_SOURCE_INTERVALS or interval_seconds(source) >= interval_seconds(interval):
            raise InvalidRequestError(
                f"volume-delta source interval {source!r} must be finer than {interval!r}"
            )

        cache_key = f"{sym}|{interval}|{lookback_days or ''}|{length}|{source}"
        cached = self._chart_cache.get(cache_key)
        if cached is not None:
            return cached

        span = interval_seconds(interval)
        bars, fine = await gather_or_cancel(
            self._parent_bars(sym, interval, lookback_days),
            self._fine_bars(sym, source, lookback_days),
        )
        if not bars:
            raise NoDataError(f"No {interval} data available for {sym}")

        window_start = bars[0].time - _FINE_WINDOW_PARENTS * span
        window_end = bars[-1].time + span
        fine = [b for b in fine if window_start <= b.time < window_end]

        deltas = compute_volume_delta(bars, fine, span)
        result = ChartResult(
            symbol=sym,
            interval=interval,
            bars=bars,
            rsi=rsi_points(bars, length),
            volume_delta_rsi=volume_delta_rsi(deltas, length),
            volume_delta=deltas,
            vd_source_interval=source,
        )
        self._chart_cache.set(cache_key, result)
        return result

    async def _parent_bars(self, symbol: str, interval: str, lookback_days: int | None) -> list[CandleBar]:
        if interval in ("1day", "1week"):
            daily = await self._history.fetch_daily_history(symbol)
            lookback = lookback_days or self._daily_lookback_days
            cutoff = (utc_now().date() - timedelta(days=lookback)).isoformat()
            daily = [b for b in daily if b.date >= cutoff]
            if interval == "1week":
                daily = aggregate_weekly(daily)
            return [_daily_candle(b) for b in daily]

        rows = await self._history.fetch_intraday_history(symbol, interval, lookback_days)
        return [_candle(b) for b in align_intraday_bars(rows)]

    async def _fine_bars(self, symbol: str, interval: str, lookback_days: int | None) -> list[IntradayBar]:
        lookback = min(lookback_days or self._intraday_lookback_days, self._intraday_lookback_days)
        try:
            rows = await self._history.fetch_intraday_history(symbol, interval, lookback)
        except ChartFeedError as exc:
            logger.warning("Volume-delta source %s unavailable for %s: %s", interval, symbol, exc)
            return []
        return align_intraday_bars(normalize_cumulative_volumes(rows))

    # ── Cross-ticker comparison ───────────────────────────────────────

    async def get_intraday_comparison(
        self,
        symbol: str,
        benchmark: str = "SPY",
        days: int = 5,
    ) -> dict[str, Any]:
        """Close-vs-close of ``symbol`` against ``benchmark`` on 30-minute buckets."""
        sym = normalize_symbol(symbol)
        bench = normalize_symbol(benchmark)
        if not sym or not bench:
            raise InvalidRequestError("symbol and benchmark are required")
        days = min(max(int(days), 1), _MAX_COMPARISON_DAYS)

        cache_key = f"{sym}|{bench}|{days}"
        cached = self._comparison_cache.get(cache_key)
        if cached is not None:
            return cached

        lookback = days * 2 + 7
        bench_rows, sym_rows = await gather_or_cancel(
            self._history.fetch_intraday_history(bench, "30min", lookback),
            self._history.fetch_intraday_history(sym, "30min", lookback),
        )
        points = align_close_series(
            align_intraday_bars(bench_rows),
            align_intraday_bars(sym_rows),
            bucket_minutes=30,
            days=days,
        )
        if not points:
            raise NoDataError(f"No overlapping regular-hours data for {sym} and {bench}")

        payload = {"symbol": sym, "benchmark": bench, "days": days, "points": points}
        self._comparison_cache.set(cache_key, payload)
        return payload
