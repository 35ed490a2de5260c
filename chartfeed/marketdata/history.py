"""Multi-request history assembly: date slices, symbol variants, daily endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Mapping

from chartfeed.config import DEFAULT_SLICE_DAYS
from chartfeed.marketdata.client import DataApiClient
from chartfeed.marketdata.errors import ChartFeedError, CloseOnlySeriesError, is_fatal
from chartfeed.marketdata.normalize import (
    DailyBar,
    IntradayBar,
    normalize_daily_rows,
    normalize_intraday_row,
)
from chartfeed.marketdata.symbols import symbol_candidates
from chartfeed.utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 548
_SINGLE_REQUEST_SLACK_DAYS = 7
# The provider truncates a single intraday response at this many rows.
PROVIDER_ROW_CAP = 50_000


@dataclass(frozen=True)
class CandidateQuery:
    symbol: str
    interval: str
    from_date: str | None = None
    to_date: str | None = None

    @property
    def label(self) -> str:
        span = f" {self.from_date}..{self.to_date}" if self.from_date or self.to_date else ""
        return f"DataAPI {self.interval} {self.symbol}{span}"


def build_date_slices(start: date, end: date, slice_days: int) -> list[tuple[date, date]]:
    """Consecutive inclusive ``(from, to)`` pairs covering ``[start, end]``."""
    step = max(1, int(slice_days))
    slices: list[tuple[date, date]] = []
    cursor = start
    while cursor <= end:
        slice_end = min(cursor + timedelta(days=step - 1), end)
        slices.append((cursor, slice_end))
        cursor = slice_end + timedelta(days=1)
    return slices


class HistoryLoader:
    """Fetches intraday and daily history through a :class:`DataApiClient`."""

    def __init__(
        self,
        client: DataApiClient,
        *,
        slice_days: Mapping[str, int] | None = None,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    ) -> None:
        self._client = client
        self._slice_days = dict(DEFAULT_SLICE_DAYS if slice_days is None else slice_days)
        self._lookback_days = lookback_days

    def slice_days_for(self, interval: str) -> int:
        return max(1, int(self._slice_days.get(interval, 30)))

    async def _fetch_query(self, query: CandidateQuery) -> list[IntradayBar]:
        urls = self._client.intraday_urls(query.symbol, query.interval, query.from_date, query.to_date)
        rows = await self._client.fetch_array_with_fallback(query.label, urls)
        bars = (normalize_intraday_row(row) for row in rows)
        return [bar for bar in bars if bar is not None]

    async def fetch_intraday_history_single(
        self,
        symbol: str,
        interval: str,
        lookback_days: int | None = None,
        today: date | None = None,
    ) -> list[IntradayBar]:
        """Walk date slices oldest-first and merge them by timestamp.

        Short lookbacks try one bounded request first. An empty answer there is
        final; a failed or capped answer falls back to the slice walk.

        A later slice overwrites an earlier one at the same timestamp. Fatal
        errors abort the walk; other slice errors are logged and skipped. When
        no slice produced anything, one unbounded request is tried.
        """
        lookback = max(1, int(lookback_days or self._lookback_days))
        end = today or utc_now().date()
        start = end - timedelta(days=lookback)
        slice_days = self.slice_days_for(interval)

        if lookback <= slice_days + _SINGLE_REQUEST_SLACK_DAYS:
            query = CandidateQuery(symbol, interval, start.isoformat(), end.isoformat())
            try:
                bars = await self._fetch_query(query)
            except ChartFeedError as exc:
                if is_fatal(exc):
                    raise
                logger.warning("%s single-range fetch failed, falling back to slices: %s", query.label, exc)
            else:
                if len(bars) < PROVIDER_ROW_CAP:
                    unique = {bar.datetime: bar for bar in bars}
                    return [unique[key] for key in sorted(unique)]
                logger.warning("%s single-range payload hit the row cap, retrying with slices", query.label)

        merged: dict[str, IntradayBar] = {}
        slice_error: ChartFeedError | None = None
        for slice_start, slice_end in build_date_slices(start, end, slice_days):
            query = CandidateQuery(symbol, interval, slice_start.isoformat(), slice_end.isoformat())
            try:
                bars = await self._fetch_query(query)
            except ChartFeedError as exc:
                if is_fatal(exc):
                    raise
                logger.warning("%s slice failed: %s", query.label, exc)
                slice_error = exc
                continue
            for bar in bars:
                merged[bar.datetime] = bar

        if not merged:
            try:
                bars = await self._fetch_query(CandidateQuery(symbol, interval))
            except ChartFeedError:
                if slice_error is not None:
                    raise slice_error
                raise
            for bar in bars:
                merged[bar.datetime] = bar

        return [merged[key] for key in sorted(merged)]

    async def fetch_intraday_history(
        self,
        symbol: str,
        interval: str,
        lookback_days: int | None = None,
        today: date | None = None,
    ) -> list[IntradayBar]:
        """Slice-and-merge history, retried across ticker spellings."""
        last_error: ChartFeedError | None = None
        candidates = symbol_candidates(symbol)
        for candidate in candidates:
            try:
                bars = await self.fetch_intraday_history_single(candidate, interval, lookback_days, today)
            except ChartFeedError as exc:
                if is_fatal(exc):
                    raise
                logger.warning("Intraday %s history failed for %s: %s", interval, candidate, exc)
                last_error = exc
                continue
            if bars:
                if candidate != candidates[0]:
                    logger.info("Using symbol variant %s for %s (%s)", candidate, symbol, interval)
                return bars

        if last_error is not None:
            raise last_error
        return []

    async def fetch_daily_history(self, symbol: str) -> list[DailyBar]:
        """Daily OHLC bars, trying each full-OHLC endpoint and ticker spelling.

        A close-only answer is not good enough for candles, so the next
        endpoint is tried; if nothing better turns up the close-only error
        is raised.
        """
        last_error: ChartFeedError | None = None
        close_only: CloseOnlySeriesError | None = None
        candidates = symbol_candidates(symbol)
        for candidate in candidates:
            for url in self._client.daily_urls(candidate):
                label = f"DataAPI 1day {candidate}"
                try:
                    rows = await self._client.fetch_array_with_fallback(label, [url])
                    bars = normalize_daily_rows(rows, require_ohlc=True)
                except CloseOnlySeriesError as exc:
                    logger.warning("%s returned close-only data, trying next endpoint", label)
                    close_only = exc
                    continue
                except ChartFeedError as exc:
                    if is_fatal(exc):
                        raise
                    last_error = exc
                    continue
                if bars:
                    if candidate != candidates[0]:
                        logger.info("Using symbol variant %s for %s (1day)", candidate, symbol)
                    return bars

        if close_only is not None:
            raise close_only
        if last_error is not None:
            raise last_error
        return []
