"""Chart endpoints: bars with RSI / volume-delta RSI, and cross-ticker comparison."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request

from chartfeed.marketdata.errors import ChartFeedError
from chartfeed.marketdata.gateway import ChartDataGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chart"])


def _gateway(request: Request) -> ChartDataGateway:
    return request.app.state.gateway


def _http_error(exc: ChartFeedError) -> HTTPException:
    if exc.http_status >= 500:
        logger.error("Chart request failed: %s", exc)
    return HTTPException(exc.http_status, exc.message)


@router.get("/chart")
async def chart(
    request: Request,
    ticker: str = Query(..., min_length=1, max_length=16),
    interval: str = Query("4hour"),
    lookback_days: int | None = Query(None, alias="lookbackDays", ge=1, le=3650),
    rsi_length: int | None = Query(None, alias="rsiLength", ge=1, le=200),
    vd_source_interval: str | None = Query(None, alias="vdSourceInterval"),
):
    try:
        result = await _gateway(request).get_chart_data(
            ticker,
            interval,
            lookback_days=lookback_days,
            rsi_length=rsi_length,
            vd_source_interval=vd_source_interval,
        )
    except ChartFeedError as exc:
        raise _http_error(exc) from exc
    return result.to_dict()


@router.get("/chart/compare")
async def compare(
    request: Request,
    ticker: str = Query("SVIX", min_length=1, max_length=16),
    benchmark: str = Query("SPY", min_length=1, max_length=16),
    days: int = Query(5, ge=1, le=60),
):
    try:
        return await _gateway(request).get_intraday_comparison(ticker, benchmark=benchmark, days=days)
    except ChartFeedError as exc:
        raise _http_error(exc) from exc
