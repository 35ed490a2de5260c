"""chartfeed CLI entrypoint.

Serve the API, or print one chart as JSON::

    python -m chartfeed.main --server
    python -m chartfeed.main --chart AAPL --interval 1hour
    python -m chartfeed.main --compare SVIX --benchmark SPY --days 5
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from chartfeed import __version__
from chartfeed.config import get_settings
from chartfeed.marketdata.errors import ChartFeedError
from chartfeed.marketdata.gateway import CHART_INTERVALS, ChartDataGateway
from chartfeed.utils import setup_logging

logger = logging.getLogger("chartfeed")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chartfeed",
        description="chartfeed: OHLCV bars with RSI and volume-delta RSI",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--server", action="store_true", help="Run FastAPI server (default)")
    group.add_argument("--chart", metavar="SYMBOL", help="Print chart data for SYMBOL as JSON")
    group.add_argument("--compare", metavar="SYMBOL", help="Print SYMBOL vs benchmark comparison")

    parser.add_argument("--interval", default="4hour", choices=CHART_INTERVALS)
    parser.add_argument("--lookback-days", type=int, default=None)
    parser.add_argument("--rsi-length", type=int, default=None)
    parser.add_argument("--vd-source", default=None, help="Finer interval for volume delta")
    parser.add_argument("--benchmark", default="SPY")
    parser.add_argument("--days", type=int, default=5)
    parser.add_argument("--version", action="version", version=f"chartfeed {__version__}")
    return parser


async def _print_once(args: argparse.Namespace) -> int:
    gateway = ChartDataGateway.from_settings(get_settings())
    try:
        if args.chart:
            result = await gateway.get_chart_data(
                args.chart,
                args.interval,
                lookback_days=args.lookback_days,
                rsi_length=args.rsi_length,
                vd_source_interval=args.vd_source,
            )
            payload = result.to_dict()
        else:
            payload = await gateway.get_intraday_comparison(
                args.compare, benchmark=args.benchmark, days=args.days
            )
    except ChartFeedError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        await gateway.close()

    json.dump(payload, sys.stdout)
    sys.stdout.write("\n")
    return 0


async def _serve() -> None:
    import uvicorn

    from chartfeed.api.app import create_app

    settings = get_settings()
    config = uvicorn.Config(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        if args.chart or args.compare:
            sys.exit(asyncio.run(_print_once(args)))
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
