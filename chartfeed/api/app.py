"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import AsyncIterator

from fastapi import FastAPI

from chartfeed import __version__
from chartfeed.api.routes import chart, system
from chartfeed.config import get_settings
from chartfeed.marketdata.cache import run_periodic_sweep
from chartfeed.marketdata.gateway import ChartDataGateway

logger = logging.getLogger(__name__)

_started_at = time.monotonic()


def get_uptime() -> float:
    return time.monotonic() - _started_at


def create_app(gateway: ChartDataGateway | None = None) -> FastAPI:
    """Build the app. A gateway passed in is used as-is and not closed on shutdown."""

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        settings = get_settings()
        owned = gateway is None
        gw = gateway or ChartDataGateway.from_settings(settings)
        app.state.gateway = gw
        if not gw.has_api_key:
            logger.warning("DATA_API_KEY is not set; chart requests will fail with 503")

        sweeper = asyncio.create_task(
            run_periodic_sweep(gw.caches, settings.cache_sweep_interval_seconds),
            name="chartfeed-cache-sweep",
        )
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            if owned:
                await gw.close()

    app = FastAPI(title="chartfeed", version=__version__, lifespan=lifespan)
    app.include_router(system.router, prefix="/api")
    app.include_router(chart.router, prefix="/api")
    return app
