"""System endpoints: health and cache status."""

from __future__ import annotations

from fastapi import APIRouter, Request

from chartfeed import __version__

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(request: Request):
    from chartfeed.api.app import get_uptime

    gateway = request.app.state.gateway
    return {
        "status": "ok" if gateway.has_api_key else "degraded",
        "version": __version__,
        "uptime_seconds": round(get_uptime(), 1),
        "components": {"data_api_key": gateway.has_api_key},
        "cache_entries": {type(c).__name__: len(c) for c in gateway.caches},
    }
