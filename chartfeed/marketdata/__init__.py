"""Market data interfaces for chartfeed."""

from .cache import FixedTTLCache, MarketAwareCache, TimedCache, get_next_cache_expiry
from .client import DataApiClient, sanitize_url
from .gateway import CandleBar, ChartDataGateway, ChartResult
from .history import HistoryLoader, build_date_slices
from .symbols import symbol_candidates

__all__ = [
    "CandleBar",
    "ChartDataGateway",
    "ChartResult",
    "DataApiClient",
    "FixedTTLCache",
    "HistoryLoader",
    "MarketAwareCache",
    "TimedCache",
    "build_date_slices",
    "get_next_cache_expiry",
    "sanitize_url",
    "symbol_candidates",
]
