"""Process-local TTL caches with explicit expiry instants and an injected clock.

``MarketAwareCache`` ties expiry to the exchange session: refresh every
fixed interval while the market is open, then hold until the next open.
``FixedTTLCache`` is the plain companion for auxiliary lookups.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generic, Iterable, TypeVar

from chartfeed.marketdata.calendar import TradingCalendar
from chartfeed.marketdata.timezones import EASTERN
from chartfeed.utils import epoch_now

logger = logging.getLogger(__name__)

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[V]):
    value: V
    expires_at: float


def get_next_cache_expiry(
    now: datetime,
    fixed_seconds: float,
    calendar: TradingCalendar | None = None,
) -> datetime:
    """When a value computed at ``now`` should expire.

    During the regular session: ``min(now + fixed_seconds, today's close)``.
    Outside it: the next regular open. Never earlier than ``now``.
    """
    calendar = calendar or TradingCalendar()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if calendar.is_open(now):
        close = calendar.market_close(now.astimezone(EASTERN).date())
        expiry = min(now + timedelta(seconds=max(0.0, fixed_seconds)), close)
    else:
        expiry = calendar.next_market_open(now)
    return max(expiry, now)


class TimedCache(Generic[V]):
    """LRU-capped mapping of key -> :class:`CacheEntry`.

    Reads drop expired entries and report a miss. No locking: the event loop
    is single-threaded and writes are whole-entry overwrites.
    """

    def __init__(self, max_entries: int = 4000, clock: Clock | None = None) -> None:
        self._max_entries = max(1, int(max_entries))
        self._clock = clock or epoch_now
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.value

    def set(self, key: str, value: V, expires_at: float | None = None) -> None:
        if expires_at is None:
            expires_at = self.default_expiry()
        self._entries[key] = CacheEntry(value=value, expires_at=float(expires_at))
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def default_expiry(self) -> float:
        raise TypeError(f"{type(self).__name__}.set needs an explicit expires_at")

    def sweep(self) -> int:
        """Remove every expired entry; returns how many went."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


class MarketAwareCache(TimedCache[V]):
    def __init__(
        self,
        fixed_seconds: float = 7200,
        *,
        calendar: TradingCalendar | None = None,
        max_entries: int = 4000,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(max_entries=max_entries, clock=clock)
        self._fixed_seconds = fixed_seconds
        self._calendar = calendar or TradingCalendar()

    @property
    def calendar(self) -> TradingCalendar:
        return self._calendar

    def default_expiry(self) -> float:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return get_next_cache_expiry(now, self._fixed_seconds, self._calendar).timestamp()


class FixedTTLCache(TimedCache[V]):
    def __init__(
        self,
        ttl_seconds: float = 300,
        *,
        max_entries: int = 4000,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(max_entries=max_entries, clock=clock)
        self._ttl = ttl_seconds

    def default_expiry(self) -> float:
        return self._clock() + self._ttl


async def run_periodic_sweep(caches: Iterable[TimedCache[Any]], interval_seconds: float = 900) -> None:
    """Sweep ``caches`` every ``interval_seconds`` until cancelled."""
    caches = list(caches)
    while True:
        await asyncio.sleep(interval_seconds)
        removed = sum(cache.sweep() for cache in caches)
        if removed:
            logger.debug("Cache sweep removed %d expired entries", removed)
