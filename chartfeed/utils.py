"""Shared utilities: logging, rate-limit backoff, request throttle, task joins, time helpers."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")


# ── Structured JSON logging ───────────────────────────────────────────

class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger with structured JSON output to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # httpx logs every request URL at INFO, including the API key.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# ── Backoff for rate-limited provider calls ───────────────────────────

def retry_on(
    exceptions: tuple[type[BaseException], ...],
    max_attempts: int = 3,
    base_delay: float = 1.5,
    max_delay: float = 30.0,
) -> Callable:
    """Async retry decorator with exponential backoff for selected errors.

    The final failure is re-raised unchanged so callers can still classify it.

    Usage::

        @retry_on((RateLimitedError,), max_attempts=3)
        async def fetch():
            ...
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 1
            while True:
                try:
                    return await fn(*args, **kwargs)
                except exceptions as exc:
                    if attempt >= max_attempts:
                        raise
                    wait = min(max_delay, base_delay * (2 ** (attempt - 1)))
                    logging.getLogger(fn.__module__).warning(
                        "%s rate-limited (attempt %d/%d): %s, retrying in %.1fs",
                        fn.__qualname__,
                        attempt,
                        max_attempts,
                        exc,
                        wait,
                    )
                    await asyncio.sleep(wait)
                    attempt += 1

        return wrapper

    return decorator


# ── Rate limiter ──────────────────────────────────────────────────────

class RateLimiter:
    """Sliding-window request throttle for async code.

    Usage::

        limiter = RateLimiter(max_calls=10, period=1.0)
        async with limiter:
            await do_api_call()
    """

    def __init__(self, max_calls: int, period: float = 1.0) -> None:
        self._max_calls = max(1, int(max_calls))
        self._period = period
        self._calls: list[float] = []
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> RateLimiter:
        async with self._lock:
            now = time.monotonic()
            self._calls = [t for t in self._calls if now - t < self._period]
            if len(self._calls) >= self._max_calls:
                sleep_for = self._period - (now - self._calls[0])
                if sleep_for > 0:
                    await asyncio.sleep(sleep_for)
            self._calls.append(time.monotonic())
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


# ── Concurrency ───────────────────────────────────────────────────────

async def gather_or_cancel(*aws: Awaitable[Any]) -> list[Any]:
    """``asyncio.gather`` that cancels the remaining awaitables when one fails."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


# ── Timestamp helpers ─────────────────────────────────────────────────

def utc_now() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_now() -> float:
    """Current instant as epoch seconds; the default clock for caches."""
    return time.time()
