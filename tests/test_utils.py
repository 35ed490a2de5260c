from __future__ import annotations

import asyncio
import json
import logging

import pytest

from chartfeed.utils import RateLimiter, _JSONFormatter, gather_or_cancel, retry_on


def test_json_formatter_emits_one_object_per_record() -> None:
    record = logging.LogRecord("chartfeed.test", logging.WARNING, __file__, 1, "hello %s", ("world",), None)
    payload = json.loads(_JSONFormatter().format(record))
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "chartfeed.test"
    assert payload["msg"] == "hello world"


class Flaky(Exception):
    pass


@pytest.mark.asyncio
async def test_retry_on_reraises_last_error() -> None:
    attempts: list[int] = []

    @retry_on((Flaky,), max_attempts=3, base_delay=0.0)
    async def always_fails() -> None:
        attempts.append(1)
        raise Flaky("nope")

    with pytest.raises(Flaky):
        await always_fails()
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_retry_on_ignores_other_errors() -> None:
    attempts: list[int] = []

    @retry_on((Flaky,), max_attempts=3, base_delay=0.0)
    async def wrong_kind() -> None:
        attempts.append(1)
        raise ValueError("bad")

    with pytest.raises(ValueError):
        await wrong_kind()
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_retry_on_returns_after_recovery() -> None:
    attempts: list[int] = []

    @retry_on((Flaky,), max_attempts=3, base_delay=0.0)
    async def recovers() -> str:
        attempts.append(1)
        if len(attempts) < 2:
            raise Flaky("once")
        return "ok"

    assert await recovers() == "ok"


@pytest.mark.asyncio
async def test_rate_limiter_allows_burst_up_to_limit() -> None:
    limiter = RateLimiter(max_calls=3, period=60.0)
    for _ in range(3):
        async with limiter:
            pass


@pytest.mark.asyncio
async def test_gather_or_cancel_returns_results_in_order() -> None:
    async def value(x: int) -> int:
        await asyncio.sleep(0)
        return x

    assert await gather_or_cancel(value(1), value(2)) == [1, 2]


@pytest.mark.asyncio
async def test_gather_or_cancel_cancels_siblings_on_failure() -> None:
    sibling_cancelled: list[bool] = []

    async def fails() -> None:
        raise Flaky("first")

    async def slow() -> None:
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            sibling_cancelled.append(True)
            raise

    with pytest.raises(Flaky):
        await gather_or_cancel(fails(), slow())
    assert sibling_cancelled == [True]
