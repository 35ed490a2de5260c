"""HTTP client for the quote provider with ordered endpoint fallback.

One logical query (say, "5min bars for AAPL in March") maps to an ordered
list of candidate URLs: the current API first, the legacy API second. The
client walks those candidates, turns each attempt into a tagged
:class:`FetchOutcome`, and a single reducer decides whether to return,
keep going, or give up.
"""

from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from chartfeed.config import Settings, get_settings
from chartfeed.marketdata.errors import (
    ChartFeedError,
    DataApiError,
    MissingApiKeyError,
    PayloadShapeError,
    ProviderMessageError,
    RateLimitedError,
    RequestTimeoutError,
    SubscriptionRestrictedError,
    TransportError,
    UpstreamHTTPError,
    is_fatal,
)
from chartfeed.utils import RateLimiter, retry_on

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://financialmodelingprep.com/stable"
DEFAULT_LEGACY_BASE_URL = "https://financialmodelingprep.com/api/v3"

_ERROR_KEYS = ("Error Message", "Error message", "error", "message", "Note")
_ARRAY_KEYS = ("historical", "results", "data")

_RESTRICTED_RE = re.compile(
    r"restricted endpoint|legacy endpoint|current subscription"
    r"|plan\s+doesn'?t\s+include\s+this\s+data\s+timeframe|premium",
    re.IGNORECASE,
)
_RATE_LIMIT_RE = re.compile(r"limit reach|too many requests|rate limit", re.IGNORECASE)
_APIKEY_RE = re.compile(r"([?&]api_?key=)[^&#]*", re.IGNORECASE)


def sanitize_url(url: str) -> str:
    """Replace the value of any ``apikey``/``apiKey`` query parameter with ``***``."""
    return _APIKEY_RE.sub(r"\1***", str(url))


def extract_api_error(payload: Any) -> str | None:
    """Return the provider's embedded error message, if the body carries one."""
    if not isinstance(payload, dict):
        return None
    if str(payload.get("status") or "").upper() == "ERROR":
        for key in ("error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return "ERROR"
    for key in _ERROR_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def to_array_payload(payload: Any) -> list[dict[str, Any]] | None:
    """Unwrap the row array from a provider body, or None for any other shape."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in _ARRAY_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return None


class OutcomeKind(enum.Enum):
    OK = "ok"
    EMPTY = "empty"
    ERROR = "error"


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one candidate URL attempt."""

    kind: OutcomeKind
    url: str
    rows: list[dict[str, Any]] = field(default_factory=list)
    error: ChartFeedError | None = None

    @classmethod
    def ok(cls, url: str, rows: list[dict[str, Any]]) -> FetchOutcome:
        return cls(OutcomeKind.OK, url, rows=rows)

    @classmethod
    def empty(cls, url: str) -> FetchOutcome:
        return cls(OutcomeKind.EMPTY, url)

    @classmethod
    def failed(cls, url: str, error: ChartFeedError) -> FetchOutcome:
        return cls(OutcomeKind.ERROR, url, error=error)


class DataApiClient:
    """Async provider client owning one shared ``httpx.AsyncClient``.

    Usage::

        async with DataApiClient.from_settings() as client:
            rows = await client.fetch_array_with_fallback(
                "AAPL 5min", client.intraday_urls("AAPL", "5min")
            )
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        legacy_base_url: str = DEFAULT_LEGACY_BASE_URL,
        timeout_seconds: float = 15.0,
        max_requests_per_second: int = 10,
        rate_limit_attempts: int = 3,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.legacy_base_url = legacy_base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._limiter = RateLimiter(max_calls=max_requests_per_second, period=1.0)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._get_json = retry_on(
            (RateLimitedError,),
            max_attempts=max(1, rate_limit_attempts),
            base_delay=1.5,
            max_delay=30.0,
        )(self._get_json_once)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> DataApiClient:
        settings = settings or get_settings()
        return cls(
            settings.data_api_key,
            base_url=settings.data_api_base_url,
            legacy_base_url=settings.data_api_legacy_base_url,
            timeout_seconds=settings.data_api_timeout_seconds,
            max_requests_per_second=settings.data_api_max_requests_per_second,
            http_client=http_client,
        )

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    async def __aenter__(self) -> DataApiClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── URL builders ──────────────────────────────────────────────────

    def intraday_urls(
        self,
        symbol: str,
        interval: str,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> list[str]:
        """Current and legacy intraday chart URLs for one symbol/range."""
        bounds: dict[str, str] = {}
        if from_date:
            bounds["from"] = from_date
        if to_date:
            bounds["to"] = to_date
        primary = httpx.URL(
            f"{self.base_url}/historical-chart/{interval}",
            params={"symbol": symbol, **bounds},
        )
        legacy = httpx.URL(
            f"{self.legacy_base_url}/historical-chart/{interval}/{symbol}",
            params=bounds,
        )
        return [str(primary), str(legacy)]

    def daily_urls(self, symbol: str) -> list[str]:
        """Full-OHLC end-of-day URLs, current API first."""
        primary = httpx.URL(f"{self.base_url}/historical-price-eod/full", params={"symbol": symbol})
        legacy = httpx.URL(f"{self.legacy_base_url}/historical-price-full/{symbol}")
        return [str(primary), str(legacy)]

    # ── Single request ────────────────────────────────────────────────

    async def fetch_json(self, url: str, label: str) -> Any:
        """GET ``url`` once (plus rate-limit backoff) and return the parsed body."""
        if not self._api_key:
            raise MissingApiKeyError("DATA_API_KEY is not configured")
        return await self._get_json(url, label)

    async def _get_json_once(self, url: str, label: str) -> Any:
        request_url = httpx.URL(url)
        if "apikey" not in request_url.params and "apiKey" not in request_url.params:
            request_url = request_url.copy_set_param("apikey", self._api_key)
        safe_url = sanitize_url(url)

        async with self._limiter:
            try:
                resp = await self._client.get(request_url, timeout=self._timeout)
            except httpx.TimeoutException as exc:
                raise RequestTimeoutError(
                    f"{label} request timed out after {self._timeout:g}s", url=safe_url
                ) from exc
            except httpx.HTTPError as exc:
                raise TransportError(f"{label} transport error: {exc}", url=safe_url) from exc

        text = resp.text or ""
        try:
            payload = json.loads(text) if text.strip() else None
        except ValueError:
            payload = None
        api_error = extract_api_error(payload)
        details = api_error or text.strip()[:180] or f"HTTP {resp.status_code}"

        if resp.status_code == 429:
            raise RateLimitedError(
                f"{label} request failed (429): {details}", url=safe_url, status_code=429
            )
        if not resp.is_success:
            if _RESTRICTED_RE.search(details):
                raise SubscriptionRestrictedError(
                    f"{label} request failed ({resp.status_code}): {details}",
                    url=safe_url,
                    status_code=resp.status_code,
                )
            raise UpstreamHTTPError(
                f"{label} request failed ({resp.status_code}): {details}",
                url=safe_url,
                status_code=resp.status_code,
            )

        if api_error:
            if _RATE_LIMIT_RE.search(api_error):
                raise RateLimitedError(f"{label} request failed (429): {api_error}", url=safe_url)
            if _RESTRICTED_RE.search(api_error):
                raise SubscriptionRestrictedError(f"{label} API error: {api_error}", url=safe_url)
            raise ProviderMessageError(f"{label} API error: {api_error}", url=safe_url)

        if payload is None:
            raise PayloadShapeError(f"{label} returned a non-JSON body", url=safe_url)
        return payload

    # ── Fallback over candidate URLs ──────────────────────────────────

    async def _iter_outcomes(self, label: str, urls: list[str]) -> AsyncIterator[FetchOutcome]:
        for url in urls:
            try:
                payload = await self.fetch_json(url, label)
                rows = to_array_payload(payload)
                if rows is None:
                    raise PayloadShapeError(
                        f"{label} returned unexpected payload shape", url=sanitize_url(url)
                    )
            except ChartFeedError as exc:
                yield FetchOutcome.failed(url, exc)
                continue
            yield FetchOutcome.ok(url, rows) if rows else FetchOutcome.empty(url)

    async def fetch_array_with_fallback(self, label: str, urls: list[str]) -> list[dict[str, Any]]:
        """Return rows from the first candidate URL that has any.

        Empty answers are remembered and skipped; ordinary failures are logged
        and skipped; fatal failures (rate limit, subscription, missing key)
        propagate at once. With no rows anywhere, an empty answer wins over
        an error: the result is ``[]``. Otherwise the last error is raised.
        """
        if not self._api_key:
            raise MissingApiKeyError("DATA_API_KEY is not configured")

        saw_empty = False
        last_error: ChartFeedError | None = None
        async for outcome in self._iter_outcomes(label, urls):
            if outcome.kind is OutcomeKind.OK:
                return outcome.rows
            if outcome.kind is OutcomeKind.EMPTY:
                saw_empty = True
                continue
            last_error = outcome.error
            logger.error("%s fetch failed (%s): %s", label, sanitize_url(outcome.url), outcome.error)
            if is_fatal(outcome.error):
                raise outcome.error

        if saw_empty:
            return []
        if last_error is not None:
            raise last_error
        raise DataApiError(f"{label} request failed: no candidate URLs")
