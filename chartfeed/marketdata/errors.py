"""Error taxonomy for the market-data pipeline.

Every error carries the HTTP status an outer caller should surface and a
``fatal`` flag. Fatal errors stop fallback loops (other endpoints or symbol
variants cannot succeed either); ordinary errors let the loop advance.
"""

from __future__ import annotations

from typing import Any


class ChartFeedError(Exception):
    """Base class for all chartfeed errors."""

    http_status: int = 500
    fatal: bool = False

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, **self.context}


class InvalidRequestError(ChartFeedError):
    """Caller passed an unsupported interval, empty symbol, and so on."""

    http_status = 400


class NoDataError(ChartFeedError):
    """The provider answered, but had no bars for the request."""

    http_status = 404


class MissingApiKeyError(ChartFeedError):
    """No provider API key configured; nothing can be fetched."""

    http_status = 503
    fatal = True


class CloseOnlySeriesError(ChartFeedError):
    """A daily series carries closes only, unusable for candlesticks."""

    http_status = 502


# ── Provider/transport failures ───────────────────────────────────────

class DataApiError(ChartFeedError):
    """A single provider request failed."""

    http_status = 502

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.url = url
        self.status_code = status_code


class TransportError(DataApiError):
    """Network failure before a response was received."""


class RequestTimeoutError(DataApiError):
    """The request exceeded its time budget."""


class UpstreamHTTPError(DataApiError):
    """Non-2xx response without a more specific classification."""


class ProviderMessageError(DataApiError):
    """2xx response whose body embeds a provider error message."""


class PayloadShapeError(DataApiError):
    """Body was neither an array nor an object wrapping one."""


class RateLimitedError(DataApiError):
    """Provider throttled the request (HTTP 429 or a limit message)."""

    fatal = True


class SubscriptionRestrictedError(DataApiError):
    """Endpoint or timeframe is not included in the current plan."""

    fatal = True


def is_fatal(exc: BaseException) -> bool:
    """Whether ``exc`` should stop every remaining fallback attempt."""
    return isinstance(exc, ChartFeedError) and exc.fatal
