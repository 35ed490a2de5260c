"""Centralized configuration via pydantic-settings, loaded from .env."""

from __future__ import annotations

import functools

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Days of intraday history requested per call, by interval.
DEFAULT_SLICE_DAYS: dict[str, int] = {
    "1min": 30,
    "5min": 150,
    "15min": 150,
    "30min": 45,
    "1hour": 45,
    "4hour": 45,
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Quote provider ────────────────────────────────────────────────
    data_api_key: str = ""
    data_api_base_url: str = "https://financialmodelingprep.com/stable"
    data_api_legacy_base_url: str = "https://financialmodelingprep.com/api/v3"
    data_api_timeout_seconds: float = 15.0
    data_api_max_requests_per_second: int = 10

    # ── Intraday history assembly ─────────────────────────────────────
    intraday_slice_days: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_SLICE_DAYS))
    intraday_lookback_days: int = 548
    daily_lookback_days: int = 400

    # ── Caches ────────────────────────────────────────────────────────
    chart_cache_regular_hours_seconds: int = 2 * 60 * 60
    auxiliary_cache_ttl_seconds: int = 300
    cache_max_entries: int = 4000
    cache_sweep_interval_seconds: int = 15 * 60

    # ── Exchange calendar ─────────────────────────────────────────────
    # JSON in the environment, e.g. MARKET_HOLIDAYS='["2024-12-25"]' and
    # MARKET_EARLY_CLOSES='{"2024-11-29": "13:00"}'.
    market_holidays: list[str] = Field(default_factory=list)
    market_early_closes: dict[str, str] = Field(default_factory=dict)

    # ── Oscillators ───────────────────────────────────────────────────
    rsi_length: int = 14

    # ── API Server ────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    log_level: str = "INFO"

    # ── Computed helpers ──────────────────────────────────────────────
    @property
    def has_api_key(self) -> bool:
        """Whether a provider API key is configured."""
        return bool(self.data_api_key.strip())


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton accessor for the global settings."""
    return Settings()
