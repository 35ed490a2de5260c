"""ChartFeed: market-data ingestion and oscillator chart pipeline."""

__version__ = "0.4.0"
