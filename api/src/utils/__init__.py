"""Utility modules for the TradingPlatform API."""

from src.utils.dates import add_months, ensure_utc_aware, utc_now


__all__ = ["add_months", "ensure_utc_aware", "utc_now"]
