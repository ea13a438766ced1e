from typing import Optional

from market_feed.config import Settings, get_settings
from market_feed.providers.base import MarketDataProvider
from market_feed.providers.binance import BinanceProvider


def get_provider(settings: Optional[Settings] = None) -> MarketDataProvider:
    """
    Provider loader / factory.

    Reads PROVIDER from config and returns an instance of the selected provider.
    This is the single place that knows about concrete providers.
    """
    settings = settings or get_settings()
    provider_name = settings.provider.strip().upper()

    if provider_name == "BINANCE":
        return BinanceProvider(
            base_url=settings.binance_rest_url,
            timeout_s=settings.binance_timeout_seconds,
            retries=settings.binance_retries,
        )

    raise ValueError(f"Unknown PROVIDER='{settings.provider}'. Expected: BINANCE")
