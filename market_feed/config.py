# market_feed/config.py
import os
from dataclasses import dataclass
from dotenv import load_dotenv

# Loads variables from a local .env file into environment variables (dev only).
load_dotenv()

# Kline intervals the chart subscription accepts, with their window length.
INTERVAL_SECONDS = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "1h": 3600,
    "4h": 14400,
    "1d": 86400,
    "1w": 604800,
}
INTERVALS = tuple(INTERVAL_SECONDS)


@dataclass(frozen=True)
class Settings:
    # App config
    app_env: str
    log_level: str
    provider: str

    # Provider config (Binance)
    binance_rest_url: str
    binance_ws_url: str
    binance_timeout_seconds: float
    binance_retries: int

    # Subscriptions
    watchlist: list[str]
    default_symbol: str
    default_interval: str
    reconnect_delay_seconds: float
    pairs_cache_seconds: int


def _split_symbols(raw: str) -> list[str]:
    return [s.strip().upper() for s in raw.split(",") if s.strip()]


def get_settings() -> Settings:
    """
    Reads env vars and returns a Settings object.
    """
    watchlist = _split_symbols(os.getenv("WATCHLIST", "SOLUSDT,BTCUSDT,ETHUSDT,LTCUSDT"))
    if not watchlist:
        raise RuntimeError("WATCHLIST is empty. Add at least one symbol to .env")

    interval = os.getenv("DEFAULT_INTERVAL", "1h").strip()
    if interval not in INTERVALS:
        raise RuntimeError(f"DEFAULT_INTERVAL={interval!r} is invalid. Expected one of {INTERVALS}")

    return Settings(
        app_env=os.getenv("APP_ENV", "local"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        provider=os.getenv("PROVIDER", "BINANCE"),
        binance_rest_url=os.getenv("BINANCE_REST_URL", "https://api.binance.com/api/v3").rstrip("/"),
        binance_ws_url=os.getenv("BINANCE_WS_URL", "wss://stream.binance.com:9443").rstrip("/"),
        binance_timeout_seconds=float(os.getenv("BINANCE_TIMEOUT_SECONDS", "8")),
        binance_retries=int(os.getenv("BINANCE_RETRIES", "2")),
        watchlist=watchlist,
        default_symbol=os.getenv("DEFAULT_SYMBOL", "BTCUSDT").strip().upper(),
        default_interval=interval,
        reconnect_delay_seconds=float(os.getenv("RECONNECT_DELAY_SECONDS", "0.5")),
        pairs_cache_seconds=int(os.getenv("PAIRS_CACHE_SECONDS", str(24 * 60 * 60))),
    )
