from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx

from market_feed.models.market import Candle, TradingPair, ms_to_datetime
from market_feed.providers.base import MarketDataProvider

log = logging.getLogger("binance_provider")

DEFAULT_REST_URL = "https://api.binance.com/api/v3"
MAX_KLINE_LIMIT = 200


class BinanceProvider(MarketDataProvider):
    """
    Binance Provider (REST).

    REST:
    - klines for any supported interval (historical seed, at most 200 rows)
    - exchange info (tradable pairs)

    Live data comes from StreamTransport, not from here.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_REST_URL,
        timeout_s: float = 8.0,
        retries: int = 2,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout_s,
            headers={"Accept": "application/json"},
            transport=transport or httpx.HTTPTransport(retries=retries),
        )

    # -------------------------
    # Public interface used by the app
    # -------------------------
    def fetch_klines(self, symbol: str, interval: str, limit: int = MAX_KLINE_LIMIT) -> List[Candle]:
        """
        Binance klines endpoint:
          GET {base_url}/klines?symbol=BTCUSDT&interval=1h&limit=200

        Each row is an array:
          [open_time_ms, "open", "high", "low", "close", "volume", close_time_ms, ...]
        Returns candles sorted by start_ts.
        """
        symbol = symbol.upper()
        limit = max(1, min(int(limit), MAX_KLINE_LIMIT))

        resp = self._client.get(
            "/klines",
            params={"symbol": symbol, "interval": interval, "limit": str(limit)},
        )
        resp.raise_for_status()

        data = resp.json()
        if not isinstance(data, list):
            log.warning(
                "Unexpected klines payload type symbol=%s interval=%s type=%s",
                symbol,
                interval,
                type(data),
            )
            return []

        out: List[Candle] = []
        for row in data:
            candle = self._parse_kline_row(symbol, interval, row)
            if candle is not None:
                out.append(candle)

        out.sort(key=lambda c: c.start_ts)
        return out[-limit:]

    def list_trading_pairs(self) -> List[TradingPair]:
        """
        Binance exchange info endpoint:
          GET {base_url}/exchangeInfo
        Only symbols with status TRADING are returned.
        """
        resp = self._client.get("/exchangeInfo")
        resp.raise_for_status()

        data = resp.json()
        symbols = data.get("symbols") if isinstance(data, dict) else None
        if not isinstance(symbols, list):
            log.warning("Unexpected exchangeInfo payload type=%s", type(data))
            return []

        return [
            TradingPair(
                symbol=s["symbol"],
                base_asset=s.get("baseAsset", ""),
                quote_asset=s.get("quoteAsset", ""),
                status=s["status"],
            )
            for s in symbols
            if isinstance(s, dict) and s.get("status") == "TRADING" and "symbol" in s
        ]

    def close(self) -> None:
        self._client.close()

    # -------------------------
    # Row parsing
    # -------------------------
    def _parse_kline_row(self, symbol: str, interval: str, row: Any) -> Optional[Candle]:
        # Skip partial/invalid rows (prevents float(None) crashes)
        if not isinstance(row, (list, tuple)) or len(row) < 6:
            return None
        if any(x is None for x in row[:6]):
            return None

        try:
            return Candle(
                symbol=symbol,
                interval=interval,
                start_ts=ms_to_datetime(row[0]),
                o=float(row[1]),
                h=float(row[2]),
                l=float(row[3]),
                c=float(row[4]),
                v=float(row[5]),
            )
        except (TypeError, ValueError):
            return None
