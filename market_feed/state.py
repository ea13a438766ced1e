from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from market_feed.config import INTERVALS, Settings, get_settings
from market_feed.jobs.kline_session import KlineSession
from market_feed.jobs.ticker_session import TickerSession
from market_feed.models.market import TradingPair
from market_feed.providers.base import MarketDataProvider
from market_feed.providers.loader import get_provider
from market_feed.ticker.watchlist import Watchlist
from market_feed.transport.stream import Connector

log = logging.getLogger("market_hub")


class MarketHub:
    """
    Owns every live subscription of the running process.

    - watchlist + one TickerSession for price snapshots
    - one KlineSession for the charted symbol+interval, replaced on every switch
    """

    def __init__(
        self,
        settings: Settings,
        provider: MarketDataProvider,
        connector: Optional[Connector] = None,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self._connector = connector

        self.watchlist = Watchlist(settings.watchlist)
        self.ticker = TickerSession(
            self.watchlist.pairs,
            ws_url=settings.binance_ws_url,
            reconnect_delay=settings.reconnect_delay_seconds,
            connector=connector,
        )
        self.chart = self._new_chart(settings.default_symbol, settings.default_interval)

        self._pairs: Optional[List[TradingPair]] = None
        self._pairs_fetched_at = 0.0
        self.pairs_cached_at: Optional[datetime] = None

    def _new_chart(self, symbol: str, interval: str) -> KlineSession:
        return KlineSession(
            symbol,
            interval,
            provider=self.provider,
            ws_url=self.settings.binance_ws_url,
            reconnect_delay=self.settings.reconnect_delay_seconds,
            connector=self._connector,
        )

    async def start(self) -> None:
        await self.ticker.start()
        await self.chart.start()

    async def stop(self) -> None:
        await self.chart.stop()
        await self.ticker.stop()

    # -------------------------
    # Chart subscription
    # -------------------------
    async def switch_chart(self, symbol: str, interval: str) -> KlineSession:
        """Tear down the current kline session and start a fresh one."""
        symbol = symbol.strip().upper()
        if interval not in INTERVALS:
            raise ValueError(f"Unknown interval={interval!r}. Expected one of {INTERVALS}")
        if not symbol:
            raise ValueError("Symbol is required")

        if symbol == self.chart.symbol and interval == self.chart.interval:
            return self.chart

        log.info(
            "Switching chart %s@%s -> %s@%s",
            self.chart.symbol,
            self.chart.interval,
            symbol,
            interval,
        )
        old = self.chart
        new = self._new_chart(symbol, interval)
        self.chart = new
        await old.stop()
        if self.chart is not new:
            # A later switch superseded this one while the old session was stopping.
            log.info("Chart switch to %s@%s superseded", symbol, interval)
            return self.chart
        await new.start()
        return new

    # -------------------------
    # Watchlist
    # -------------------------
    async def set_watchlist(self, pairs: Iterable[str]) -> List[str]:
        self.watchlist.replace(pairs)
        await self.ticker.update_symbols(self.watchlist.pairs)
        return list(self.watchlist.pairs)

    async def add_to_watchlist(self, pair: str) -> List[str]:
        before = list(self.watchlist.pairs)
        self.watchlist.add(pair)
        if self.watchlist.pairs != before:
            await self.ticker.update_symbols(self.watchlist.pairs)
        return list(self.watchlist.pairs)

    async def remove_from_watchlist(self, pair: str) -> List[str]:
        before = list(self.watchlist.pairs)
        self.watchlist.remove(pair)
        if self.watchlist.pairs != before:
            await self.ticker.update_symbols(self.watchlist.pairs)
        return list(self.watchlist.pairs)

    # -------------------------
    # Trading pairs (cached)
    # -------------------------
    def trading_pairs(self) -> List[TradingPair]:
        now = time.monotonic()
        if self._pairs is not None and now - self._pairs_fetched_at < self.settings.pairs_cache_seconds:
            return self._pairs

        self._pairs = self.provider.list_trading_pairs()
        self._pairs_fetched_at = now
        self.pairs_cached_at = datetime.now(timezone.utc)
        return self._pairs


def build_hub(connector: Optional[Connector] = None) -> MarketHub:
    settings = get_settings()
    return MarketHub(settings, get_provider(settings), connector=connector)


# Global hub for the running API process
hub = build_hub()


def get_hub() -> MarketHub:
    return hub

