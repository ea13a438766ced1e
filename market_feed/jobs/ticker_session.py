from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

from market_feed.models.market import PriceSnapshot
from market_feed.models.stream import ConnectionState, StreamError
from market_feed.ticker.normalizer import TickerNormalizer
from market_feed.transport.stream import DEFAULT_WS_URL, RECONNECT_DELAY_SECONDS, Connector, StreamTransport

log = logging.getLogger("ticker_session")


def ticker_streams(symbols: Iterable[str]) -> List[str]:
    return [f"{s.lower()}@ticker" for s in symbols]


class TickerSession:
    """
    Watchlist price feed:
    - one StreamTransport fanning out over one <symbol>@ticker stream per symbol
    - one TickerNormalizer holding the latest snapshot per symbol
    """

    def __init__(
        self,
        symbols: Iterable[str],
        ws_url: str = DEFAULT_WS_URL,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        connector: Optional[Connector] = None,
    ) -> None:
        self.normalizer = TickerNormalizer(symbols)
        self.last_error: Optional[StreamError] = None
        self.transport = StreamTransport(
            streams=ticker_streams(self.normalizer.symbols),
            on_message=self._handle_message,
            on_error=self._handle_error,
            on_state_change=self._handle_state_change,
            base_url=ws_url,
            reconnect_delay=reconnect_delay,
            connector=connector,
            name="ticker",
        )

    @property
    def symbols(self) -> List[str]:
        return list(self.normalizer.symbols)

    @property
    def state(self) -> ConnectionState:
        return self.transport.state

    async def start(self) -> None:
        if not self.normalizer.symbols:
            log.warning("No symbols provided")
            self.normalizer.clear()
            return
        log.info("Initializing ticker stream for symbols=%s", self.normalizer.symbols)
        await self.transport.connect()

    async def stop(self) -> None:
        log.info("Cleaning up ticker stream")
        await self.transport.disconnect()

    async def update_symbols(self, symbols: Iterable[str]) -> Optional[asyncio.Task]:
        """
        Watchlist changed: prune snapshots now, then resubscribe.
        Returns the scheduled connect task (None when no symbols remain).
        """
        self.normalizer.set_symbols(symbols)
        if not self.normalizer.symbols:
            log.warning("No symbols provided")
            self.normalizer.clear()
            await self.transport.disconnect()
            return None
        return await self.transport.update_streams(ticker_streams(self.normalizer.symbols))

    async def reconnect(self) -> asyncio.Task:
        self.last_error = None
        return await self.transport.reconnect()

    def snapshots(self) -> List[PriceSnapshot]:
        return self.normalizer.snapshots()

    def get(self, symbol: str) -> Optional[PriceSnapshot]:
        return self.normalizer.get(symbol)

    # -------------------------
    # Transport callbacks
    # -------------------------
    def _handle_message(self, message) -> None:
        if self.normalizer.on_message(message) is not None:
            self.last_error = None

    def _handle_error(self, err: StreamError) -> None:
        log.error("Ticker stream error code=%s message=%s", err.code, err.message)
        self.last_error = err

    def _handle_state_change(self, state: ConnectionState) -> None:
        log.info("Ticker connection state changed: %s", state.value)
