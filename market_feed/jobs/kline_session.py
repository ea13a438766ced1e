from __future__ import annotations

import asyncio
import logging
import traceback
from typing import Optional

from market_feed.candles.aggregator import CandleAggregator
from market_feed.candles.buffer import MAX_CANDLES
from market_feed.models.stream import ConnectionState, StreamError
from market_feed.providers.base import MarketDataProvider
from market_feed.transport.stream import DEFAULT_WS_URL, RECONNECT_DELAY_SECONDS, Connector, StreamTransport

log = logging.getLogger("kline_session")


def kline_stream(symbol: str, interval: str) -> str:
    return f"{symbol.lower()}@kline_{interval}"


class KlineSession:
    """
    Chart feed for exactly one symbol+interval.

    Owns one StreamTransport (<symbol>@kline_<interval>) and one CandleAggregator.
    A new symbol or interval means a new KlineSession; this one is stopped.

    The REST seed and the stream are not coordinated: whenever the seed
    arrives it replaces the buffer wholesale.
    """

    def __init__(
        self,
        symbol: str,
        interval: str,
        provider: MarketDataProvider,
        ws_url: str = DEFAULT_WS_URL,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        connector: Optional[Connector] = None,
        seed_limit: int = MAX_CANDLES,
    ) -> None:
        self.symbol = symbol.upper()
        self.interval = interval
        self.provider = provider
        self.seed_limit = seed_limit
        self.aggregator = CandleAggregator(self.symbol, interval)
        self.last_error: Optional[StreamError] = None

        self._seed_task: Optional[asyncio.Task] = None
        self._stopped = False

        self.transport = StreamTransport(
            streams=[kline_stream(self.symbol, interval)],
            on_message=self._handle_message,
            on_error=self._handle_error,
            on_state_change=self._handle_state_change,
            base_url=ws_url,
            reconnect_delay=reconnect_delay,
            connector=connector,
            name=f"kline:{self.symbol}@{interval}",
        )

    @property
    def state(self) -> ConnectionState:
        return self.transport.state

    @property
    def seed_task(self) -> Optional[asyncio.Task]:
        return self._seed_task

    async def start(self) -> None:
        log.info("Initializing kline stream for symbol=%s interval=%s", self.symbol, self.interval)
        self._stopped = False
        self._seed_task = asyncio.create_task(self.seed(), name=f"seed:{self.symbol}@{self.interval}")
        await self.transport.connect()

    async def stop(self) -> None:
        log.info("Cleaning up kline stream symbol=%s interval=%s", self.symbol, self.interval)
        self._stopped = True
        if self._seed_task is not None and not self._seed_task.done():
            self._seed_task.cancel()
        await self.transport.disconnect()

    async def reconnect(self) -> asyncio.Task:
        self.last_error = None
        return await self.transport.reconnect()

    async def seed(self) -> bool:
        """
        Fetch historical candles and replace the buffer with them.
        Returns False when the fetch failed or the session was stopped meanwhile.
        """
        try:
            candles = await asyncio.to_thread(
                self.provider.fetch_klines, self.symbol, self.interval, self.seed_limit
            )
        except Exception as e:
            # Seed failure is reported; the live stream keeps running without history.
            log.error("Seed fetch failed symbol=%s interval=%s error=%s", self.symbol, self.interval, repr(e))
            log.error(traceback.format_exc())
            self.last_error = StreamError(
                message=f"Failed to fetch historical data for {self.symbol}: {e}",
                code="SEED_ERROR",
            )
            return False

        if self._stopped:
            log.info("Discarding seed for stopped session symbol=%s", self.symbol)
            return False

        self.aggregator.seed(candles)
        return True

    # -------------------------
    # Transport callbacks
    # -------------------------
    def _handle_message(self, message) -> None:
        if self.aggregator.on_message(message) is not None:
            self.last_error = None

    def _handle_error(self, err: StreamError) -> None:
        log.error("Kline stream error symbol=%s code=%s message=%s", self.symbol, err.code, err.message)
        self.last_error = err

    def _handle_state_change(self, state: ConnectionState) -> None:
        log.info("Kline connection state changed symbol=%s: %s", self.symbol, state.value)
