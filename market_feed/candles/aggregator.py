from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from market_feed.candles.buffer import MAX_CANDLES, CandleBuffer
from market_feed.indicators.engine import MIN_LOOKBACK, compute_all, compute_indicators
from market_feed.models.indicators import IndicatorPoint, IndicatorSet
from market_feed.models.market import Candle, CandleEntry, CandleState, ms_to_datetime

log = logging.getLogger("candle_aggregator")

KLINE_EVENT = "kline"


def parse_kline(data: dict) -> tuple[Candle, bool]:
    """
    Convert one kline event payload into (Candle, is_closed).

    Payload shape (Binance):
      {"e": "kline", "s": "BTCUSDT", "k": {"t": ms, "s": ..., "i": "1h",
       "o": "...", "h": "...", "l": "...", "c": "...", "v": "...", "x": bool}}
    Raises KeyError/TypeError/ValueError on malformed payloads.
    """
    k = data["k"]
    candle = Candle(
        symbol=str(k["s"]).upper(),
        interval=str(k["i"]),
        start_ts=ms_to_datetime(k["t"]),
        o=float(k["o"]),
        h=float(k["h"]),
        l=float(k["l"]),
        c=float(k["c"]),
        v=float(k["v"]),
    )
    return candle, bool(k["x"])


class CandleAggregator:
    """
    Merges a REST-seeded candle history with live kline updates for one
    symbol+interval, and keeps indicators in sync with the buffer.

    Merge rule (only the last buffer entry is ever compared):
    - same open time as the last entry -> replace it in place
      (forming refresh, or finalizing it when the update is closed)
    - new open time -> append (closed or forming), evicting the oldest
      entries past capacity

    Indicators:
    - full recompute (current + history) whenever an entry is appended or closed
    - current values only when a forming entry is refreshed in place
    - None / [] while the buffer holds fewer than MIN_LOOKBACK candles
    """

    def __init__(self, symbol: str, interval: str, capacity: int = MAX_CANDLES):
        self.symbol = symbol.upper()
        self.interval = interval
        self.buffer = CandleBuffer(symbol=self.symbol, interval=interval, capacity=capacity)
        self.last_seen: Optional[datetime] = None
        self.indicators: Optional[IndicatorSet] = None
        self.history: List[IndicatorPoint] = []

    # -------------------------
    # Seeding
    # -------------------------
    def seed(self, candles: List[Candle]) -> None:
        """Replace the buffer wholesale with historical candles."""
        self.buffer.replace_history(candles)
        self.last_seen = None
        log.info(
            "Seeded symbol=%s interval=%s candles=%d",
            self.symbol,
            self.interval,
            len(self.buffer),
        )

        self._recompute_full()
        if self.indicators is None:
            log.warning(
                "Not enough candles for indicators symbol=%s have=%d need=%d",
                self.symbol,
                len(self.buffer),
                MIN_LOOKBACK,
            )

    # -------------------------
    # Stream updates
    # -------------------------
    def on_message(self, message: Any) -> Optional[CandleEntry]:
        """
        Process one push message (combined-stream envelope or bare event).
        Returns the entry written to the buffer, or None when the message was dropped.
        """
        data = message.get("data", message) if isinstance(message, dict) else None
        if not isinstance(data, dict) or data.get("e") != KLINE_EVENT:
            log.warning("Dropping non-kline message: %s", message)
            return None

        try:
            candle, is_closed = parse_kline(data)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Dropping malformed kline symbol=%s error=%r", self.symbol, e)
            return None

        return self.on_candle(candle, is_closed)

    def on_candle(self, candle: Candle, is_closed: bool) -> Optional[CandleEntry]:
        if candle.symbol != self.symbol:
            log.warning("Symbol mismatch: got=%s expected=%s", candle.symbol, self.symbol)
            return None
        if candle.interval != self.interval:
            log.warning("Interval mismatch: got=%s expected=%s", candle.interval, self.interval)
            return None

        state = CandleState.CLOSED if is_closed else CandleState.FORMING
        entry = CandleEntry(candle=candle, state=state)
        last = self.buffer.last()

        # Same window as the last entry -> update in place.
        if last is not None and last.start_ts == candle.start_ts:
            self.buffer.replace_last(entry)
            self.last_seen = candle.start_ts
            if is_closed:
                self._recompute_full()
            else:
                self._recompute_current()
            return entry

        # Older than the last entry. Not rejected, only compared against the tail.
        if last is not None and candle.start_ts < last.start_ts:
            log.warning(
                "Out-of-order kline accepted symbol=%s ts=%s last=%s",
                self.symbol,
                candle.start_ts.isoformat(),
                last.start_ts.isoformat(),
            )

        evicted = self.buffer.append(entry)
        self.last_seen = candle.start_ts
        if evicted:
            log.debug("Evicted %d candle(s) symbol=%s", evicted, self.symbol)

        self._recompute_full()
        return entry

    # -------------------------
    # Indicators
    # -------------------------
    def _recompute_full(self) -> None:
        self.indicators, self.history = compute_all(self.symbol, self.buffer.candles())

    def _recompute_current(self) -> None:
        self.indicators = compute_indicators(self.symbol, self.buffer.candles())

    # -------------------------
    # Read surface
    # -------------------------
    def candles(self) -> List[Candle]:
        return self.buffer.candles()

    def entries(self) -> List[CandleEntry]:
        return list(self.buffer.entries)
