from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


def ms_to_datetime(t_ms: int | float) -> datetime:
    """Exchange timestamps are epoch milliseconds; convert to aware UTC."""
    return datetime.fromtimestamp(float(t_ms) / 1000.0, tz=timezone.utc)


@dataclass(frozen=True)
class PriceSnapshot:
    """
    PriceSnapshot = latest 24h ticker state for one symbol.

    price: last trade price
    change_24h / change_pct_24h: absolute and percent change over 24h
    high_24h / low_24h / volume_24h: rolling 24h stats
    ts: event time of the ticker message
    """
    symbol: str
    price: float
    change_24h: float
    change_pct_24h: float
    high_24h: float
    low_24h: float
    volume_24h: float
    ts: datetime


@dataclass(frozen=True)
class Candle:
    """
    Candle (OHLCV) for one interval window.

    start_ts: the open time of the candle window, unique within symbol+interval
    o/h/l/c: open/high/low/close prices during the window
    v: base-asset volume during the window
    """
    symbol: str
    interval: str
    start_ts: datetime
    o: float
    h: float
    l: float
    c: float
    v: float


class CandleState(str, Enum):
    FORMING = "forming"
    CLOSED = "closed"


@dataclass(frozen=True)
class CandleEntry:
    """
    One slot of a CandleBuffer.

    A FORMING entry is still being replaced in place by stream updates.
    A CLOSED entry is final. The buffer keeps at most one FORMING entry, always last.
    """
    candle: Candle
    state: CandleState

    @property
    def start_ts(self) -> datetime:
        return self.candle.start_ts

    @property
    def is_forming(self) -> bool:
        return self.state is CandleState.FORMING

    def closed(self) -> CandleEntry:
        return CandleEntry(candle=self.candle, state=CandleState.CLOSED)


@dataclass(frozen=True)
class TradingPair:
    symbol: str
    base_asset: str
    quote_asset: str
    status: str
