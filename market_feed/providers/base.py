from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from market_feed.models.market import Candle, TradingPair


class MarketDataProvider(ABC):
    """
    Provider contract (interface).

    Any provider must implement:
    - fetch_klines(): historical candles via REST (seed for a candle buffer)
    - list_trading_pairs(): tradable symbols via REST
    """

    @abstractmethod
    def fetch_klines(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        raise NotImplementedError

    @abstractmethod
    def list_trading_pairs(self) -> List[TradingPair]:
        raise NotImplementedError

    def close(self) -> None:
        pass
