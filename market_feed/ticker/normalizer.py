from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from market_feed.models.market import PriceSnapshot, ms_to_datetime

log = logging.getLogger("ticker_normalizer")

TICKER_EVENT = "24hrTicker"


def parse_ticker(data: dict) -> PriceSnapshot:
    """
    Convert one 24h ticker event into a PriceSnapshot.

    Binance field names:
      s=symbol c=last price p=change P=change% h=high l=low v=base volume E=event time (ms)
    Raises KeyError/TypeError/ValueError on malformed payloads.
    """
    return PriceSnapshot(
        symbol=str(data["s"]).upper(),
        price=float(data["c"]),
        change_24h=float(data["p"]),
        change_pct_24h=float(data["P"]),
        high_24h=float(data["h"]),
        low_24h=float(data["l"]),
        volume_24h=float(data["v"]),
        ts=ms_to_datetime(data["E"]),
    )


class TickerNormalizer:
    """
    Keeps the latest PriceSnapshot per subscribed symbol.

    - one snapshot per symbol, overwritten on every valid ticker message
    - insertion order is preserved (first message for a symbol adds it)
    - set_symbols() prunes snapshots for symbols no longer subscribed
    """

    def __init__(self, symbols: Iterable[str] = ()):
        self.symbols: List[str] = [s.upper() for s in symbols]
        self._snapshots: Dict[str, PriceSnapshot] = {}

    def on_message(self, message: Any) -> Optional[PriceSnapshot]:
        data = message.get("data", message) if isinstance(message, dict) else None
        if not isinstance(data, dict) or data.get("e") != TICKER_EVENT:
            log.warning("Dropping non-ticker message: %s", message)
            return None

        try:
            snapshot = parse_ticker(data)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Dropping malformed ticker error=%r message=%s", e, message)
            return None

        self._snapshots[snapshot.symbol] = snapshot
        return snapshot

    def set_symbols(self, symbols: Iterable[str]) -> None:
        self.symbols = [s.upper() for s in symbols]
        keep = set(self.symbols)
        for symbol in list(self._snapshots):
            if symbol not in keep:
                del self._snapshots[symbol]

    def get(self, symbol: str) -> Optional[PriceSnapshot]:
        return self._snapshots.get(symbol.upper())

    def snapshots(self) -> List[PriceSnapshot]:
        return list(self._snapshots.values())

    def clear(self) -> None:
        self._snapshots.clear()
