from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from market_feed.config import INTERVAL_SECONDS
from market_feed.models.market import Candle, CandleEntry, CandleState

# Maximum candles kept per symbol+interval.
MAX_CANDLES = 200


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def window_elapsed(candle: Candle, now: datetime) -> bool:
    """True once `now` is past the candle's window. Unknown intervals count as elapsed."""
    seconds = INTERVAL_SECONDS.get(candle.interval)
    if seconds is None:
        return True
    return now >= candle.start_ts + timedelta(seconds=seconds)


@dataclass
class CandleBuffer:
    """
    In-memory sliding window of candles for one symbol+interval.

    entries -> time-ordered CandleEntry list, oldest first
      - at most one FORMING entry, and only in the last slot
      - never longer than `capacity`; overflow is evicted from the front
    last_updated -> when we last touched the buffer (seed or stream update)
    """
    symbol: str
    interval: str
    capacity: int = MAX_CANDLES
    entries: List[CandleEntry] = field(default_factory=list)
    last_updated: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self.entries)

    def touch(self) -> None:
        """Mark this buffer as updated right now."""
        self.last_updated = utcnow()

    def last(self) -> Optional[CandleEntry]:
        return self.entries[-1] if self.entries else None

    def candles(self) -> List[Candle]:
        return [e.candle for e in self.entries]

    def replace_history(self, candles: List[Candle], now: Optional[datetime] = None) -> None:
        """
        Replace the whole buffer in one shot (historical seed).
        Only the last `capacity` candles are kept. They are stored CLOSED, except
        a last candle whose window has not elapsed yet, which stays FORMING.
        """
        self.entries = [CandleEntry(candle=c, state=CandleState.CLOSED) for c in candles[-self.capacity:]]
        if self.entries and not window_elapsed(self.entries[-1].candle, now or utcnow()):
            self.entries[-1] = CandleEntry(candle=self.entries[-1].candle, state=CandleState.FORMING)
        self.touch()

    def replace_last(self, entry: CandleEntry) -> None:
        """Overwrite the last slot in place. Length is unchanged."""
        if not self.entries:
            raise IndexError("replace_last on empty buffer")
        self.entries[-1] = entry
        self.touch()

    def append(self, entry: CandleEntry) -> int:
        """
        Append a new slot and evict from the front past capacity.

        A FORMING last entry is finalized first so that only the new entry
        can be FORMING. Returns the number of evicted entries.
        """
        if self.entries and self.entries[-1].is_forming:
            self.entries[-1] = self.entries[-1].closed()

        self.entries.append(entry)

        evicted = 0
        if len(self.entries) > self.capacity:
            evicted = len(self.entries) - self.capacity
            del self.entries[:-self.capacity]

        self.touch()
        return evicted
