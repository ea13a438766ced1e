from __future__ import annotations

from typing import Iterable, List

MAX_WATCHLIST_SIZE = 10
MIN_WATCHLIST_SIZE = 1


class WatchlistError(ValueError):
    pass


class Watchlist:
    """Ordered, de-duplicated list of watched trading pairs."""

    def __init__(self, pairs: Iterable[str]):
        self.pairs: List[str] = []
        self.replace(pairs)

    def __contains__(self, pair: str) -> bool:
        return pair.upper() in self.pairs

    def __len__(self) -> int:
        return len(self.pairs)

    def add(self, pair: str) -> List[str]:
        pair = pair.strip().upper()
        if pair in self.pairs:
            return list(self.pairs)
        if len(self.pairs) >= MAX_WATCHLIST_SIZE:
            raise WatchlistError(f"Maximum watchlist size ({MAX_WATCHLIST_SIZE}) reached")
        self.pairs.append(pair)
        return list(self.pairs)

    def remove(self, pair: str) -> List[str]:
        pair = pair.strip().upper()
        if pair not in self.pairs:
            return list(self.pairs)
        if len(self.pairs) <= MIN_WATCHLIST_SIZE:
            raise WatchlistError(f"Minimum watchlist size ({MIN_WATCHLIST_SIZE}) required")
        self.pairs.remove(pair)
        return list(self.pairs)

    def replace(self, pairs: Iterable[str]) -> List[str]:
        cleaned: List[str] = []
        for p in pairs:
            p = p.strip().upper()
            if p and p not in cleaned:
                cleaned.append(p)

        if len(cleaned) < MIN_WATCHLIST_SIZE:
            raise WatchlistError(f"Minimum watchlist size ({MIN_WATCHLIST_SIZE}) required")
        if len(cleaned) > MAX_WATCHLIST_SIZE:
            raise WatchlistError(f"Maximum watchlist size ({MAX_WATCHLIST_SIZE}) reached")

        self.pairs = cleaned
        return list(self.pairs)
