from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from market_feed.models.market import CandleEntry, PriceSnapshot
from market_feed.models.stream import StreamError
from market_feed.state import MarketHub, get_hub
from market_feed.ticker.watchlist import WatchlistError

router = APIRouter()


class WatchlistUpdate(BaseModel):
    symbols: List[str]


def iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def snapshot_dict(s: PriceSnapshot) -> dict:
    return {
        "symbol": s.symbol,
        "price": s.price,
        "change_24h": s.change_24h,
        "change_pct_24h": s.change_pct_24h,
        "high_24h": s.high_24h,
        "low_24h": s.low_24h,
        "volume_24h": s.volume_24h,
        "ts": iso(s.ts),
    }


def candle_dict(e: CandleEntry) -> dict:
    c = e.candle
    return {"ts": iso(c.start_ts), "o": c.o, "h": c.h, "l": c.l, "c": c.c, "v": c.v, "state": e.state.value}


def error_dict(err: Optional[StreamError]) -> Optional[dict]:
    return err.model_dump() if err is not None else None


# -------------------------
# Prices / watchlist
# -------------------------
@router.get("/prices")
def prices(hub: MarketHub = Depends(get_hub)):
    return {
        "symbols": hub.ticker.symbols,
        "prices": [snapshot_dict(s) for s in hub.ticker.snapshots()],
        "connection_state": hub.ticker.state.value,
        "error": error_dict(hub.ticker.last_error),
    }


@router.get("/prices/{symbol}")
def price(symbol: str, hub: MarketHub = Depends(get_hub)):
    snap = hub.ticker.get(symbol)
    if snap is None:
        raise HTTPException(status_code=404, detail=f"No price for {symbol.upper()}")
    return snapshot_dict(snap)


@router.get("/watchlist")
def get_watchlist(hub: MarketHub = Depends(get_hub)):
    return {"symbols": list(hub.watchlist.pairs)}


@router.put("/watchlist")
async def put_watchlist(body: WatchlistUpdate, hub: MarketHub = Depends(get_hub)):
    try:
        symbols = await hub.set_watchlist(body.symbols)
    except WatchlistError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"symbols": symbols}


@router.post("/watchlist/{symbol}")
async def add_watchlist_symbol(symbol: str, hub: MarketHub = Depends(get_hub)):
    try:
        symbols = await hub.add_to_watchlist(symbol)
    except WatchlistError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"symbols": symbols}


@router.delete("/watchlist/{symbol}")
async def remove_watchlist_symbol(symbol: str, hub: MarketHub = Depends(get_hub)):
    try:
        symbols = await hub.remove_from_watchlist(symbol)
    except WatchlistError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"symbols": symbols}


# -------------------------
# Chart
# -------------------------
@router.get("/chart")
def chart(hub: MarketHub = Depends(get_hub)):
    """
    Chart read surface:
    - candles (oldest first, last one may be forming)
    - indicators (null until 200 candles are buffered)
    - history (one indicator point per candle, [] until 200 candles)
    """
    session = hub.chart
    agg = session.aggregator
    return {
        "symbol": session.symbol,
        "interval": session.interval,
        "candles": [candle_dict(e) for e in agg.entries()],
        "indicators": agg.indicators.model_dump(mode="json") if agg.indicators else None,
        "history": [p.model_dump(mode="json") for p in agg.history],
        "last_updated": iso(agg.buffer.last_updated),
        "connection_state": session.state.value,
        "error": error_dict(session.last_error),
    }


@router.post("/chart")
async def switch_chart(
    symbol: str = Query(..., description="Trading pair, e.g., BTCUSDT"),
    interval: str = Query(..., description="Kline interval, e.g., 1h"),
    hub: MarketHub = Depends(get_hub),
):
    try:
        session = await hub.switch_chart(symbol, interval)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"symbol": session.symbol, "interval": session.interval, "connection_state": session.state.value}


# -------------------------
# Connection
# -------------------------
@router.get("/connection")
def connection(hub: MarketHub = Depends(get_hub)):
    return {
        "ticker": {
            "state": hub.ticker.state.value,
            "connected": hub.ticker.transport.is_connected(),
            "error": error_dict(hub.ticker.last_error),
        },
        "chart": {
            "symbol": hub.chart.symbol,
            "interval": hub.chart.interval,
            "state": hub.chart.state.value,
            "connected": hub.chart.transport.is_connected(),
            "error": error_dict(hub.chart.last_error),
        },
    }


@router.post("/reconnect")
async def reconnect(
    target: str = Query("chart", description="'ticker' or 'chart'"),
    hub: MarketHub = Depends(get_hub),
):
    if target == "ticker":
        await hub.ticker.reconnect()
    elif target == "chart":
        await hub.chart.reconnect()
    else:
        raise HTTPException(status_code=400, detail=f"Unknown target={target!r}. Expected: ticker, chart")
    return {"ok": True, "target": target}


# -------------------------
# Trading pairs
# -------------------------
@router.get("/pairs")
def pairs(hub: MarketHub = Depends(get_hub)):
    items = hub.trading_pairs()
    return {
        "pairs": [
            {"symbol": p.symbol, "base_asset": p.base_asset, "quote_asset": p.quote_asset, "status": p.status}
            for p in items
        ],
        "cached_at": iso(hub.pairs_cached_at),
    }


# -------------------------
# Dev helpers
# -------------------------
@router.post("/dev/simulate_kline")
async def dev_simulate_kline(
    open_ms: int = Query(..., description="Candle open time (epoch ms)"),
    o: float = Query(...),
    h: float = Query(...),
    l: float = Query(...),
    c: float = Query(...),
    v: float = Query(0.0),
    closed: bool = Query(False, description="Whether the candle is final"),
    hub: MarketHub = Depends(get_hub),
):
    """
    Dev-only helper:
    Feeds ONE kline message for the active chart into its aggregator.
    """
    session = hub.chart
    message = {
        "e": "kline",
        "s": session.symbol,
        "k": {
            "t": open_ms,
            "s": session.symbol,
            "i": session.interval,
            "o": str(o),
            "h": str(h),
            "l": str(l),
            "c": str(c),
            "v": str(v),
            "x": closed,
        },
    }
    entry = session.aggregator.on_message(message)
    return {
        "ok": entry is not None,
        "state": entry.state.value if entry else None,
        "candle_count": len(session.aggregator.buffer),
        "has_indicators": session.aggregator.indicators is not None,
    }
