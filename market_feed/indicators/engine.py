from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple

from market_feed.models.indicators import (
    BollingerResult,
    EMAResult,
    IndicatorPoint,
    IndicatorSet,
    MACDResult,
    RSIResult,
)
from market_feed.models.market import Candle

# Indicators are only reported once the buffer holds this many candles.
MIN_LOOKBACK = 200

RSI_PERIOD = 14
RSI_OVERBOUGHT = 70.0
RSI_OVERSOLD = 30.0

MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9

EMA_PERIODS = (9, 21, 50, 200)

BB_PERIOD = 20
BB_STDDEV = 2.0
BB_SQUEEZE_BANDWIDTH = 2.0

Series = List[Optional[float]]


# -------------------------
# EMA
# -------------------------
def ema_series(values: Sequence[Optional[float]], period: int) -> Series:
    """
    EMA aligned with `values`.

    Leading None values are skipped; the EMA is seeded with the SMA of the
    first `period` defined values and is None before that point.
    """
    n = len(values)
    out: Series = [None] * n

    start = 0
    while start < n and values[start] is None:
        start += 1
    if n - start < period:
        return out

    k = 2.0 / (period + 1)
    seed_idx = start + period - 1
    prev = sum(values[start : seed_idx + 1]) / period
    out[seed_idx] = prev
    for i in range(seed_idx + 1, n):
        prev = (values[i] - prev) * k + prev
        out[i] = prev
    return out


# -------------------------
# RSI (Wilder)
# -------------------------
def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rsi_series(closes: Sequence[float], period: int = RSI_PERIOD) -> Series:
    n = len(closes)
    out: Series = [None] * n
    if n <= period:
        return out

    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        change = closes[i] - closes[i - 1]
        if change > 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period
    out[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period + 1, n):
        change = closes[i] - closes[i - 1]
        gain = change if change > 0 else 0.0
        loss = -change if change < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        out[i] = _rsi_value(avg_gain, avg_loss)
    return out


def classify_rsi(value: float) -> str:
    if value > RSI_OVERBOUGHT:
        return "overbought"
    if value < RSI_OVERSOLD:
        return "oversold"
    return "neutral"


# -------------------------
# MACD
# -------------------------
def macd_series(
    closes: Sequence[float],
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL,
) -> Tuple[Series, Series, Series]:
    """Returns (macd_line, signal_line, histogram), each aligned with `closes`."""
    fast_ema = ema_series(closes, fast)
    slow_ema = ema_series(closes, slow)

    line: Series = [
        f - s if f is not None and s is not None else None
        for f, s in zip(fast_ema, slow_ema)
    ]
    signal_line = ema_series(line, signal)
    histogram: Series = [
        m - s if m is not None and s is not None else None
        for m, s in zip(line, signal_line)
    ]
    return line, signal_line, histogram


def classify_macd(histogram: float) -> str:
    if histogram > 0:
        return "bullish"
    if histogram < 0:
        return "bearish"
    return "neutral"


# -------------------------
# Bollinger Bands
# -------------------------
def bollinger_series(
    closes: Sequence[float],
    period: int = BB_PERIOD,
    num_std: float = BB_STDDEV,
) -> Tuple[Series, Series, Series]:
    """Returns (upper, middle, lower). Uses the population standard deviation."""
    n = len(closes)
    upper: Series = [None] * n
    middle: Series = [None] * n
    lower: Series = [None] * n

    for i in range(period - 1, n):
        window = closes[i - period + 1 : i + 1]
        mean = sum(window) / period
        var = sum((x - mean) ** 2 for x in window) / period
        sd = math.sqrt(var)
        upper[i] = mean + num_std * sd
        middle[i] = mean
        lower[i] = mean - num_std * sd
    return upper, middle, lower


def percent_b(price: float, upper: float, lower: float) -> float:
    width = upper - lower
    if width == 0:
        return 0.5
    return (price - lower) / width


def bandwidth(upper: float, middle: float, lower: float) -> float:
    if middle == 0:
        return 0.0
    return (upper - lower) / middle * 100.0


def classify_band_position(pct_b: float) -> str:
    if pct_b > 1:
        return "above"
    if pct_b < 0:
        return "below"
    return "within"


def classify_ema_trend(ema9: float, ema21: float, ema50: float, ema200: float) -> str:
    if ema9 > ema21 > ema50 > ema200:
        return "strong_bullish"
    if ema9 < ema21 < ema50 < ema200:
        return "strong_bearish"
    return "mixed"


# -------------------------
# Full output
# -------------------------
def _all_series(closes: Sequence[float]) -> Dict[str, Series]:
    macd_line, macd_signal, macd_hist = macd_series(closes)
    bb_upper, bb_middle, bb_lower = bollinger_series(closes)

    series: Dict[str, Series] = {
        "rsi": rsi_series(closes),
        "macd": macd_line,
        "macd_signal": macd_signal,
        "macd_histogram": macd_hist,
        "bb_upper": bb_upper,
        "bb_middle": bb_middle,
        "bb_lower": bb_lower,
    }
    for p in EMA_PERIODS:
        series[f"ema{p}"] = ema_series(closes, p)
    return series


def _history_from_series(candles: Sequence[Candle], series: Dict[str, Series]) -> List[IndicatorPoint]:
    return [
        IndicatorPoint(ts=c.start_ts, **{name: values[i] for name, values in series.items()})
        for i, c in enumerate(candles)
    ]


def _current_from_history(symbol: str, candle: Candle, point: IndicatorPoint) -> IndicatorSet:
    price = float(candle.c)
    pct_b = percent_b(price, point.bb_upper, point.bb_lower)
    bw = bandwidth(point.bb_upper, point.bb_middle, point.bb_lower)

    return IndicatorSet(
        symbol=symbol,
        ts=candle.start_ts,
        price=price,
        rsi=RSIResult(value=point.rsi, signal=classify_rsi(point.rsi)),
        macd=MACDResult(
            macd=point.macd,
            signal=point.macd_signal,
            histogram=point.macd_histogram,
            trend=classify_macd(point.macd_histogram),
        ),
        ema=EMAResult(
            ema9=point.ema9,
            ema21=point.ema21,
            ema50=point.ema50,
            ema200=point.ema200,
            trend=classify_ema_trend(point.ema9, point.ema21, point.ema50, point.ema200),
            above_ema200=price > point.ema200,
        ),
        bollinger=BollingerResult(
            upper=point.bb_upper,
            middle=point.bb_middle,
            lower=point.bb_lower,
            percent_b=pct_b,
            bandwidth=bw,
            squeeze=bw < BB_SQUEEZE_BANDWIDTH,
            position=classify_band_position(pct_b),
        ),
    )


def compute_all(symbol: str, candles: Sequence[Candle]) -> Tuple[Optional[IndicatorSet], List[IndicatorPoint]]:
    """
    Current indicator set plus the per-candle history, from one pass.

    Returns (None, []) when fewer than MIN_LOOKBACK candles are given.
    History point i covers candles[0..i], so the last point matches the
    current set exactly.
    """
    if len(candles) < MIN_LOOKBACK:
        return None, []

    closes = [float(c.c) for c in candles]
    history = _history_from_series(candles, _all_series(closes))
    current = _current_from_history(symbol, candles[-1], history[-1])
    return current, history


def compute_indicators(symbol: str, candles: Sequence[Candle]) -> Optional[IndicatorSet]:
    """Current values only; skips building the per-candle history."""
    if len(candles) < MIN_LOOKBACK:
        return None

    closes = [float(c.c) for c in candles]
    series = _all_series(closes)
    last = IndicatorPoint(ts=candles[-1].start_ts, **{name: values[-1] for name, values in series.items()})
    return _current_from_history(symbol, candles[-1], last)
