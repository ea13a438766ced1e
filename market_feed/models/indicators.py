from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RSIResult(BaseModel):
    """
    value: RSI-14 in [0, 100]
    signal: "overbought" (> 70), "oversold" (< 30), else "neutral"
    """

    value: float
    signal: str


class MACDResult(BaseModel):
    macd: float
    signal: float
    histogram: float
    trend: str


class EMAResult(BaseModel):
    """
    trend:
      - strong_bullish: ema9 > ema21 > ema50 > ema200
      - strong_bearish: ema9 < ema21 < ema50 < ema200
      - mixed: anything else
    """

    ema9: float
    ema21: float
    ema50: float
    ema200: float
    trend: str
    above_ema200: bool


class BollingerResult(BaseModel):
    upper: float
    middle: float
    lower: float
    percent_b: float
    bandwidth: float
    squeeze: bool
    position: str


class IndicatorSet(BaseModel):
    """
    Indicator values for the latest candle in a buffer.

    Only exists when the buffer holds the full lookback (200 candles).
    """

    symbol: str
    ts: datetime
    price: float
    rsi: RSIResult
    macd: MACDResult
    ema: EMAResult
    bollinger: BollingerResult


class IndicatorPoint(BaseModel):
    """
    One charting point, aligned with one candle of the buffer.

    Fields are None where the trailing window ending at that candle is
    shorter than the indicator needs.
    """

    ts: datetime
    rsi: Optional[float] = None
    macd: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_histogram: Optional[float] = None
    bb_upper: Optional[float] = None
    bb_middle: Optional[float] = None
    bb_lower: Optional[float] = None
    ema9: Optional[float] = None
    ema21: Optional[float] = None
    ema50: Optional[float] = None
    ema200: Optional[float] = None
