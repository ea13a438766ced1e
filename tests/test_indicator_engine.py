import random
import unittest

from fakes import make_candles

from market_feed.indicators.engine import (
    MIN_LOOKBACK,
    bollinger_series,
    classify_ema_trend,
    classify_rsi,
    compute_all,
    compute_indicators,
    ema_series,
    macd_series,
    rsi_series,
)


def random_walk(n: int, seed: int = 7) -> list:
    rng = random.Random(seed)
    price = 100.0
    out = []
    for _ in range(n):
        price = max(1.0, price + rng.uniform(-2.0, 2.0))
        out.append(price)
    return out


class TestSeries(unittest.TestCase):
    def test_ema_is_seeded_with_sma(self):
        self.assertEqual(ema_series([1.0, 2.0, 3.0, 4.0], 3), [None, None, 2.0, 3.0])

    def test_ema_skips_leading_none(self):
        out = ema_series([None, None, 2.0, 4.0, 6.0], 2)
        self.assertEqual(out[:3], [None, None, None])
        self.assertEqual(out[3], 3.0)
        self.assertAlmostEqual(out[4], 5.0)

    def test_ema_too_short(self):
        self.assertEqual(ema_series([1.0, 2.0], 3), [None, None])

    def test_rsi_defined_from_period(self):
        out = rsi_series(random_walk(30), 14)
        self.assertTrue(all(v is None for v in out[:14]))
        self.assertTrue(all(v is not None and 0.0 <= v <= 100.0 for v in out[14:]))

    def test_rsi_extremes(self):
        self.assertEqual(rsi_series([float(i) for i in range(20)])[-1], 100.0)
        self.assertEqual(rsi_series([float(20 - i) for i in range(20)])[-1], 0.0)
        self.assertEqual(rsi_series([5.0] * 20)[-1], 50.0)

    def test_classify_rsi(self):
        self.assertEqual(classify_rsi(70.5), "overbought")
        self.assertEqual(classify_rsi(70.0), "neutral")
        self.assertEqual(classify_rsi(29.9), "oversold")

    def test_macd_alignment(self):
        closes = random_walk(60)
        line, signal, hist = macd_series(closes)
        self.assertEqual(len(line), 60)
        self.assertIsNone(line[24])
        self.assertIsNotNone(line[25])
        # signal needs 9 defined MACD values
        self.assertIsNone(signal[32])
        self.assertIsNotNone(signal[33])
        self.assertAlmostEqual(hist[-1], line[-1] - signal[-1])

    def test_bollinger_constant_window(self):
        upper, middle, lower = bollinger_series([10.0] * 25)
        self.assertIsNone(middle[18])
        self.assertEqual((upper[-1], middle[-1], lower[-1]), (10.0, 10.0, 10.0))

    def test_ema_trend(self):
        self.assertEqual(classify_ema_trend(4, 3, 2, 1), "strong_bullish")
        self.assertEqual(classify_ema_trend(1, 2, 3, 4), "strong_bearish")
        self.assertEqual(classify_ema_trend(4, 3, 3, 1), "mixed")


class TestComputeAll(unittest.TestCase):
    def test_absent_below_lookback(self):
        candles = make_candles(random_walk(MIN_LOOKBACK - 1))
        self.assertEqual(compute_all("BTCUSDT", candles), (None, []))
        self.assertIsNone(compute_indicators("BTCUSDT", candles))

    def test_present_at_lookback(self):
        candles = make_candles(random_walk(MIN_LOOKBACK))
        current, history = compute_all("BTCUSDT", candles)

        self.assertIsNotNone(current)
        self.assertEqual(len(history), MIN_LOOKBACK)
        self.assertEqual(current.ts, candles[-1].start_ts)
        self.assertEqual(current.price, candles[-1].c)
        self.assertTrue(0.0 <= current.rsi.value <= 100.0)
        self.assertGreaterEqual(current.bollinger.upper, current.bollinger.middle)
        self.assertGreaterEqual(current.bollinger.middle, current.bollinger.lower)
        self.assertAlmostEqual(current.macd.histogram, current.macd.macd - current.macd.signal)

    def test_history_bands_are_ordered(self):
        candles = make_candles(random_walk(250, seed=3))
        _, history = compute_all("BTCUSDT", candles)
        for point in history:
            self.assertIsNotNone(point.ts)
            if point.bb_middle is None:
                continue
            self.assertGreaterEqual(point.bb_upper, point.bb_middle)
            self.assertGreaterEqual(point.bb_middle, point.bb_lower)
            if point.rsi is not None:
                self.assertTrue(0.0 <= point.rsi <= 100.0)

    def test_last_history_point_matches_current(self):
        candles = make_candles(random_walk(230, seed=11))
        current, history = compute_all("BTCUSDT", candles)
        last = history[-1]

        self.assertEqual(last.ts, candles[-1].start_ts)
        self.assertEqual(last.rsi, current.rsi.value)
        self.assertEqual(last.macd, current.macd.macd)
        self.assertEqual(last.macd_signal, current.macd.signal)
        self.assertEqual(last.macd_histogram, current.macd.histogram)
        self.assertEqual(last.bb_upper, current.bollinger.upper)
        self.assertEqual(last.bb_lower, current.bollinger.lower)
        self.assertEqual(last.ema9, current.ema.ema9)
        self.assertEqual(last.ema200, current.ema.ema200)
        self.assertEqual(compute_indicators("BTCUSDT", candles), current)

    def test_rising_market_is_bullish(self):
        closes = [100.0 * (1.005 ** i) for i in range(MIN_LOOKBACK)]
        current, _ = compute_all("BTCUSDT", make_candles(closes))

        self.assertGreater(current.rsi.value, 70.0)
        self.assertEqual(current.rsi.signal, "overbought")
        self.assertGreater(current.macd.histogram, 0.0)
        self.assertEqual(current.macd.trend, "bullish")
        self.assertEqual(current.ema.trend, "strong_bullish")
        self.assertTrue(current.ema.above_ema200)

    def test_linear_ramp_has_flat_histogram(self):
        # SMA-seeded EMAs lag a straight line by a constant, so MACD is flat and
        # the histogram sits at zero even though every close is higher.
        closes = [100.0 + i for i in range(MIN_LOOKBACK)]
        current, _ = compute_all("BTCUSDT", make_candles(closes))

        self.assertEqual(current.rsi.value, 100.0)
        self.assertAlmostEqual(current.macd.macd, 7.0, places=6)
        self.assertAlmostEqual(current.macd.signal, 7.0, places=6)
        self.assertAlmostEqual(current.macd.histogram, 0.0, places=6)
        self.assertEqual(current.ema.trend, "strong_bullish")

    def test_flat_market(self):
        current, _ = compute_all("BTCUSDT", make_candles([100.0] * MIN_LOOKBACK))

        self.assertEqual(current.rsi.value, 50.0)
        self.assertEqual(current.rsi.signal, "neutral")
        self.assertEqual(current.macd.histogram, 0.0)
        self.assertEqual(current.macd.trend, "neutral")
        self.assertEqual(current.ema.ema9, 100.0)
        self.assertEqual(current.ema.ema200, 100.0)
        self.assertEqual(current.bollinger.percent_b, 0.5)
        self.assertEqual(current.bollinger.bandwidth, 0.0)
        self.assertTrue(current.bollinger.squeeze)
        self.assertEqual(current.bollinger.position, "within")


if __name__ == "__main__":
    unittest.main()
