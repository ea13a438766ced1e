from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

from market_feed.candles.aggregator import CandleAggregator
from market_feed.models.market import Candle


def run(symbol: str = "BTCUSDT", interval: str = "1m", seed_count: int = 200, minutes: int = 30) -> None:
    """
    Seeds an aggregator with `seed_count` random-walk candles, then streams
    `minutes` more candles as kline messages (a few forming updates each,
    then the closed one) and prints indicators after every close.
    """
    agg = CandleAggregator(symbol, interval)

    # Start at the current minute boundary so candles look clean.
    start = datetime.now(timezone.utc).replace(second=0, microsecond=0) - timedelta(minutes=seed_count)
    price = 100.0

    seed: list[Candle] = []
    for i in range(seed_count):
        o = price
        price += random.uniform(-0.5, 0.5)
        seed.append(
            Candle(
                symbol=symbol,
                interval=interval,
                start_ts=start + timedelta(minutes=i),
                o=o,
                h=max(o, price) + 0.1,
                l=min(o, price) - 0.1,
                c=price,
                v=float(random.randint(1, 50)),
            )
        )
    agg.seed(seed)

    print(f"Seeded {len(agg.buffer)} candles for {symbol} {interval}, streaming {minutes} more...\n")

    ts = start + timedelta(minutes=seed_count)
    for _ in range(minutes):
        o = price
        h = l = o
        for step in range(4):
            price += random.uniform(-0.2, 0.2)
            h, l = max(h, price), min(l, price)
            closed = step == 3
            agg.on_message(
                {
                    "stream": f"{symbol.lower()}@kline_{interval}",
                    "data": {
                        "e": "kline",
                        "s": symbol,
                        "k": {
                            "t": int(ts.timestamp() * 1000),
                            "s": symbol,
                            "i": interval,
                            "o": f"{o:.2f}",
                            "h": f"{h:.2f}",
                            "l": f"{l:.2f}",
                            "c": f"{price:.2f}",
                            "v": "10",
                            "x": closed,
                        },
                    },
                }
            )

        ind = agg.indicators
        if ind is not None:
            print(
                f"[CLOSED {interval}] {ts.isoformat()} C={price:.2f} "
                f"RSI={ind.rsi.value:.1f}({ind.rsi.signal}) "
                f"MACD_H={ind.macd.histogram:.4f} EMA9={ind.ema.ema9:.2f} "
                f"BB%B={ind.bollinger.percent_b:.2f}"
            )
        ts += timedelta(minutes=1)

    print("\nDone.")
    print(f"Candles buffered: {len(agg.buffer)}")
    print(f"History points: {len(agg.history)}")


if __name__ == "__main__":
    run()
