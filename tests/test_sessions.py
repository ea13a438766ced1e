import asyncio
import json
import unittest
from datetime import timedelta

import httpx
from fakes import START, FakeConnector, FakeProvider, kline_message, make_candles, make_settings, settle, ticker_message

from market_feed.candles.buffer import MAX_CANDLES
from market_feed.jobs.kline_session import KlineSession, kline_stream
from market_feed.jobs.ticker_session import TickerSession, ticker_streams
from market_feed.models.stream import ConnectionState
from market_feed.state import MarketHub


class TestStreamNames(unittest.TestCase):
    def test_stream_names(self):
        self.assertEqual(ticker_streams(["BTCUSDT", "EthUsdt"]), ["btcusdt@ticker", "ethusdt@ticker"])
        self.assertEqual(kline_stream("BTCUSDT", "1h"), "btcusdt@kline_1h")


class TestTickerSession(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.connector = FakeConnector()
        self.session = TickerSession(
            ["BTCUSDT", "ETHUSDT"],
            ws_url="wss://stream.test",
            reconnect_delay=0.0,
            connector=self.connector,
        )

    async def asyncTearDown(self):
        await self.session.stop()

    async def test_snapshots_follow_stream(self):
        await self.session.start()
        conn = self.connector.last
        conn.feed(json.dumps(ticker_message("BTCUSDT", 1.0)))
        conn.feed(json.dumps(ticker_message("ETHUSDT", 2.0)))
        await settle()

        self.assertEqual(self.session.state, ConnectionState.CONNECTED)
        self.assertEqual([s.symbol for s in self.session.snapshots()], ["BTCUSDT", "ETHUSDT"])
        self.assertEqual(conn.url, "wss://stream.test/stream?streams=btcusdt@ticker/ethusdt@ticker")

    async def test_valid_message_clears_last_error(self):
        await self.session.start()
        conn = self.connector.last
        conn.feed("garbage")
        await settle()
        self.assertEqual(self.session.last_error.code, "PARSE_ERROR")

        conn.feed(json.dumps(ticker_message("BTCUSDT", 1.0)))
        await settle()
        self.assertIsNone(self.session.last_error)

    async def test_update_symbols_prunes_before_resubscribe(self):
        await self.session.start()
        conn = self.connector.last
        conn.feed(json.dumps(ticker_message("BTCUSDT", 1.0)))
        conn.feed(json.dumps(ticker_message("ETHUSDT", 2.0)))
        await settle()

        task = await self.session.update_symbols(["ETHUSDT", "SOLUSDT"])
        self.assertEqual([s.symbol for s in self.session.snapshots()], ["ETHUSDT"])

        await task
        self.assertEqual(len(self.connector.connections), 2)
        self.assertEqual(self.connector.last.url, "wss://stream.test/stream?streams=ethusdt@ticker/solusdt@ticker")
        self.assertEqual(self.session.state, ConnectionState.CONNECTED)

    async def test_empty_symbols_never_connect(self):
        session = TickerSession([], connector=self.connector)
        await session.start()
        self.assertEqual(session.state, ConnectionState.DISCONNECTED)
        self.assertEqual(self.connector.calls, [])

    async def test_unexpected_close_is_reported(self):
        await self.session.start()
        self.connector.last.drop(code=1006)
        await settle()

        self.assertEqual(self.session.state, ConnectionState.DISCONNECTED)
        self.assertEqual(self.session.last_error.code, "CLOSE_1006")

        await (await self.session.reconnect())
        self.assertIsNone(self.session.last_error)
        self.assertEqual(self.session.state, ConnectionState.CONNECTED)


class TestKlineSession(unittest.IsolatedAsyncioTestCase):
    def make_session(self, provider):
        self.connector = FakeConnector()
        self.session = KlineSession(
            "BTCUSDT",
            "1m",
            provider=provider,
            ws_url="wss://stream.test",
            reconnect_delay=0.0,
            connector=self.connector,
        )
        return self.session

    async def asyncTearDown(self):
        await self.session.stop()

    async def test_seed_then_stream(self):
        provider = FakeProvider(make_candles([100.0] * MAX_CANDLES))
        session = self.make_session(provider)
        await session.start()
        self.assertTrue(await session.seed_task)

        self.assertEqual(provider.kline_calls, [("BTCUSDT", "1m", MAX_CANDLES)])
        self.assertEqual(len(session.aggregator.buffer), MAX_CANDLES)
        self.assertIsNotNone(session.aggregator.indicators)
        self.assertEqual(self.connector.last.url, "wss://stream.test/stream?streams=btcusdt@kline_1m")

        ts = START + timedelta(minutes=MAX_CANDLES)
        self.connector.last.feed(json.dumps(kline_message(ts, 110.0, closed=True)))
        await settle()

        self.assertEqual(len(session.aggregator.buffer), MAX_CANDLES)
        self.assertEqual(session.aggregator.buffer.last().start_ts, ts)
        self.assertGreater(session.aggregator.indicators.ema.ema9, 100.0)

    async def test_seed_failure_is_reported(self):
        session = self.make_session(FakeProvider(error=httpx.ConnectError("boom")))
        await session.start()
        self.assertFalse(await session.seed_task)

        self.assertEqual(session.last_error.code, "SEED_ERROR")
        self.assertEqual(len(session.aggregator.buffer), 0)
        self.assertEqual(session.state, ConnectionState.CONNECTED)

    async def test_seed_after_stop_is_discarded(self):
        session = self.make_session(FakeProvider(make_candles([100.0] * 10)))
        await session.stop()

        self.assertFalse(await session.seed())
        self.assertEqual(len(session.aggregator.buffer), 0)


class TestMarketHub(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        candles = make_candles([100.0] * 20) + make_candles([50.0] * 20, symbol="ETHUSDT", interval="5m")
        self.connector = FakeConnector()
        self.hub = MarketHub(make_settings(), FakeProvider(candles), connector=self.connector)

    async def asyncTearDown(self):
        await self.hub.stop()

    async def test_switch_chart_replaces_session(self):
        await self.hub.start()
        old = self.hub.chart
        old_conn = self.connector.last

        new = await self.hub.switch_chart("ethusdt", "5m")
        await new.seed_task

        self.assertIsNot(new, old)
        self.assertEqual(old.state, ConnectionState.DISCONNECTED)
        self.assertTrue(old_conn.closed_by_client)
        self.assertEqual((new.symbol, new.interval), ("ETHUSDT", "5m"))
        self.assertEqual(len(new.aggregator.buffer), 20)

        # stale message for the previous chart is dropped by the new aggregator
        stale = kline_message(START + timedelta(minutes=30), 1.0, closed=True, symbol="BTCUSDT", interval="1m")
        self.connector.last.feed(json.dumps(stale))
        await settle()
        self.assertEqual(len(new.aggregator.buffer), 20)

    async def test_overlapping_switches_start_only_the_latest(self):
        await self.hub.start()
        await self.hub.chart.seed_task
        provider = self.hub.provider
        provider.kline_calls.clear()

        await asyncio.gather(
            self.hub.switch_chart("ETHUSDT", "5m"),
            self.hub.switch_chart("SOLUSDT", "1h"),
        )
        await self.hub.chart.seed_task

        self.assertEqual((self.hub.chart.symbol, self.hub.chart.interval), ("SOLUSDT", "1h"))
        self.assertEqual(self.hub.chart.state, ConnectionState.CONNECTED)
        self.assertEqual(provider.kline_calls, [("SOLUSDT", "1h", MAX_CANDLES)])
        self.assertFalse(any(kline_stream("ETHUSDT", "5m") in url for url in self.connector.calls))

    async def test_switch_to_same_chart_is_noop(self):
        current = self.hub.chart
        self.assertIs(await self.hub.switch_chart("BTCUSDT", "1m"), current)

    async def test_switch_chart_rejects_unknown_interval(self):
        with self.assertRaises(ValueError):
            await self.hub.switch_chart("BTCUSDT", "7m")

    async def test_watchlist_changes_resubscribe(self):
        await self.hub.start()
        task_count = len(self.connector.calls)

        await self.hub.add_to_watchlist("solusdt")
        self.assertEqual(self.hub.ticker.symbols, ["BTCUSDT", "ETHUSDT", "SOLUSDT"])

        await self.hub.remove_from_watchlist("BTCUSDT")
        await settle()
        self.assertEqual(self.hub.watchlist.pairs, ["ETHUSDT", "SOLUSDT"])
        self.assertEqual(self.hub.ticker.symbols, ["ETHUSDT", "SOLUSDT"])
        self.assertGreater(len(self.connector.calls), task_count)

    async def test_trading_pairs_are_cached(self):
        first = self.hub.trading_pairs()
        second = self.hub.trading_pairs()

        self.assertIs(first, second)
        self.assertEqual(self.hub.provider.pairs_calls, 1)
        self.assertIsNotNone(self.hub.pairs_cached_at)


if __name__ == "__main__":
    unittest.main()
