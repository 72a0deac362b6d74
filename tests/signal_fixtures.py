import asyncio
import json
import sys
from typing import List, Optional, Sequence

sys.path.insert(0, '.')

from ingest.binance_rest import DataFetchError
from ingest.candle_store import Candle, CandleStore
from ingest.market_data_manager import MarketDataFeed
from main import SignalEngine
from orchestration.persistence import MemoryStore

BASE_TIME = 1_700_000_000_000
MINUTE = 60_000


def make_candle(index: int, close: float, high: Optional[float] = None, low: Optional[float] = None) -> Candle:
    high = close if high is None else high
    low = close if low is None else low
    return Candle(BASE_TIME + index * MINUTE, close, high, low, close, 1.0)


def flat_candles(count: int, price: float = 100.0) -> List[Candle]:
    return [make_candle(i, price) for i in range(count)]


def series_candles(closes: Sequence[float]) -> List[Candle]:
    return [make_candle(i, c) for i, c in enumerate(closes)]


# Flat lead-in, then highs at 44 (105) and 52 (109), lows at 48 (101) and 56 (103).
# The last close sits on the line through the two lows (103.75 at index 59).
ZIGZAG_CLOSES = [100.0] * 40 + [
    101.0, 102.0, 103.0, 104.0, 105.0,
    104.0, 103.0, 102.0, 101.0,
    103.0, 105.0, 107.0, 109.0,
    107.5, 106.0, 104.5, 103.0,
    105.5, 104.2, 103.8,
]


def zigzag_candles() -> List[Candle]:
    return series_candles(ZIGZAG_CLOSES)


def kline_event(candle: Candle, closed: bool, symbol: str = 'BTCUSDT') -> str:
    return json.dumps({
        'e': 'kline',
        's': symbol,
        'k': {
            't': candle.open_time,
            'o': str(candle.open),
            'h': str(candle.high),
            'l': str(candle.low),
            'c': str(candle.close),
            'v': str(candle.volume),
            'x': closed,
        },
    })


class DummyRESTClient:
    def __init__(self, candles: Optional[Sequence[Candle]] = None, fail: bool = False, delay: float = 0):
        self.candles = list(candles or [])
        self.fail = fail
        self.delay = delay
        self.requests = []
        self.closed = False

    async def fetch_klines(self, symbol, interval, limit=500):
        self.requests.append((symbol, interval, limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise DataFetchError("klines request failed: 503")
        return list(self.candles[-limit:])

    async def close(self):
        self.closed = True


class DummyStream:
    """Stands in for KlineStreamClient; tests push ticks with :meth:`emit`."""

    def __init__(self, symbol, interval):
        self.symbol = symbol
        self.interval = interval
        self.handlers = {}
        self.started = False
        self.stopped = False
        self.connected = True
        self.task = None

    def register_handler(self, event, handler):
        self.handlers[event] = handler

    def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def emit(self, candle: Candle, closed: bool):
        await self.handlers['kline'](candle, closed)


class RecordingNotifier:
    def __init__(self):
        self.signals = []

    async def on_new_signal(self, signal):
        self.signals.append(signal)


def build_engine(candles=None, fail=False, store=None, config_obj=None, stream_factory=DummyStream, delay=0):
    rest = DummyRESTClient(candles, fail=fail, delay=delay)
    candle_store = CandleStore(capacity=500)
    feed = MarketDataFeed(
        candle_store,
        rest_client=rest,
        stream_factory=stream_factory,
        symbol='BTCUSDT',
        interval='15m',
        history_limit=500,
    )
    notifier = RecordingNotifier()
    engine = SignalEngine(
        config_obj,
        store=store if store is not None else MemoryStore(),
        candle_store=candle_store,
        feed=feed,
        notifier=notifier,
    )
    return engine, rest, notifier
