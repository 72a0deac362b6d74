import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from api.metrics import metrics
from config import config
from ingest.binance_rest import BinanceRESTClient, DataFetchError
from ingest.candle_store import Candle, CandleStore
from ingest.websocket_client import KlineStreamClient

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[None]]
StreamFactory = Callable[[str, str], KlineStreamClient]


class MarketDataFeed:
    """Bridge the klines backfill and the live kline stream into one CandleStore.

    Events: ``candle_closed(candle)`` after a closing tick has been applied,
    ``backfilled(count)`` after every history load.
    """

    _ALIASES = {
        'candle_closed_handler': 'candle_closed',
        'backfill_handler': 'backfilled',
    }

    def __init__(
        self,
        store: CandleStore,
        rest_client: Optional[BinanceRESTClient] = None,
        stream_factory: Optional[StreamFactory] = None,
        symbol: Optional[str] = None,
        interval: Optional[str] = None,
        history_limit: Optional[int] = None,
    ):
        self.store = store
        self.rest = rest_client if rest_client is not None else BinanceRESTClient()
        self.stream_factory = stream_factory or KlineStreamClient
        self.symbol = (symbol or config.exchange['symbol']).upper()
        self.interval = interval or config.exchange['interval']
        self.history_limit = int(history_limit or config.exchange.get('kline_limit', 500))
        self.stream: Optional[KlineStreamClient] = None
        self._handlers: Dict[str, List[Handler]] = {}
        self._lock = asyncio.Lock()

    def register_handlers(self, **handlers: Handler) -> None:
        for key, handler in handlers.items():
            if handler is None:
                continue
            self._handlers.setdefault(self._ALIASES.get(key, key), []).append(handler)

    async def _dispatch(self, name: str, *args) -> None:
        for handler in list(self._handlers.get(name, ())):
            try:
                await handler(*args)
            except Exception:
                logger.exception("Market data handler %s failed", name)

    async def fetch_history(self) -> List[Candle]:
        try:
            candles = await self.rest.fetch_klines(self.symbol, self.interval, self.history_limit)
        except DataFetchError as exc:
            logger.error("History load failed for %s %s: %s", self.symbol, self.interval, exc)
            return []
        logger.info("Loaded %s candles for %s %s", len(candles), self.symbol, self.interval)
        return candles

    async def start(self, symbol: Optional[str] = None, interval: Optional[str] = None) -> None:
        async with self._lock:
            await self._start(symbol, interval)

    async def _start(self, symbol: Optional[str], interval: Optional[str]) -> None:
        # Only one subscription may feed the store
        await self.stop_stream()
        if symbol:
            self.symbol = symbol.upper()
        if interval:
            self.interval = interval

        candles = await self.fetch_history()
        self.store.backfill(candles)
        metrics.record_backfill(len(candles))
        metrics.update_window(len(self.store), self.store.last_close)
        await self._dispatch('backfilled', len(candles))

        self.stream = self.stream_factory(self.symbol, self.interval)
        self.stream.register_handler('kline', self.handle_kline)
        self.stream.start()

    async def handle_kline(self, candle: Candle, is_closed: bool) -> None:
        if not self.store.apply_update(candle, is_closed):
            metrics.record_drop('stale')
            return
        metrics.record_tick()
        metrics.update_window(len(self.store), candle.close)
        if is_closed:
            metrics.record_candle_closed()
            logger.debug("Candle %s closed at %.8g", candle.open_time, candle.close)
            await self._dispatch('candle_closed', candle)

    async def stop_stream(self) -> None:
        stream, self.stream = self.stream, None
        if stream is not None:
            await stream.stop()

    async def _restart(self, symbol: Optional[str] = None, interval: Optional[str] = None) -> None:
        async with self._lock:
            await self.stop_stream()
            self.store.clear()
            await self._start(symbol, interval)

    async def change_symbol(self, symbol: str) -> None:
        logger.info("Switching feed symbol %s -> %s", self.symbol, symbol.upper())
        await self._restart(symbol=symbol)

    async def change_interval(self, interval: str) -> None:
        logger.info("Switching feed interval %s -> %s", self.interval, interval)
        await self._restart(interval=interval)

    async def stop(self) -> None:
        await self.stop_stream()
        await self.rest.close()
