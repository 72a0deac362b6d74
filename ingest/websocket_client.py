import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets

from api.metrics import metrics
from config import config
from monitoring.async_utils import cancel_task
from .candle_store import Candle, ParseError, candle_from_stream_event


logger = logging.getLogger(__name__)

KlineHandler = Callable[[Candle, bool], Awaitable[None]]


class StreamError(ConnectionError):
    """The kline stream ended or failed; always answered with a reconnect."""


class KlineStreamClient:
    """Supervised ``<symbol>@kline_<interval>`` subscription.

    The client owns its task: :meth:`stop` cancels it, which also cancels any
    pending reconnect sleep, so a stopped client can never resubscribe.
    Reconnects use a fixed delay with no attempt cap.
    """

    def __init__(
        self,
        symbol: str,
        interval: str,
        ws_url: Optional[str] = None,
        reconnect_delay_s: Optional[float] = None,
        ping_interval_s: Optional[float] = None,
        connect: Optional[Callable[..., Any]] = None,
    ):
        self.symbol = symbol.upper()
        self.interval = interval
        self.ws_url = (ws_url or config.exchange.get('ws_url', 'wss://stream.binance.com:9443/ws')).rstrip('/')
        delay = reconnect_delay_s if reconnect_delay_s is not None else config.websocket.get('reconnect_delay_s', 5)
        self.reconnect_delay_s = float(delay)
        self.ping_interval_s = ping_interval_s or config.websocket.get('ping_interval_s', 20)
        self._connect = connect or websockets.connect

        self.handlers: Dict[str, Callable] = {}
        self.running = False
        self.connected = False
        self.reconnect_count = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def stream_name(self) -> str:
        return f"{self.symbol.lower()}@kline_{self.interval}"

    @property
    def url(self) -> str:
        return f"{self.ws_url}/{self.stream_name}"

    def register_handler(self, event: str, handler: Callable):
        self.handlers[event] = handler

    async def _handle_message(self, raw: Any) -> None:
        try:
            candle, is_closed = candle_from_stream_event(raw)
        except ParseError as exc:
            logger.warning("Dropping malformed kline tick on %s: %s", self.stream_name, exc)
            metrics.record_drop('parse')
            return

        handler = self.handlers.get('kline')
        if handler is None:
            return
        try:
            await handler(candle, is_closed)
        except Exception:
            logger.exception("Kline handler failed on %s", self.stream_name)

    async def _handle_reconnect(self) -> None:
        self.reconnect_count += 1
        metrics.record_reconnect()
        logger.info(
            "Reconnecting %s in %.1fs (attempt %s)",
            self.stream_name,
            self.reconnect_delay_s,
            self.reconnect_count,
        )
        await asyncio.sleep(self.reconnect_delay_s)

    async def run(self):
        while self.running:
            try:
                async with self._connect(self.url, ping_interval=self.ping_interval_s) as ws:
                    self.connected = True
                    logger.info("Kline stream connected: %s", self.stream_name)
                    async for raw in ws:
                        await self._handle_message(raw)
                    raise StreamError("closed by remote")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Kline stream %s error: %s", self.stream_name, e)
            finally:
                self.connected = False

            if not self.running:
                break
            await self._handle_reconnect()

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self.running = True
        self._task = asyncio.create_task(self.run(), name=f"kline-stream:{self.stream_name}")
        return self._task

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    async def stop(self):
        self.running = False
        await cancel_task(self._task)
        self._task = None
