import asyncio
import json
import logging
from typing import Dict, List, Optional

from analytics.swings import SwingPointDetector
from api.alerts import SignalAlertNotifier
from api.metrics import metrics, start_metrics_server
from config import config
from config.utils import get_config_section
from ingest.candle_store import CandleStore
from ingest.market_data_manager import MarketDataFeed
from monitoring.async_utils import run_tasks_with_cleanup
from monitoring.logging_utils import setup_logging
from orchestration.history import SignalHistoryLog
from orchestration.persistence import JsonFileStore, KeyValueStore
from orchestration.scheduler import AnalysisScheduler
from strategy.signal_manager import LAST_SIGNAL_KEY, Signal, SignalArbiter
from strategy.signal_processor import SignalProcessor


logger = logging.getLogger(__name__)

LAST_LIVE_SIGNAL_KEY = 'lastLiveSignal'


class SignalEngine:
    """Live signal analysis for one (symbol, interval) subscription.

    Collaborators are injected so tests and embedders can swap the feed, the
    store or the notifier; nothing here is module-global.
    """

    def __init__(
        self,
        config_obj=None,
        store: Optional[KeyValueStore] = None,
        candle_store: Optional[CandleStore] = None,
        feed: Optional[MarketDataFeed] = None,
        notifier: Optional[SignalAlertNotifier] = None,
        processor: Optional[SignalProcessor] = None,
    ):
        # CandleStore and Config define __len__, so an empty one is falsy
        self.config = config_obj if config_obj is not None else config
        self.exchange_cfg = get_config_section(self.config, 'exchange')
        self.analysis_cfg = get_config_section(self.config, 'analysis')
        self.history_cfg = get_config_section(self.config, 'history')
        self.monitoring_cfg = get_config_section(self.config, 'monitoring')

        self.min_candles = int(self.analysis_cfg.get('min_candles', 50))
        if store is None:
            store = JsonFileStore(self.history_cfg.get('store_path', 'logs/signal_store.json'))
        self.store = store
        if candle_store is None:
            if feed is not None:
                candle_store = feed.store
            else:
                candle_store = CandleStore(get_config_section(self.config, 'candles').get('capacity'))
        self.candle_store = candle_store
        if feed is None:
            feed = MarketDataFeed(
                self.candle_store,
                symbol=self.exchange_cfg.get('symbol'),
                interval=self.exchange_cfg.get('interval'),
                history_limit=self.exchange_cfg.get('kline_limit'),
            )
        elif feed.store is not self.candle_store:
            raise ValueError("feed must write into the engine's candle store")
        self.feed = feed
        if processor is None:
            processor = SignalProcessor(
                swing_detector=SwingPointDetector(self.analysis_cfg.get('swing_lookback')),
                settings=get_config_section(self.config, 'strategies'),
            )
        self.processor = processor
        self.arbiter = SignalArbiter(self.feed.symbol, self.store)
        self.history = SignalHistoryLog(self.store, capacity=self.history_cfg.get('capacity'))
        self.scheduler = AnalysisScheduler(self.analyze, interval_s=self.analysis_cfg.get('interval_s'))
        self.notifier = notifier if notifier is not None else SignalAlertNotifier()

        self.latest_signal: Optional[Signal] = None
        self.running = False
        # Held for a whole pass and for a whole symbol/interval switch
        self._pass_lock = asyncio.Lock()

        self.feed.register_handlers(candle_closed=self.handle_candle_closed)
        self.arbiter.register_handlers(new_signal=self.notifier.on_new_signal)

    @property
    def symbol(self) -> str:
        return self.feed.symbol

    @property
    def interval(self) -> str:
        return self.feed.interval

    @property
    def strategy_signals(self) -> Dict[str, Signal]:
        return dict(self.arbiter.last_signals)

    def register_handlers(self, **handlers) -> None:
        """Attach observers: ``signal_selected``, ``strategy_signal``, ``new_signal``.

        The ``on_*`` names (``on_signal_selected`` and friends) are accepted too.
        Observers are added alongside the notifier and any earlier ones.
        """
        self.arbiter.register_handlers(**handlers)

    async def handle_candle_closed(self, candle) -> None:
        await self.scheduler.trigger('candle_closed')

    async def analyze(self) -> Optional[Signal]:
        async with self._pass_lock:
            candles = self.candle_store.snapshot()
            if len(candles) < self.min_candles:
                logger.debug("Not ready: %s/%s candles", len(candles), self.min_candles)
                metrics.record_analysis_skipped('not_ready')
                return None

            symbol = self.symbol
            results = self.processor.evaluate(candles)
            best = await self.arbiter.process(results, candles[-1].close, symbol=symbol)
            self.history.record(best)
            self.store.set(LAST_LIVE_SIGNAL_KEY, json.dumps(best.to_dict()))
            self.latest_signal = best
            return best

    def swing_points(self) -> List:
        return list(self.processor.last_swings)

    async def start(self):
        self.running = True
        self.history.load()
        await self.feed.start()
        await self.scheduler.trigger('backfill')
        self.scheduler.start()
        logger.info("Signal engine running for %s %s", self.symbol, self.interval)

    async def run(self):
        if self.monitoring_cfg.get('prometheus_enabled'):
            start_metrics_server(int(self.monitoring_cfg.get('prometheus_port', 9090)))
        await self.start()

        # The feed owns the stream task; it is replaced on every symbol switch
        tasks = [self.scheduler.task]

        async def _cleanup():
            await self.stop()

        await run_tasks_with_cleanup(tasks, cleanup=_cleanup)

    async def _switch(self, reason: str, restart) -> None:
        # Waits for an in-flight pass so no pass spans two subscriptions
        async with self._pass_lock:
            self.arbiter.reset()
            self.latest_signal = None
            await restart()
            self.arbiter.symbol = self.feed.symbol
        await self.scheduler.trigger(reason)

    async def change_symbol(self, symbol: str):
        await self._switch('symbol_change', lambda: self.feed.change_symbol(symbol))

    async def change_interval(self, interval: str):
        await self._switch('interval_change', lambda: self.feed.change_interval(interval))

    def clear_history(self):
        self.history.clear()
        for strategy_id in self.processor.strategy_ids:
            self.store.remove(LAST_SIGNAL_KEY.format(strategy_id))
        logger.info("Signal history cleared")

    async def stop(self):
        if not self.running:
            return
        self.running = False
        await self.scheduler.stop()
        await self.feed.stop()


async def main():
    engine = SignalEngine(config)
    try:
        await engine.run()
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Signal engine shutting down on interrupt")
        await engine.stop()


if __name__ == "__main__":
    setup_logging(config.monitoring.get('log_level'))
    asyncio.run(main())
