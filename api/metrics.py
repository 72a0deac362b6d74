import errno
import logging
from typing import Optional

from prometheus_client import Counter, Gauge, start_http_server


logger = logging.getLogger(__name__)

_METRICS_SERVER_STARTED = False
_METRICS_PORT: Optional[int] = None


class MetricsCollector:
    def __init__(self):
        self.ticks_processed = Counter('kline_ticks_processed_total', 'Kline stream ticks applied to the candle store')
        self.ticks_dropped = Counter('kline_ticks_dropped_total', 'Kline stream ticks dropped', ['reason'])
        self.candles_closed = Counter('candles_closed_total', 'Closed candles received from the stream')
        self.backfills = Counter('candle_backfills_total', 'Historical backfills', ['result'])
        self.reconnect_count = Counter('websocket_reconnects_total', 'Total WebSocket reconnects')

        self.window_size = Gauge('candle_window_size', 'Candles currently held in the window')
        self.current_price = Gauge('current_price', 'Close of the latest candle')

        self.analysis_passes = Counter('analysis_passes_total', 'Completed analysis passes', ['trigger'])
        self.analysis_skipped = Counter('analysis_skipped_total', 'Analysis triggers skipped', ['reason'])
        self.strategy_signals = Counter('strategy_signals_total', 'Signals produced per strategy', ['strategy', 'kind'])
        self.new_signals = Counter('new_signals_total', 'Signal kind transitions per strategy', ['strategy'])
        self.selected_confidence = Gauge('selected_signal_confidence', 'Confidence of the arbitrated signal')

    def record_tick(self):
        self.ticks_processed.inc()

    def record_drop(self, reason: str):
        self.ticks_dropped.labels(reason=reason).inc()

    def record_candle_closed(self):
        self.candles_closed.inc()

    def record_backfill(self, count: int):
        self.backfills.labels(result='ok' if count else 'empty').inc()

    def record_reconnect(self):
        self.reconnect_count.inc()

    def update_window(self, size: int, last_close: Optional[float] = None):
        self.window_size.set(size)
        if last_close is not None:
            self.current_price.set(last_close)

    def record_analysis(self, trigger: str):
        self.analysis_passes.labels(trigger=trigger).inc()

    def record_analysis_skipped(self, reason: str):
        self.analysis_skipped.labels(reason=reason).inc()

    def record_strategy_signal(self, strategy: str, kind: str, is_new: bool):
        self.strategy_signals.labels(strategy=strategy, kind=kind).inc()
        if is_new:
            self.new_signals.labels(strategy=strategy).inc()

    def update_selected(self, confidence: int):
        self.selected_confidence.set(confidence)


def start_metrics_server(port: int = 9090, port_scan_limit: int = 0):
    global _METRICS_SERVER_STARTED, _METRICS_PORT
    if _METRICS_SERVER_STARTED:
        return
    last_error: Optional[OSError] = None
    for offset in range(max(0, port_scan_limit) + 1):
        candidate = port + offset
        try:
            start_http_server(candidate)
        except OSError as exc:
            last_error = exc
            if exc.errno == errno.EADDRINUSE:
                logger.warning(
                    "Prometheus metrics server port %s already in use; trying next candidate",
                    candidate,
                )
                continue
            raise
        _METRICS_SERVER_STARTED = True
        _METRICS_PORT = candidate
        logger.info("Prometheus metrics server started on port %s", candidate)
        return
    if last_error and last_error.errno == errno.EADDRINUSE:
        raise RuntimeError(
            f"Unable to bind Prometheus metrics server on ports {port}-{port + port_scan_limit}"
        ) from last_error
    if last_error:
        raise last_error


metrics = MetricsCollector()
