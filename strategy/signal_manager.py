import json
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from api.metrics import metrics
from orchestration.persistence import KeyValueStore


logger = logging.getLogger(__name__)


class SignalKind(Enum):
    BUY = "BUY"
    SELL = "SELL"
    BREAKOUT = "BREAKOUT"
    BREAKDOWN = "BREAKDOWN"
    TOUCH = "TOUCH"
    HOLD = "HOLD"
    NEUTRAL = "NEUTRAL"
    WAIT = "WAIT"


ACTIONABLE_KINDS = frozenset({
    SignalKind.BUY,
    SignalKind.SELL,
    SignalKind.BREAKOUT,
    SignalKind.BREAKDOWN,
    SignalKind.TOUCH,
})

COMBINED_STRATEGY = 'COMBINED'
LAST_SIGNAL_KEY = 'lastSignal_{}'


@dataclass(frozen=True)
class Signal:
    kind: Optional[SignalKind]
    reason: str = ''
    price: Optional[float] = None
    confidence: int = 0
    strategy_id: str = ''
    symbol: Optional[str] = None
    timestamp: Optional[int] = None

    @property
    def is_actionable(self) -> bool:
        return self.kind in ACTIONABLE_KINDS

    def to_dict(self) -> Dict:
        return {
            'signal': self.kind.value if self.kind else None,
            'reason': self.reason,
            'price': self.price,
            'confidence': self.confidence,
            'strategy': self.strategy_id,
            'symbol': self.symbol,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> 'Signal':
        kind = data.get('signal')
        price = data.get('price')
        timestamp = data.get('timestamp')
        return cls(
            kind=SignalKind(kind) if kind else None,
            reason=data.get('reason') or '',
            price=float(price) if price is not None else None,
            confidence=int(data.get('confidence') or 0),
            strategy_id=data.get('strategy') or '',
            symbol=data.get('symbol'),
            timestamp=int(timestamp) if timestamp is not None else None,
        )


Handler = Callable[..., Awaitable[None]]


class SignalArbiter:
    """Per-strategy novelty tracking and best-signal selection.

    Each event keeps every registered handler, called in registration order:
      ``strategy_signal(strategy_id, signal)`` for every non-empty strategy output,
      ``new_signal(signal)`` when a strategy's kind changes (first signal included),
      ``signal_selected(signal)`` once per pass with the arbitrated signal.
    """

    _ALIASES = {
        'on_signal_selected': 'signal_selected',
        'on_strategy_signal_updated': 'strategy_signal',
        'on_new_signal': 'new_signal',
    }

    def __init__(self, symbol: str, store: Optional[KeyValueStore] = None):
        self.symbol = symbol
        self.store = store
        self.last_signals: Dict[str, Signal] = {}
        self._handlers: Dict[str, List[Handler]] = {}

    def register_handlers(self, **handlers: Optional[Handler]) -> None:
        for key, handler in handlers.items():
            if handler is None:
                continue
            self._handlers.setdefault(self._ALIASES.get(key, key), []).append(handler)

    async def _dispatch(self, name: str, *args) -> None:
        # A failing observer does not keep the event from the others
        for handler in list(self._handlers.get(name, ())):
            try:
                await handler(*args)
            except Exception:
                logger.exception("Signal handler %s failed", name)

    def is_new_signal(self, strategy_id: str, signal: Signal) -> bool:
        previous = self.last_signals.get(strategy_id)
        return previous is None or previous.kind != signal.kind

    def reset(self) -> None:
        self.last_signals.clear()

    def _stamp(self, signal: Signal, strategy_id: str, symbol: str, now_ms: int) -> Signal:
        return replace(signal, strategy_id=strategy_id, symbol=symbol, timestamp=now_ms)

    def _snapshot(self, signal: Signal) -> None:
        if self.store is None:
            return
        self.store.set(LAST_SIGNAL_KEY.format(signal.strategy_id), json.dumps(signal.to_dict()))

    def select_best(
        self,
        signals: Mapping[str, Signal],
        last_close: Optional[float],
        symbol: Optional[str] = None,
    ) -> Signal:
        best: Optional[Signal] = None
        for signal in signals.values():
            if signal is None or not signal.is_actionable:
                continue
            if best is None or signal.confidence > best.confidence:
                best = signal
        if best is not None:
            return best
        return Signal(
            kind=SignalKind.NEUTRAL,
            reason='No clear trading opportunity',
            price=last_close,
            confidence=30,
            strategy_id=COMBINED_STRATEGY,
            symbol=symbol or self.symbol,
            timestamp=int(time.time() * 1000),
        )

    async def process(
        self,
        results: Mapping[str, Optional[Signal]],
        last_close: Optional[float],
        symbol: Optional[str] = None,
    ) -> Signal:
        """Stamp, snapshot and announce one pass of strategy results.

        ``symbol`` is fixed by the caller at the start of the pass; it defaults
        to the arbiter's current symbol.
        """
        symbol = symbol or self.symbol
        now_ms = int(time.time() * 1000)
        stamped: Dict[str, Signal] = {}

        for strategy_id, signal in results.items():
            if signal is None or signal.kind is None:
                continue
            full = self._stamp(signal, strategy_id, symbol, now_ms)
            stamped[strategy_id] = full
            is_new = self.is_new_signal(strategy_id, full)

            await self._dispatch('strategy_signal', strategy_id, full)
            self._snapshot(full)
            metrics.record_strategy_signal(strategy_id, full.kind.value, is_new)
            if is_new:
                logger.info(
                    "New %s signal %s @ %s (confidence %s): %s",
                    strategy_id,
                    full.kind.value,
                    full.price,
                    full.confidence,
                    full.reason,
                )
                await self._dispatch('new_signal', full)

            self.last_signals[strategy_id] = full

        best = self.select_best(stamped, last_close, symbol)
        metrics.update_selected(best.confidence)
        await self._dispatch('signal_selected', best)
        return best
