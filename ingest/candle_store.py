import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from config import config


logger = logging.getLogger(__name__)


class ParseError(ValueError):
    """A kline row or stream tick could not be turned into a Candle."""


@dataclass(frozen=True)
class Candle:
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict:
        return {
            'open_time': self.open_time,
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume,
        }


def _build_candle(open_time: Any, open_: Any, high: Any, low: Any, close: Any, volume: Any) -> Candle:
    try:
        candle = Candle(
            open_time=int(open_time),
            open=float(open_),
            high=float(high),
            low=float(low),
            close=float(close),
            volume=float(volume),
        )
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Invalid candle field: {exc}") from exc
    if not candle.low <= min(candle.open, candle.close) <= max(candle.open, candle.close) <= candle.high:
        raise ParseError(f"Inconsistent OHLC at {candle.open_time}")
    return candle


def candle_from_kline_row(row: Sequence) -> Candle:
    """Parse a REST kline row ``[openTime, open, high, low, close, volume, ...]``."""
    if not isinstance(row, (list, tuple)) or len(row) < 6:
        raise ParseError(f"Malformed kline row: {row!r}")
    return _build_candle(*row[:6])


def candle_from_stream_event(payload: Any) -> Tuple[Candle, bool]:
    """Parse a kline stream event into ``(candle, is_closed)``.

    Accepts raw JSON text, a bare ``{"e": "kline", "k": {...}}`` event or the
    combined-stream envelope ``{"stream": ..., "data": {...}}``.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise ParseError(f"Invalid JSON tick: {exc}") from exc
    if isinstance(payload, dict) and isinstance(payload.get('data'), dict):
        payload = payload['data']
    kline = payload.get('k') if isinstance(payload, dict) else None
    if not isinstance(kline, dict):
        raise ParseError("Tick has no kline body")
    try:
        candle = _build_candle(kline['t'], kline['o'], kline['h'], kline['l'], kline['c'], kline['v'])
    except KeyError as exc:
        raise ParseError(f"Kline field missing: {exc}") from exc
    return candle, bool(kline.get('x', False))


class CandleStore:
    """Rolling OHLCV window for one (symbol, interval) pair.

    Only the tail candle may change, and only until a closing tick finalizes
    it. Consumers get tuples from :meth:`snapshot` and never see the deque.
    """

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = int(capacity or config.candles.get('capacity', 500))
        self._candles: deque = deque(maxlen=self.capacity)
        self._tail_closed = False

    def __len__(self) -> int:
        return len(self._candles)

    def backfill(self, candles: Iterable[Candle]) -> None:
        window: deque = deque(maxlen=self.capacity)
        for candle in candles:
            if window and candle.open_time <= window[-1].open_time:
                logger.warning("Out-of-order candle %s dropped from backfill", candle.open_time)
                continue
            window.append(candle)
        self._candles = window
        self._tail_closed = False
        logger.debug("Backfilled %s candles", len(self._candles))

    def clear(self) -> None:
        self._candles = deque(maxlen=self.capacity)
        self._tail_closed = False

    def apply_update(self, candle: Candle, is_closed: bool) -> bool:
        """Merge one stream tick; returns False when the tick was ignored."""
        if not self._candles:
            self._candles.append(candle)
        else:
            tail = self._candles[-1]
            if candle.open_time == tail.open_time:
                if self._tail_closed:
                    return False
                self._candles[-1] = candle
            elif candle.open_time > tail.open_time:
                # maxlen evicts the oldest candle on overflow
                self._candles.append(candle)
            else:
                logger.debug(
                    "Stale tick for %s ignored (tail %s)",
                    candle.open_time,
                    tail.open_time,
                )
                return False
        self._tail_closed = is_closed
        return True

    def snapshot(self) -> Tuple[Candle, ...]:
        return tuple(self._candles)

    @property
    def tail_closed(self) -> bool:
        return self._tail_closed

    @property
    def last_close(self) -> Optional[float]:
        return self._candles[-1].close if self._candles else None

    def is_ready(self, min_candles: int = 1) -> bool:
        return len(self._candles) >= min_candles
