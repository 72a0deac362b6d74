from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from analytics.indicators import closes, simple_moving_average
from analytics.swings import SwingPoint
from config import config
from ingest.candle_store import Candle
from .signal_manager import Signal, SignalKind


@dataclass(frozen=True)
class TrendlinePattern:
    point1: SwingPoint  # high
    point2: SwingPoint  # low
    point3: SwingPoint  # higher high
    point4: SwingPoint  # low


@dataclass(frozen=True)
class ChannelPattern:
    point1: SwingPoint  # high
    point2: SwingPoint  # low
    point3: SwingPoint  # higher high


def _line_at(p1: SwingPoint, p2: SwingPoint, at_time: int) -> float:
    slope = (p2.price - p1.price) / (p2.time - p1.time)
    return p2.price + slope * (at_time - p2.time)


class StrategyEvaluator(ABC):
    strategy_id = ''

    def __init__(self, settings: Optional[dict] = None):
        self.settings = dict(settings if settings is not None else config.strategies.get(self.strategy_id.lower(), {}))

    def _signal(self, kind: SignalKind, reason: str, confidence: int, price: Optional[float] = None) -> Signal:
        return Signal(kind=kind, reason=reason, price=price, confidence=confidence, strategy_id=self.strategy_id)

    def wait(self, reason: str) -> Signal:
        return self._signal(SignalKind.WAIT, reason, 0)

    @abstractmethod
    def analyze(self, candles: Sequence[Candle], swing_points: Optional[Sequence[SwingPoint]] = None) -> Signal:
        pass


class TrendStrategy(StrategyEvaluator):
    """Closes confirming a side of the simple moving average."""

    strategy_id = 'TREND'

    def __init__(self, settings: Optional[dict] = None):
        super().__init__(settings)
        self.period = int(self.settings.get('period', 14))
        self.confirm_bars = int(self.settings.get('confirm_bars', 3))

    def analyze(self, candles: Sequence[Candle], swing_points: Optional[Sequence[SwingPoint]] = None) -> Signal:
        if len(candles) < self.period + self.confirm_bars:
            return self.wait('Not enough candles')

        close_arr = closes(candles)
        ma = simple_moving_average(close_arr, self.period)
        recent = close_arr[-self.confirm_bars:]
        aligned_ma = ma[-self.confirm_bars:]
        price = float(close_arr[-1])

        if all(c > m for c, m in zip(recent, aligned_ma)):
            return self._signal(
                SignalKind.BUY, f'{self.confirm_bars} candles closed above MA{self.period}', 85, price
            )
        if all(c < m for c, m in zip(recent, aligned_ma)):
            return self._signal(
                SignalKind.SELL, f'{self.confirm_bars} candles closed below MA{self.period}', 85, price
            )
        return self._signal(SignalKind.NEUTRAL, 'Trend direction not confirmed', 40, price)


class TrendlineStrategy(StrategyEvaluator):
    """Ascending trendline drawn through the two most recent lows of a zig-zag."""

    strategy_id = 'trendline'

    def __init__(self, settings: Optional[dict] = None):
        super().__init__(settings)
        self.touch_pct = float(self.settings.get('touch_pct', 0.5))
        self.breakdown_ratio = float(self.settings.get('breakdown_ratio', 0.995))

    def find_ascending_pattern(self, swings: Sequence[SwingPoint]) -> Optional[TrendlinePattern]:
        # Scan from the newest swing backwards; the first structural match wins.
        for i in range(len(swings) - 1, 2, -1):
            if swings[i].kind != 'low':
                continue
            for j in range(i - 1, 1, -1):
                if swings[j].kind != 'high':
                    continue
                for k in range(j - 1, 0, -1):
                    if swings[k].kind != 'low':
                        continue
                    for l in range(k - 1, -1, -1):
                        if swings[l].kind != 'high':
                            continue
                        if swings[j].price > swings[l].price:
                            return TrendlinePattern(swings[l], swings[k], swings[j], swings[i])
        return None

    def analyze(self, candles: Sequence[Candle], swing_points: Optional[Sequence[SwingPoint]] = None) -> Signal:
        if not candles or not swing_points or len(swing_points) < 4:
            return self.wait('Not enough swing points')

        pattern = self.find_ascending_pattern(swing_points)
        if pattern is None:
            return self._signal(SignalKind.NEUTRAL, 'No ascending pattern found', 20)

        current = candles[-1]
        price = current.close
        line = _line_at(pattern.point2, pattern.point4, current.open_time)

        if line <= 0:
            return self._signal(SignalKind.HOLD, 'Price above trendline', 60, price)
        distance_pct = abs(price - line) / line * 100
        if distance_pct < self.touch_pct:
            return self._signal(SignalKind.TOUCH, 'Price touching ascending trendline', 75, price)
        if price < line * self.breakdown_ratio:
            return self._signal(SignalKind.BREAKDOWN, 'Trendline broken to the downside', 80, price)
        return self._signal(SignalKind.HOLD, 'Price above trendline', 60, price)


class ChannelStrategy(StrategyEvaluator):
    """Position of the price inside an ascending channel."""

    strategy_id = 'channel'

    def __init__(self, settings: Optional[dict] = None):
        super().__init__(settings)
        self.upper_band = float(self.settings.get('upper_band', 0.9))
        self.lower_band = float(self.settings.get('lower_band', 0.1))

    def find_ascending_channel(self, swings: Sequence[SwingPoint]) -> Optional[ChannelPattern]:
        for i in range(len(swings) - 1, 1, -1):
            if swings[i].kind != 'high':
                continue
            for j in range(i - 1, 0, -1):
                if swings[j].kind != 'low':
                    continue
                for k in range(j - 1, -1, -1):
                    if swings[k].kind != 'high':
                        continue
                    if swings[i].price > swings[k].price:
                        return ChannelPattern(swings[k], swings[j], swings[i])
        return None

    def analyze(self, candles: Sequence[Candle], swing_points: Optional[Sequence[SwingPoint]] = None) -> Signal:
        if not candles or not swing_points or len(swing_points) < 3:
            return self.wait('Not enough swing points for a channel')

        channel = self.find_ascending_channel(swing_points)
        if channel is None:
            return self._signal(SignalKind.NEUTRAL, 'No channel found', 30)

        current = candles[-1]
        price = current.close
        upper = _line_at(channel.point1, channel.point3, current.open_time)
        upper_at_low = _line_at(channel.point1, channel.point3, channel.point2.time)
        lower = upper + (channel.point2.price - upper_at_low)

        width = upper - lower
        if width != 0:
            position = (price - lower) / width
            if position >= self.upper_band:
                return self._signal(SignalKind.SELL, 'Price near upper channel boundary', 70, price)
            if position <= self.lower_band:
                return self._signal(SignalKind.BUY, 'Price near lower channel boundary', 70, price)
        if price > upper:
            return self._signal(SignalKind.BREAKOUT, 'Channel broken to the upside', 85, price)
        if price < lower:
            return self._signal(SignalKind.BREAKDOWN, 'Channel broken to the downside', 85, price)
        return self._signal(SignalKind.HOLD, 'Price mid-channel', 50, price)
