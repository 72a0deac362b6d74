import sys

sys.path.insert(0, '.')

from analytics.swings import SwingPoint
from strategy.evaluators import ChannelStrategy, TrendlineStrategy, TrendStrategy
from strategy.signal_manager import SignalKind
from ingest.candle_store import Candle
from tests.signal_fixtures import flat_candles, series_candles


def _at(time, close):
    return [Candle(time, close, close, close, close, 1.0)]


def _high(time, price):
    return SwingPoint(time, price, 'high', time)


def _low(time, price):
    return SwingPoint(time, price, 'low', time)


def test_trend_buy_on_rising_closes():
    signal = TrendStrategy().analyze(series_candles(range(1, 18)))
    assert signal.kind == SignalKind.BUY
    assert signal.confidence == 85
    assert signal.price == 17.0
    assert signal.strategy_id == 'TREND'


def test_trend_sell_on_falling_closes():
    signal = TrendStrategy().analyze(series_candles(range(17, 0, -1)))
    assert signal.kind == SignalKind.SELL
    assert signal.confidence == 85


def test_trend_waits_for_enough_candles():
    signal = TrendStrategy().analyze(series_candles(range(1, 17)))
    assert signal.kind == SignalKind.WAIT
    assert signal.confidence == 0


def test_trend_neutral_on_flat_closes():
    signal = TrendStrategy().analyze(flat_candles(60))
    assert signal.kind == SignalKind.NEUTRAL
    assert signal.confidence == 40


def test_evaluation_is_repeatable():
    candles = series_candles([100 + (i % 7) for i in range(80)])
    strategy = TrendStrategy()
    assert strategy.analyze(candles) == strategy.analyze(candles)


# high 110, low 100, higher high 120, low 105: the line through the lows is at 110 by time 5
TRENDLINE_SWINGS = [_high(0, 110.0), _low(1, 100.0), _high(2, 120.0), _low(3, 105.0)]


def test_trendline_touch():
    signal = TrendlineStrategy().analyze(_at(5, 110.2), TRENDLINE_SWINGS)
    assert signal.kind == SignalKind.TOUCH
    assert signal.confidence == 75
    assert signal.price == 110.2


def test_trendline_breakdown():
    signal = TrendlineStrategy().analyze(_at(5, 105.0), TRENDLINE_SWINGS)
    assert signal.kind == SignalKind.BREAKDOWN
    assert signal.confidence == 80


def test_trendline_hold_above_line():
    signal = TrendlineStrategy().analyze(_at(5, 120.0), TRENDLINE_SWINGS)
    assert signal.kind == SignalKind.HOLD
    assert signal.confidence == 60


def test_trendline_without_pattern_is_neutral():
    swings = [_high(0, 110.0), _low(1, 100.0), _high(2, 105.0), _low(3, 103.0)]
    signal = TrendlineStrategy().analyze(_at(5, 104.0), swings)
    assert signal.kind == SignalKind.NEUTRAL
    assert signal.confidence == 20


def test_trendline_waits_for_four_swings():
    signal = TrendlineStrategy().analyze(_at(5, 104.0), TRENDLINE_SWINGS[:3])
    assert signal.kind == SignalKind.WAIT
    assert signal.confidence == 0


def test_trendline_pattern_search_prefers_newest_points():
    swings = [
        _high(0, 90.0), _low(1, 80.0),
        _high(2, 110.0), _low(3, 100.0), _high(4, 120.0), _low(5, 105.0),
    ]
    pattern = TrendlineStrategy().find_ascending_pattern(swings)
    assert pattern.point4.time == 5
    assert pattern.point3.time == 4
    assert pattern.point2.time == 3
    assert pattern.point1.time == 2


# upper line through highs (0, 110) and (2, 120); the low at (1, 100) sets a lower line 15 below
CHANNEL_SWINGS = [_high(0, 110.0), _low(1, 100.0), _high(2, 120.0)]


def test_channel_sell_near_upper_boundary():
    signal = ChannelStrategy().analyze(_at(4, 129.0), CHANNEL_SWINGS)
    assert signal.kind == SignalKind.SELL
    assert signal.confidence == 70


def test_channel_buy_near_lower_boundary():
    signal = ChannelStrategy().analyze(_at(4, 116.0), CHANNEL_SWINGS)
    assert signal.kind == SignalKind.BUY
    assert signal.confidence == 70


def test_channel_hold_mid_channel():
    signal = ChannelStrategy().analyze(_at(4, 122.5), CHANNEL_SWINGS)
    assert signal.kind == SignalKind.HOLD
    assert signal.confidence == 50


def test_channel_band_checks_run_before_breakouts():
    assert ChannelStrategy().analyze(_at(4, 140.0), CHANNEL_SWINGS).kind == SignalKind.SELL
    assert ChannelStrategy().analyze(_at(4, 100.0), CHANNEL_SWINGS).kind == SignalKind.BUY


def test_zero_width_channel_uses_breakout_checks():
    swings = [_high(0, 110.0), _low(1, 115.0), _high(2, 120.0)]
    up = ChannelStrategy().analyze(_at(4, 131.0), swings)
    down = ChannelStrategy().analyze(_at(4, 129.0), swings)
    on_line = ChannelStrategy().analyze(_at(4, 130.0), swings)
    assert (up.kind, up.confidence) == (SignalKind.BREAKOUT, 85)
    assert (down.kind, down.confidence) == (SignalKind.BREAKDOWN, 85)
    assert on_line.kind == SignalKind.HOLD


def test_channel_without_pattern_is_neutral():
    swings = [_high(0, 120.0), _low(1, 100.0), _high(2, 110.0)]
    signal = ChannelStrategy().analyze(_at(4, 105.0), swings)
    assert signal.kind == SignalKind.NEUTRAL
    assert signal.confidence == 30


def test_channel_waits_for_three_swings():
    signal = ChannelStrategy().analyze(_at(4, 105.0), CHANNEL_SWINGS[:2])
    assert signal.kind == SignalKind.WAIT
