import logging
from typing import Dict, List, Mapping, Optional, Sequence

from analytics.swings import SwingPoint, SwingPointDetector
from config import config
from config.utils import get_config_section
from ingest.candle_store import Candle
from strategy.evaluators import ChannelStrategy, StrategyEvaluator, TrendlineStrategy, TrendStrategy
from strategy.signal_manager import Signal

logger = logging.getLogger(__name__)


class SignalProcessor:
    """Run swing detection and every strategy over one candle snapshot.

    Strategies are evaluated in registration order (Trend, Trendline,
    Channel), which is also the tie-break order used by the arbiter. Without
    explicit ``strategies`` they are built from ``settings``, the
    ``strategies`` config section keyed by lower-cased strategy id.
    """

    def __init__(
        self,
        swing_detector: Optional[SwingPointDetector] = None,
        strategies: Optional[Sequence[StrategyEvaluator]] = None,
        settings: Optional[Mapping] = None,
    ):
        self.swing_detector = swing_detector if swing_detector is not None else SwingPointDetector()
        if strategies is None:
            if settings is None:
                settings = get_config_section(config, 'strategies')
            strategies = tuple(
                cls(dict(settings.get(cls.strategy_id.lower()) or {}))
                for cls in (TrendStrategy, TrendlineStrategy, ChannelStrategy)
            )
        self.strategies: List[StrategyEvaluator] = list(strategies)
        self.last_swings: List[SwingPoint] = []

    @property
    def strategy_ids(self) -> List[str]:
        return [s.strategy_id for s in self.strategies]

    def evaluate(self, candles: Sequence[Candle]) -> Dict[str, Signal]:
        swings = self.swing_detector.detect(candles)
        self.last_swings = swings
        results: Dict[str, Signal] = {}
        for strategy in self.strategies:
            results[strategy.strategy_id] = strategy.analyze(candles, swings)
        logger.debug(
            "Analysis over %s candles, %s swings: %s",
            len(candles),
            len(swings),
            {sid: sig.kind.value for sid, sig in results.items()},
        )
        return results
