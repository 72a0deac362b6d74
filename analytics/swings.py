from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy.signal import argrelextrema

from config import config
from ingest.candle_store import Candle


@dataclass(frozen=True)
class SwingPoint:
    index: int
    price: float
    kind: str  # 'high' or 'low'
    time: int

    def to_dict(self) -> Dict:
        return {'index': self.index, 'price': self.price, 'type': self.kind, 'time': self.time}


class SwingPointDetector:
    """Strict local extrema over a symmetric ``lookback`` neighbourhood.

    Index ``i`` is a swing high when its high is strictly greater than every
    other high in ``[i - lookback, i + lookback]``; lows mirror that. Only
    ``lookback <= i < len - lookback`` is considered, so edge candles are
    never classified.
    """

    def __init__(self, lookback: Optional[int] = None):
        if lookback is None:
            lookback = config.analysis.get('swing_lookback', 3)
        self.lookback = int(lookback)
        if self.lookback < 1:
            raise ValueError("lookback must be at least 1")

    def detect(self, candles: Sequence[Candle], lookback: Optional[int] = None) -> List[SwingPoint]:
        order = int(lookback) if lookback is not None else self.lookback
        if order < 1:
            raise ValueError("lookback must be at least 1")
        n = len(candles)
        if n < 2 * order + 1:
            return []

        highs = np.fromiter((c.high for c in candles), dtype=float, count=n)
        lows = np.fromiter((c.low for c in candles), dtype=float, count=n)

        # argrelextrema clips at the edges, so restrict to full neighbourhoods
        high_idx = {int(i) for i in argrelextrema(highs, np.greater, order=order)[0] if order <= i < n - order}
        low_idx = {int(i) for i in argrelextrema(lows, np.less, order=order)[0] if order <= i < n - order}

        swings: List[SwingPoint] = []
        for i in sorted(high_idx | low_idx):
            if i in high_idx:
                swings.append(SwingPoint(i, candles[i].high, 'high', candles[i].open_time))
            if i in low_idx:
                swings.append(SwingPoint(i, candles[i].low, 'low', candles[i].open_time))
        return swings
