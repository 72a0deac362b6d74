from typing import Sequence

import numpy as np

from ingest.candle_store import Candle


def closes(candles: Sequence[Candle]) -> np.ndarray:
    return np.fromiter((c.close for c in candles), dtype=float, count=len(candles))


def simple_moving_average(values: Sequence[float], period: int) -> np.ndarray:
    """Trailing SMA; element ``k`` averages ``values[k : k + period]``.

    The result has ``len(values) - period + 1`` entries, so its last element
    lines up with the last input value. Empty when there is not enough data.
    """
    if period < 1:
        raise ValueError("period must be positive")
    arr = np.asarray(values, dtype=float)
    if len(arr) < period:
        return np.empty(0, dtype=float)
    return np.convolve(arr, np.ones(period), mode='valid') / period
