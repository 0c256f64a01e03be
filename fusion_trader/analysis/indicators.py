"""
Indicator library.

Pure functions over closing-price sequences or candle sequences. Every
function is total: when there is not enough history, or the input contains
values that are not finite numbers, the result is ``None`` ("unavailable")
and callers treat it as a neutral reading.
"""
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import numpy as np

from fusion_trader.agents.data_structures import Candle


@dataclass(frozen=True)
class MACDResult:
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    middle: float
    upper: float
    lower: float
    std: float


@dataclass(frozen=True)
class VolumeProfile:
    """
    Volume-by-price histogram over the observed close range.

    Attributes:
        nodes: Accumulated volume per bucket, lowest price bucket first.
        poc: Point of control, the midpoint price of the heaviest bucket.
        range_min: Lowest observed close.
        range_max: Highest observed close.
    """
    nodes: List[float]
    poc: float
    range_min: float
    range_max: float


def _as_array(values: Optional[Sequence[Any]]) -> Optional[np.ndarray]:
    if values is None:
        return None
    try:
        array = np.asarray([float(v) for v in values], dtype=float)
    except (TypeError, ValueError):
        return None
    if array.ndim != 1 or not np.all(np.isfinite(array)):
        return None
    return array


def _as_candles(candles: Optional[Sequence[Any]]) -> List[Candle]:
    if not candles:
        return []
    return [Candle.from_raw(candle) for candle in candles]


def _all_finite(bars: Sequence[Candle]) -> bool:
    return all(
        math.isfinite(value)
        for bar in bars
        for value in (bar.open, bar.high, bar.low, bar.close, bar.volume)
    )


def _ema(array: np.ndarray, period: int) -> Optional[float]:
    if period < 1 or len(array) < period:
        return None
    k = 2 / (period + 1)
    value = float(array[:period].mean())
    for price in array[period:]:
        value = float(price) * k + value * (1 - k)
    return value


def closes(candles: Optional[Sequence[Any]]) -> List[float]:
    """Closing prices of a candle sequence, oldest first."""
    return [candle.close for candle in _as_candles(candles)]


def normalize(x: float, lower: float, upper: float) -> float:
    """Position of ``x`` inside ``[lower, upper]``, clamped to [0, 1]; 0 for an empty range."""
    if upper == lower:
        return 0.0
    return max(0.0, min(1.0, (x - lower) / (upper - lower)))


def ema(values: Sequence[float], period: int) -> Optional[float]:
    """
    Exponential moving average of the whole series.

    The seed is the arithmetic mean of the first ``period`` values and the
    smoothing factor ``2 / (period + 1)`` is applied to the remainder.
    """
    array = _as_array(values)
    if array is None:
        return None
    return _ema(array, period)


def rsi(values: Sequence[float], period: int = 14) -> Optional[float]:
    """
    Relative strength index over the trailing ``period`` price changes.

    Returns exactly 100 when there were no losses in the window.
    """
    array = _as_array(values)
    if array is None or period < 1 or len(array) < period + 1:
        return None
    changes = np.diff(array[-(period + 1):])
    avg_gain = float(changes[changes > 0].sum()) / period
    avg_loss = float(-changes[changes < 0].sum()) / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - 100 / (1 + rs)


def macd(values: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> Optional[MACDResult]:
    """
    Moving average convergence/divergence.

    The signal line is an EMA over a MACD history that is rebuilt by
    recomputing both EMAs on every prefix inside a trailing window of
    ``slow + signal + 20`` points, seeded with the first history value. It is
    an approximation of a running signal EMA and the trend thresholds are
    tuned against it.
    """
    array = _as_array(values)
    if array is None or len(array) < slow + signal:
        return None
    fast_ema = _ema(array, fast)
    slow_ema = _ema(array, slow)
    if fast_ema is None or slow_ema is None:
        return None
    macd_value = fast_ema - slow_ema

    history = []
    start = max(0, len(array) - (slow + signal + 20))
    for end in range(start, len(array)):
        prefix = array[:end + 1]
        prefix_fast = _ema(prefix, fast)
        prefix_slow = _ema(prefix, slow)
        if prefix_fast is not None and prefix_slow is not None:
            history.append(prefix_fast - prefix_slow)

    k = 2 / (signal + 1)
    signal_ema = history[0] if history else macd_value
    for value in history[1:]:
        signal_ema = value * k + signal_ema * (1 - k)

    return MACDResult(macd=macd_value, signal=signal_ema, histogram=macd_value - signal_ema)


def bollinger(values: Sequence[float], period: int = 20, mult: float = 2) -> Optional[BollingerBands]:
    """Bollinger Bands from the trailing mean and population standard deviation."""
    array = _as_array(values)
    if array is None or period < 1 or len(array) < period:
        return None
    window = array[-period:]
    middle = float(window.mean())
    std = float(window.std())
    return BollingerBands(middle=middle, upper=middle + mult * std, lower=middle - mult * std, std=std)


def atr(candles: Sequence[Any], period: int = 14) -> Optional[float]:
    """Average true range over the trailing ``period`` candles."""
    bars = _as_candles(candles)
    if period < 1 or len(bars) < period + 1:
        return None
    if not _all_finite(bars[-(period + 1):]):
        return None
    true_ranges = []
    for index in range(len(bars) - period, len(bars)):
        current = bars[index]
        prev_close = bars[index - 1].close
        true_ranges.append(max(
            current.high - current.low,
            abs(current.high - prev_close),
            abs(current.low - prev_close),
        ))
    result = sum(true_ranges) / len(true_ranges)
    return result if math.isfinite(result) else None


def volume_profile(candles: Sequence[Any], bins: int = 12) -> Optional[VolumeProfile]:
    """
    Volume profile over the observed close-price range.

    Closes are partitioned into ``bins`` equal-width buckets (width 1 when
    every close is identical); the point of control is the midpoint of the
    first bucket holding the maximum volume.
    """
    bars = _as_candles(candles)
    if not bars or bins < 1 or not _all_finite(bars):
        return None
    prices = [bar.close for bar in bars]
    low, high = min(prices), max(prices)
    step = (high - low) / bins or 1.0
    nodes = [0.0] * bins
    for bar in bars:
        index = min(bins - 1, max(0, int(math.floor((bar.close - low) / step))))
        nodes[index] += bar.volume
    poc_index = nodes.index(max(nodes))
    return VolumeProfile(
        nodes=nodes,
        poc=low + poc_index * step + step / 2,
        range_min=low,
        range_max=high,
    )
