"""
Small numeric helpers shared by the analyzers and the risk manager.
"""
import math
from typing import Any


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp ``value`` into ``[lower, upper]``."""
    return max(lower, min(upper, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (0.5 -> 1, -0.5 -> 0)."""
    return int(math.floor(value + 0.5))


def to_float(value: Any, default: float = 0.0) -> float:
    """
    Coerce a loosely typed input into a finite float.

    ``None``, NaN, infinities and anything that does not parse as a number
    fall back to ``default``.
    """
    if value is None or isinstance(value, bool):
        return default if value is None else float(value)
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result
