"""
Shared numeric helpers.

Every clamp and float reduction in the simulation goes through these
helpers so the order of operations is identical everywhere.
"""

import math
from typing import Iterable, Sequence


def clamp01(value: float) -> float:
    """Clamp a value into [0, 1]."""
    return max(0.0, min(1.0, value))


def clamp(value: float, lo: float, hi: float) -> float:
    """Clamp a value into [lo, hi]."""
    return max(lo, min(hi, value))


def round_half_up(value: float) -> int:
    # Halves round toward +inf (Python's round() is banker's rounding)
    return int(math.floor(value + 0.5))


def ordered_sum(values: Iterable[float]) -> float:
    # Plain left-to-right accumulation; builtin sum() compensates float
    # rounding on Python 3.12+ and np.sum adds pairwise
    total = 0.0
    for value in values:
        total += value
    return total


def ordered_mean(values: Sequence[float]) -> float:
    """Left-to-right mean of a non-empty sequence."""
    return ordered_sum(values) / len(values)
