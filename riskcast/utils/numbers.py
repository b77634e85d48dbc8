"""Numeric helpers shared by evaluation and scoring."""

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 always going up (2.5 -> 3, -2.5 -> -2)."""
    return math.floor(value + 0.5)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
