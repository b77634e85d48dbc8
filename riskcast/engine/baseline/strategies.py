"""
Baseline strategies.

A baseline is a trailing-window reference for one user's metric. Two
strategies are available and selected per definition:

    MeanStdBaseline:    mean and population standard deviation; a value
                        deviates when it is more than k standard deviations
                        from the mean (k = 2 by default, at least 7 samples).
    RobustMadBaseline:  median and Median Absolute Deviation; a value deviates
                        when its modified z-score exceeds a threshold
                        (2.0 by default, at least 5 samples).

Why MAD:
    - A single spike in the window cannot inflate the cutoff
    - 0.6745 normalizes MAD to the standard deviation scale for normal data

Either strategy returns None from ``compute`` when the window is too small or
has no spread, and the statistical check is then skipped for that date.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np

from riskcast.config import Settings
from riskcast.models.enums import BaselineKind, Direction

# 75th percentile of the standard normal distribution
MAD_NORMALIZATION = 0.6745

MIN_MAD = 1e-9


@dataclass(frozen=True)
class Baseline:
    """
    Reference statistics for one metric window.

    Attributes:
        kind: Strategy that produced the baseline
        center: Mean or median of the window
        spread: Standard deviation or MAD-derived robust deviation
        multiplier: Spreads away from the center that count as a deviation
        samples: Number of values in the window
    """

    kind: BaselineKind
    center: float
    spread: float
    multiplier: float
    samples: int

    def cutoff(self, direction: Direction) -> float:
        offset = self.multiplier * self.spread
        return self.center - offset if direction == Direction.LOW else self.center + offset


class BaselineStrategy(ABC):
    """Computes a baseline from history and judges a value against it."""

    kind: BaselineKind

    def __init__(self, min_samples: int, multiplier: float):
        self.min_samples = min_samples
        self.multiplier = multiplier

    @abstractmethod
    def compute(self, values: Sequence[float]) -> Optional[Baseline]:
        """Baseline for the window, or None when it cannot be judged."""

    def deviates(self, value: float, baseline: Baseline, direction: Direction) -> bool:
        cutoff = baseline.cutoff(direction)
        if direction == Direction.LOW:
            return value < cutoff
        return value > cutoff

    @abstractmethod
    def reason(
        self,
        baseline: Baseline,
        direction: Direction,
        formatter: Callable[[float], str],
    ) -> str:
        """Human-readable explanation of a deviation."""

    @staticmethod
    def _clean(values: Sequence[float]) -> np.ndarray:
        array = np.asarray(values, dtype=float)
        return array[~np.isnan(array)]


class MeanStdBaseline(BaselineStrategy):
    kind = BaselineKind.MEAN_STD

    def compute(self, values: Sequence[float]) -> Optional[Baseline]:
        array = self._clean(values)
        if len(array) < self.min_samples:
            return None

        mean = float(np.mean(array))
        # population standard deviation (ddof=0)
        std = float(np.std(array))
        if std <= 0.0:
            return None

        return Baseline(
            kind=self.kind,
            center=mean,
            spread=std,
            multiplier=self.multiplier,
            samples=len(array),
        )

    def reason(self, baseline: Baseline, direction: Direction, formatter: Callable[[float], str]) -> str:
        side = "below" if direction == Direction.LOW else "above"
        return (
            f"{self.multiplier:g}SD {side} avg {formatter(baseline.center)} "
            f"(cutoff: {formatter(baseline.cutoff(direction))})"
        )


class RobustMadBaseline(BaselineStrategy):
    kind = BaselineKind.ROBUST_MAD

    def compute(self, values: Sequence[float]) -> Optional[Baseline]:
        array = self._clean(values)
        if len(array) < self.min_samples:
            return None

        median = float(np.median(array))
        mad = float(np.median(np.abs(array - median)))
        if mad <= MIN_MAD:
            return None

        return Baseline(
            kind=self.kind,
            center=median,
            spread=mad / MAD_NORMALIZATION,
            multiplier=self.multiplier,
            samples=len(array),
        )

    def reason(self, baseline: Baseline, direction: Direction, formatter: Callable[[float], str]) -> str:
        side = "below" if direction == Direction.LOW else "above"
        return (
            f"robust z {side} median {formatter(baseline.center)} "
            f"(cutoff: {formatter(baseline.cutoff(direction))})"
        )


def robust_zscore(value: float, values: Sequence[float], min_samples: int) -> Optional[float]:
    """
    Modified z-score of ``value`` against ``values``.

    Returns None with fewer than ``min_samples`` values or zero MAD.
    """
    baseline = RobustMadBaseline(min_samples=min_samples, multiplier=1.0).compute(values)
    if baseline is None:
        return None
    return (value - baseline.center) / baseline.spread


def build_strategies(settings: Settings) -> dict[BaselineKind, BaselineStrategy]:
    return {
        BaselineKind.MEAN_STD: MeanStdBaseline(
            min_samples=settings.min_baseline_samples,
            multiplier=settings.stddev_multiplier,
        ),
        BaselineKind.ROBUST_MAD: RobustMadBaseline(
            min_samples=settings.robust_min_baseline_samples,
            multiplier=settings.robust_z_threshold,
        ),
    }
