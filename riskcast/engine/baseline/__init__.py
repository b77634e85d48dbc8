"""
Baseline evaluation: value kinds, baseline strategies and the evaluator.

Components:
    BaselineEvaluator: Fires events for one user and target date
    MeanStdBaseline / RobustMadBaseline: Pluggable trailing-window references
    StressIndexCalculator: Robust composite index written as a derived metric
"""

from riskcast.engine.baseline.evaluator import BaselineEvaluator
from riskcast.engine.baseline.robust_index import StressIndexCalculator, logistic_percent
from riskcast.engine.baseline.strategies import (
    Baseline,
    BaselineStrategy,
    MeanStdBaseline,
    RobustMadBaseline,
    build_strategies,
    robust_zscore,
)
from riskcast.engine.baseline.value_kinds import VALUE_KINDS, format_value, get_value_kind

__all__ = [
    "Baseline",
    "BaselineEvaluator",
    "BaselineStrategy",
    "MeanStdBaseline",
    "RobustMadBaseline",
    "StressIndexCalculator",
    "VALUE_KINDS",
    "build_strategies",
    "format_value",
    "get_value_kind",
    "logistic_percent",
    "robust_zscore",
]
