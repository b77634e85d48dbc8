"""
Enumeration types for the riskcast core.

All enums inherit from str to ensure JSON serialization compatibility and
so that values round-trip through VARCHAR columns unchanged.
"""

from enum import Enum


class Direction(str, Enum):
    """Which side of the baseline counts as abnormal for a definition."""

    LOW = "low"
    HIGH = "high"


class ValueKind(str, Enum):
    """
    How a raw metric value is normalized before comparison.

    Numeric and cumulative values compare as-is, ordinal risk levels map to
    0-3, and time-of-day values become minutes since midnight.
    """

    NUMERIC = "numeric"
    ORDINAL_RISK = "ordinal-risk"
    TIME_OF_DAY = "time-of-day"
    CUMULATIVE = "cumulative"


class BaselineKind(str, Enum):
    """Baseline strategy selected per definition."""

    MEAN_STD = "mean_std"
    ROBUST_MAD = "robust_mad"


class EventKind(str, Enum):
    """Family a definition and its events belong to."""

    TRIGGER = "trigger"
    PRODROME = "prodrome"


class EventSource(str, Enum):
    """Who recorded an event."""

    SYSTEM = "system"
    MANUAL = "manual"


class Severity(str, Enum):
    """
    What a fired event means for scoring.

    NONE events are stored but never contribute to a score.
    """

    NONE = "NONE"
    LOW = "LOW"
    MILD = "MILD"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        """Ordering used to pick the most severe of several severities."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.NONE: 0,
    Severity.LOW: 1,
    Severity.MILD: 2,
    Severity.HIGH: 3,
}


class Zone(str, Enum):
    """Gauge zone derived from comparing a score to ordered thresholds."""

    NONE = "NONE"
    LOW = "LOW"
    MILD = "MILD"
    HIGH = "HIGH"


class JobStatus(str, Enum):
    """
    Lifecycle status for queued work.

    queued -> running -> done | error, with running -> queued on a failed
    attempt that still has retries left.
    """

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class JobType(str, Enum):
    """Kinds of leasable work the worker knows how to run."""

    TRIGGER_DAILY = "trigger_daily"
    TRIGGER_INTRADAY = "trigger_intraday"
    RISK_SCORE = "risk_score"
    STRESS_INDEX = "stress_index"
