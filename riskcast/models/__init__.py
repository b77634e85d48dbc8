"""
Pydantic v2 data models for the riskcast core.

Model Organization:
    - enums: Enumeration types for consistent classification
    - definitions: Definition catalog, settings and severity mappings
    - events: Fired event records
    - jobs: Leasable job rows and batch summaries
    - scores: Decay weights, gauge thresholds and score snapshots
    - evaluation: Evaluator and stress index reports
"""

from .definitions import (
    Definition,
    MetricReference,
    ResolvedDefinition,
    Setting,
    SeverityMapping,
)
from .enums import (
    BaselineKind,
    Direction,
    EventKind,
    EventSource,
    JobStatus,
    JobType,
    Severity,
    ValueKind,
    Zone,
)
from .evaluation import DefinitionResult, EvaluationReport, StressIndexResult
from .events import Event
from .jobs import DispatchSummary, Job, JobOutcome, UserDispatch, WorkerSummary
from .scores import (
    Contributor,
    DecayWeights,
    GaugeThreshold,
    GaugeThresholds,
    LiveSnapshot,
    ScoreSnapshot,
)

__all__ = [
    "BaselineKind",
    "Contributor",
    "DecayWeights",
    "Definition",
    "DefinitionResult",
    "Direction",
    "DispatchSummary",
    "EvaluationReport",
    "Event",
    "EventKind",
    "EventSource",
    "GaugeThreshold",
    "GaugeThresholds",
    "Job",
    "JobOutcome",
    "JobStatus",
    "JobType",
    "LiveSnapshot",
    "MetricReference",
    "ResolvedDefinition",
    "ScoreSnapshot",
    "Setting",
    "Severity",
    "SeverityMapping",
    "StressIndexResult",
    "UserDispatch",
    "ValueKind",
    "WorkerSummary",
    "Zone",
]
