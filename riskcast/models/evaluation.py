"""
Evaluation report models.

Returned by the baseline evaluator and the stress index calculator so job
outcomes can explain, per metric and per definition, what happened.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class DefinitionResult(BaseModel):
    """
    Outcome for one definition, or for a whole metric group on a fetch error.

    Status values:
        created: fired and inserted a new event
        appended: fired and added its reason to an existing event
        not_fired: evaluated, neither check tripped
        no_data: no value for the target date
        invalid_value: value could not be normalized
        fetch_error: the metric group could not be read
        skipped_cumulative_low_before_eod: partial-day total not judged yet
    """

    metric: str
    status: str
    label: Optional[str] = None
    event_type: Optional[str] = None
    value: Optional[float] = None
    reasons: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class EvaluationReport(BaseModel):
    """Everything one evaluation pass did for one user and date."""

    user_id: str
    target_date: date
    local_hour: int
    definitions: int = 0
    groups: int = 0
    fired: int = 0
    events_created: int = 0
    notes_appended: int = 0
    group_errors: int = 0
    results: list[DefinitionResult] = Field(default_factory=list)

    @property
    def result_status(self) -> str:
        if self.group_errors:
            return "done_partial"
        return "done"


class StressIndexResult(BaseModel):
    """Outcome of one stress index computation."""

    user_id: str
    target_date: date
    status: str
    reason: Optional[str] = None
    value: Optional[float] = None
    rhr_z: Optional[float] = None
    hrv_z: Optional[float] = None
    baseline_window_days: Optional[int] = None
