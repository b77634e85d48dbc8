"""
Definition catalog models.

A Definition is a per-user rule mapping one metric column to a firing
condition. Settings override a definition's enabled flag and threshold, and
severity mappings say what a fired event means for scoring.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .enums import BaselineKind, Direction, EventKind, Severity, ValueKind


class MetricReference(BaseModel):
    """Table and column identifying one per-day source signal."""

    model_config = {"frozen": True}

    table: str = Field(description="Per-day metric table name")
    column: str = Field(description="Column holding the value")

    @property
    def key(self) -> str:
        return f"{self.table}::{self.column}"


class Definition(BaseModel):
    """
    An evaluable rule owned by a user.

    Attributes:
        user_id: Owner of the rule
        label: Unique display name, also the event type when no group is set
        kind: Trigger or prodrome family
        category: Free-form grouping for display
        direction: Whether low or high values are abnormal
        metric: Source signal
        value_kind: Normalization applied to raw values
        unit: Display unit used in reason strings (hours, %, count, time)
        default_threshold: Absolute threshold applied when no setting overrides it
        baseline_window_days: Trailing days used for the statistical baseline
        baseline_strategy: Mean/stddev or median/MAD baseline
        bedtime: Time-of-day values before noon sort after midnight
        enabled_by_default: Enabled when no setting exists
        display_group: Merges several definitions into one user-visible event
    """

    user_id: str = Field(description="Owner of the rule")
    label: str = Field(min_length=1, description="Unique display name")
    kind: EventKind = Field(default=EventKind.TRIGGER)
    category: Optional[str] = Field(default=None)
    direction: Direction
    metric: MetricReference
    value_kind: ValueKind = Field(default=ValueKind.NUMERIC)
    unit: Optional[str] = Field(default=None)
    default_threshold: Optional[float] = Field(default=None)
    baseline_window_days: Optional[int] = Field(default=None, ge=1, le=365)
    baseline_strategy: BaselineKind = Field(default=BaselineKind.MEAN_STD)
    bedtime: bool = Field(default=False)
    enabled_by_default: bool = Field(default=True)
    display_group: Optional[str] = Field(default=None)

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: str) -> str:
        """Labels are matched case-insensitively, so surrounding space is noise."""
        v = v.strip()
        if not v:
            raise ValueError("Definition label must not be blank")
        return v

    @property
    def event_type(self) -> str:
        """Type written on events this definition fires."""
        return self.display_group or self.label


class Setting(BaseModel):
    """Per-user override of a definition's enabled flag and threshold."""

    user_id: str
    label: str
    enabled: bool = True
    threshold: Optional[float] = None


class SeverityMapping(BaseModel):
    """Severity attached to a definition label, independent of whether it fired."""

    user_id: str
    label: str
    severity: Severity = Severity.NONE


class ResolvedDefinition(BaseModel):
    """A definition with its setting applied, ready for evaluation."""

    definition: Definition
    enabled: bool
    threshold: Optional[float] = None

    @classmethod
    def resolve(cls, definition: Definition, setting: Optional[Setting]) -> "ResolvedDefinition":
        if setting is None:
            return cls(
                definition=definition,
                enabled=definition.enabled_by_default,
                threshold=definition.default_threshold,
            )
        threshold = setting.threshold if setting.threshold is not None else definition.default_threshold
        return cls(definition=definition, enabled=setting.enabled, threshold=threshold)
