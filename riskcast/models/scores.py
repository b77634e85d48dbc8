"""
Scoring configuration and score snapshot models.

DecayWeights and GaugeThresholds are per-user configuration rows; the
snapshots are the scorer's output. Snapshots are always fully recomputed
from source events, then upserted by natural key.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import Severity, Zone

DECAY_DAYS = 7


class DecayWeights(BaseModel):
    """
    Per-severity score contribution indexed by days since the event.

    ``weights[0]`` applies on the event's own day. Non-increasing curves are
    expected but not enforced.
    """

    severity: Severity
    weights: list[float] = Field(min_length=DECAY_DAYS, max_length=DECAY_DAYS)

    @field_validator("weights")
    @classmethod
    def validate_non_negative(cls, v: list[float]) -> list[float]:
        if any(w < 0 for w in v):
            raise ValueError("Decay weights must be non-negative")
        return v

    def weight_for(self, age_days: int) -> float:
        if 0 <= age_days < len(self.weights):
            return self.weights[age_days]
        return 0.0


class GaugeThreshold(BaseModel):
    """Minimum score for a zone."""

    zone: Zone
    min_value: float = Field(ge=0.0)


class GaugeThresholds(BaseModel):
    """The three ordered zone thresholds for one user."""

    high: float = Field(ge=0.0)
    mild: float = Field(ge=0.0)
    low: float = Field(ge=0.0)

    @model_validator(mode="after")
    def validate_ordering(self) -> "GaugeThresholds":
        if not (self.high >= self.mild >= self.low):
            raise ValueError(
                f"Thresholds must satisfy HIGH >= MILD >= LOW, got "
                f"{self.high}/{self.mild}/{self.low}"
            )
        return self

    def zone_for(self, score: int) -> Zone:
        if score >= self.high:
            return Zone.HIGH
        if score >= self.mild:
            return Zone.MILD
        if score >= self.low:
            return Zone.LOW
        return Zone.NONE


class Contributor(BaseModel):
    """One event type's share of a day's score."""

    name: str
    score: int = Field(ge=0)
    severity: Severity
    days_active: int = Field(ge=1)


class ScoreSnapshot(BaseModel):
    """
    Score for one user as seen from one date.

    ``score`` is the sum of the rounded contributor scores, so the displayed
    breakdown always adds up to the displayed total.
    """

    user_id: str
    date: date
    score: int = Field(ge=0)
    zone: Zone
    percent: int = Field(ge=0, le=100)
    top_contributors: list[Contributor] = Field(default_factory=list)


class LiveSnapshot(ScoreSnapshot):
    """Today's snapshot plus the forward forecast."""

    forecast: list[int] = Field(default_factory=list)
    day_risks: list[ScoreSnapshot] = Field(default_factory=list)
    updated_at: Optional[datetime] = None
