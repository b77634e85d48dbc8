"""
Decay Scorer - turns a trailing window of events into a score and forecast.

For each perspective date P from the target date through target + 6:

    1. Every event with age = P - occurred_date in 0..6 counts
    2. Its contribution is DecayWeights[severity][age] when positive
    3. Contributions are summed per event name, then each total is rounded
       half up on its own
    4. score   = sum of the rounded per-name totals
       percent = clamp(round(score / (HIGH * 1.2) * 100), 0, 100)
       zone    = HIGH | MILD | LOW | NONE by the ordered thresholds

Rounding before summing keeps the contributor breakdown adding up exactly
to the displayed score. All seven dates are computed from one read of the
events, and every run recomputes them from scratch, so re-running after a
change to weights or thresholds simply overwrites the snapshots.

The perspective equal to the target date is the daily snapshot; the seven
percents form the live forecast.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

import structlog

from riskcast.config import Settings, get_settings
from riskcast.errors import ConfigurationError
from riskcast.models.enums import Severity, Zone
from riskcast.models.events import Event
from riskcast.models.scores import (
    Contributor,
    DecayWeights,
    GaugeThresholds,
    LiveSnapshot,
    ScoreSnapshot,
)
from riskcast.storage.base import StorageBackend
from riskcast.utils.numbers import clamp, round_half_up
from riskcast.utils.timeutil import add_days, days_between, utcnow

from .severity import SeverityResolver, most_severe

logger = structlog.get_logger(__name__)

DEFAULT_THRESHOLDS = {Zone.HIGH: 10.0, Zone.MILD: 5.0, Zone.LOW: 3.0}


@dataclass(frozen=True)
class ScoredEvent:
    """An event with its severity resolved, ready for decay weighting."""

    name: str
    severity: Severity
    occurred_date: date


@dataclass
class ScoringConfig:
    decay: dict[Severity, DecayWeights]
    thresholds: GaugeThresholds
    resolver: SeverityResolver


class DecayScorer:
    """
    Computes daily and live score snapshots for one user.

    Attributes:
        storage: Scoring configuration, event and score store
        window_days: Decay lookback and forecast horizon
        headroom: Gauge maximum as a multiple of the HIGH threshold

    Example:
        >>> scorer = DecayScorer(storage)
        >>> live = scorer.run("user-1", date(2026, 3, 1))
        >>> live.score, live.zone
        (15, <Zone.HIGH: 'HIGH'>)
    """

    def __init__(self, storage: StorageBackend, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or get_settings()
        self.window_days = self.settings.score_window_days
        self.headroom = self.settings.gauge_headroom

    # =========================================================================
    # Configuration and inputs
    # =========================================================================

    def load_config(self, user_id: str) -> ScoringConfig:
        """
        Read decay weights, thresholds and severities for a user.

        Missing zones fall back to HIGH=10, MILD=5, LOW=3.

        Raises:
            ConfigurationError: If no decay weights or no thresholds exist,
                or the thresholds are not ordered HIGH >= MILD >= LOW
        """
        decay = self.storage.read_decay_weights(user_id)
        if not decay:
            raise ConfigurationError(
                status="done_no_config",
                message=f"No decay weights configured for user {user_id}",
                details={"user_id": user_id, "missing": "decay_weights"},
            )

        rows = self.storage.read_gauge_thresholds(user_id)
        if not rows:
            raise ConfigurationError(
                status="done_no_config",
                message=f"No gauge thresholds configured for user {user_id}",
                details={"user_id": user_id, "missing": "gauge_thresholds"},
            )

        values = {zone: rows.get(zone, default) for zone, default in DEFAULT_THRESHOLDS.items()}
        try:
            thresholds = GaugeThresholds(
                high=values[Zone.HIGH], mild=values[Zone.MILD], low=values[Zone.LOW]
            )
        except ValueError as e:
            raise ConfigurationError(
                status="done_invalid_thresholds",
                message=f"Gauge thresholds invalid for user {user_id}",
                details={"user_id": user_id, "thresholds": {z.value: v for z, v in values.items()}},
            ) from e

        return ScoringConfig(
            decay=decay,
            thresholds=thresholds,
            resolver=SeverityResolver.for_user(self.storage, user_id),
        )

    def read_events(self, user_id: str, target_date: date) -> list[Event]:
        """
        One read covering every perspective date.

        Spans [target - window, target + window) so the last forecast day
        still sees its full lookback.
        """
        return self.storage.read_events(
            user_id,
            add_days(target_date, -self.window_days),
            add_days(target_date, self.window_days),
        )

    def scored_events(self, events: list[Event], config: ScoringConfig) -> list[ScoredEvent]:
        """Resolve severities; NONE events never contribute and are dropped."""
        scored = []
        for event in events:
            severity = config.resolver.resolve(event.type, event.kind)
            if severity == Severity.NONE:
                continue
            scored.append(ScoredEvent(name=event.type, severity=severity, occurred_date=event.occurred_date))
        return scored

    # =========================================================================
    # Scoring
    # =========================================================================

    def percent_for(self, score: int, thresholds: GaugeThresholds) -> int:
        gauge_max = thresholds.high * self.headroom
        if gauge_max <= 0:
            return 100 if score > 0 else 0
        return int(clamp(round_half_up(score / gauge_max * 100), 0, 100))

    def score_day(
        self,
        user_id: str,
        perspective: date,
        events: list[ScoredEvent],
        config: ScoringConfig,
    ) -> ScoreSnapshot:
        """Snapshot for a single perspective date."""
        totals: dict[str, float] = defaultdict(float)
        severities: dict[str, Severity] = {}
        active_dates: dict[str, set[date]] = defaultdict(set)

        for event in events:
            age = days_between(event.occurred_date, perspective)
            if age < 0 or age >= self.window_days:
                continue

            active_dates[event.name].add(event.occurred_date)

            curve = config.decay.get(event.severity)
            if curve is None:
                continue
            weight = curve.weight_for(age)
            if weight <= 0:
                continue

            totals[event.name] += weight
            severities[event.name] = most_severe(severities.get(event.name), event.severity)

        contributors = [
            Contributor(
                name=name,
                score=round_half_up(total),
                severity=severities[name],
                days_active=len(active_dates[name]) or 1,
            )
            for name, total in totals.items()
        ]
        contributors.sort(key=lambda c: (-c.score, c.name))

        score = sum(c.score for c in contributors)
        return ScoreSnapshot(
            user_id=user_id,
            date=perspective,
            score=score,
            zone=config.thresholds.zone_for(score),
            percent=self.percent_for(score, config.thresholds),
            top_contributors=contributors,
        )

    def score_daily(self, user_id: str, target_date: date) -> ScoreSnapshot:
        """Standalone snapshot for one date."""
        config = self.load_config(user_id)
        events = self.scored_events(self.read_events(user_id, target_date), config)
        return self.score_day(user_id, target_date, events, config)

    def score_live(
        self, user_id: str, target_date: date, now: Optional[datetime] = None
    ) -> LiveSnapshot:
        """Target-date snapshot plus one snapshot per forecast day."""
        config = self.load_config(user_id)
        events = self.scored_events(self.read_events(user_id, target_date), config)

        day_risks = [
            self.score_day(user_id, add_days(target_date, offset), events, config)
            for offset in range(self.window_days)
        ]
        today = day_risks[0]

        return LiveSnapshot(
            user_id=user_id,
            date=target_date,
            score=today.score,
            zone=today.zone,
            percent=today.percent,
            top_contributors=today.top_contributors,
            forecast=[day.percent for day in day_risks],
            day_risks=day_risks,
            updated_at=now or utcnow(),
        )

    def run(self, user_id: str, target_date: date, now: Optional[datetime] = None) -> LiveSnapshot:
        """
        Recompute and persist both snapshots for a user.

        Raises:
            ConfigurationError: If scoring configuration is missing
            StorageError: If a read or write fails
        """
        live = self.score_live(user_id, target_date, now)

        self.storage.write_live_snapshot(live)
        self.storage.write_daily_snapshot(live.day_risks[0])

        logger.info(
            "risk_score_written",
            user_id=user_id,
            target_date=str(target_date),
            score=live.score,
            zone=live.zone.value,
            percent=live.percent,
            contributors=len(live.top_contributors),
        )
        return live
