"""
Unit tests for decay scoring, severity resolution and the forecast.
"""

from datetime import date, datetime

import pytest

from riskcast.engine.scoring.decay_scorer import DecayScorer
from riskcast.engine.scoring.severity import SeverityResolver, most_severe
from riskcast.errors import ConfigurationError
from riskcast.models.definitions import SeverityMapping
from riskcast.models.enums import EventKind, EventSource, Severity, Zone
from riskcast.models.scores import GaugeThreshold, GaugeThresholds
from riskcast.utils.numbers import round_half_up
from riskcast.utils.timeutil import add_days
from tests.conftest import (
    USER,
    make_decay_weights,
    make_definition,
    make_event,
    make_settings,
    seed_scoring,
)

T = date(2026, 3, 10)
NOW = datetime(2026, 3, 10, 9, 7)


@pytest.fixture
def scorer(storage):
    return DecayScorer(storage, make_settings())


@pytest.fixture
def configured(storage):
    seed_scoring(
        storage,
        severities={"Short sleep": Severity.HIGH, "Skipped meal": Severity.MILD, "Caffeine": Severity.LOW},
    )


def _insert(storage, event_type, days_before, **overrides):
    storage.insert_event(make_event(event_type, add_days(T, -days_before), **overrides))


class TestRounding:
    @pytest.mark.parametrize("value,expected", [(2.5, 3), (0.5, 1), (1.49, 1), (3.5, 4), (0.0, 0)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected


class TestDecay:
    def test_two_day_old_high_event_decays_to_two_and_a_half(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 2)

        snapshot = scorer.score_daily(USER, T)

        assert make_decay_weights(Severity.HIGH).weight_for(2) == 2.5
        assert snapshot.top_contributors[0].score == 3
        assert snapshot.score == 3

    def test_event_outside_window_ignored(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 7)
        assert scorer.score_daily(USER, T).score == 0

    def test_future_event_ignored_for_today(self, scorer, storage, configured):
        _insert(storage, "Short sleep", -1)
        assert scorer.score_daily(USER, T).score == 0

    def test_same_name_contributions_add(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 0)
        _insert(storage, "Short sleep", 1)

        snapshot = scorer.score_daily(USER, T)
        assert snapshot.score == 15
        assert snapshot.top_contributors[0].days_active == 2

    def test_rounded_per_name_before_summing(self, scorer, storage):
        seed_scoring(storage, severities={"A": Severity.HIGH, "B": Severity.HIGH})
        _insert(storage, "A", 2)
        _insert(storage, "B", 2)

        snapshot = scorer.score_daily(USER, T)
        assert [c.score for c in snapshot.top_contributors] == [3, 3]
        assert snapshot.score == 6

    def test_score_equals_sum_of_contributors(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 0)
        _insert(storage, "Skipped meal", 1)
        _insert(storage, "Caffeine", 2)

        snapshot = scorer.score_daily(USER, T)
        assert snapshot.score == sum(c.score for c in snapshot.top_contributors)
        assert snapshot.score == 10 + 3 + 1

    def test_contributors_ordered_by_score_then_name(self, scorer, storage):
        seed_scoring(storage, severities={"B": Severity.HIGH, "A": Severity.HIGH, "C": Severity.MILD})
        _insert(storage, "B", 0)
        _insert(storage, "A", 0)
        _insert(storage, "C", 0)

        names = [c.name for c in scorer.score_daily(USER, T).top_contributors]
        assert names == ["A", "B", "C"]

    def test_none_severity_never_contributes(self, scorer, storage, configured):
        _insert(storage, "Unmapped", 0)

        snapshot = scorer.score_daily(USER, T)
        assert snapshot.score == 0
        assert snapshot.top_contributors == []

    def test_manual_and_system_events_both_count(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 0)
        _insert(storage, "Short sleep", 0, source=EventSource.MANUAL)

        snapshot = scorer.score_daily(USER, T)
        assert snapshot.score == 20
        assert snapshot.top_contributors[0].days_active == 1


class TestZonesAndPercent:
    def test_golden_high_zone(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 0)
        _insert(storage, "Short sleep", 1)

        snapshot = scorer.score_daily(USER, T)
        assert (snapshot.score, snapshot.zone, snapshot.percent) == (15, Zone.HIGH, 100)

    @pytest.mark.parametrize(
        "score,zone",
        [(0, Zone.NONE), (2, Zone.NONE), (3, Zone.LOW), (5, Zone.LOW), (6, Zone.MILD), (12, Zone.HIGH)],
    )
    def test_zone_boundaries(self, score, zone):
        assert GaugeThresholds(high=12, mild=6, low=3).zone_for(score) == zone

    def test_percent_uses_headroom(self, scorer):
        thresholds = GaugeThresholds(high=12, mild=6, low=3)
        assert scorer.percent_for(10, thresholds) == 69
        assert scorer.percent_for(0, thresholds) == 0
        assert scorer.percent_for(40, thresholds) == 100

    def test_percent_with_zero_gauge(self, scorer):
        thresholds = GaugeThresholds(high=0, mild=0, low=0)
        assert scorer.percent_for(0, thresholds) == 0
        assert scorer.percent_for(1, thresholds) == 100


class TestForecast:
    def test_forecast_decays_forward(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 0)

        live = scorer.score_live(USER, T, NOW)
        assert live.forecast == [69, 35, 21, 7, 0, 0, 0]
        assert len(live.day_risks) == 7
        assert [d.date for d in live.day_risks] == [add_days(T, k) for k in range(7)]

    def test_forecast_day_matches_standalone_daily(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 0)
        _insert(storage, "Skipped meal", 3)
        _insert(storage, "Caffeine", -2)

        live = scorer.score_live(USER, T, NOW)
        for offset, day in enumerate(live.day_risks):
            assert day == scorer.score_daily(USER, add_days(T, offset))

    def test_live_today_matches_daily(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 1)

        live = scorer.score_live(USER, T, NOW)
        daily = scorer.score_daily(USER, T)
        assert live.day_risks[0] == daily
        assert (live.score, live.zone, live.percent) == (daily.score, daily.zone, daily.percent)

    def test_run_persists_live_and_daily(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 0)

        scorer.run(USER, T, NOW)

        live = storage.read_live_snapshot(USER)
        assert live.score == 10
        assert live.updated_at == NOW
        assert storage.read_daily_snapshots(USER) == [live.day_risks[0]]

    def test_rerun_overwrites_after_weight_change(self, scorer, storage, configured):
        _insert(storage, "Short sleep", 0)
        scorer.run(USER, T, NOW)

        storage.write_decay_weights(USER, make_decay_weights(Severity.HIGH, [4, 2, 1, 0, 0, 0, 0]))
        scorer.run(USER, T, NOW)

        assert storage.read_live_snapshot(USER).score == 4
        assert [s.score for s in storage.read_daily_snapshots(USER)] == [4]


class TestSeverityResolution:
    def test_most_severe(self):
        assert most_severe(None, Severity.LOW) == Severity.LOW
        assert most_severe(Severity.HIGH, Severity.MILD) == Severity.HIGH
        assert most_severe(Severity.MILD, Severity.HIGH) == Severity.HIGH

    def test_label_lookup_case_insensitive(self):
        resolver = SeverityResolver([], {"Short Sleep": Severity.HIGH})
        assert resolver.resolve("short sleep") == Severity.HIGH
        assert resolver.resolve("unknown") == Severity.NONE

    def test_display_group_takes_most_severe_member(self, scorer, storage):
        storage.write_definition(make_definition(label="Short sleep", display_group="Poor sleep"))
        storage.write_definition(make_definition(label="Late bedtime", display_group="Poor sleep"))
        seed_scoring(storage, severities={"Short sleep": Severity.MILD, "Late bedtime": Severity.HIGH})
        _insert(storage, "Poor sleep", 0)

        snapshot = scorer.score_daily(USER, T)
        assert snapshot.top_contributors[0].severity == Severity.HIGH
        assert snapshot.score == 10

    def test_prodrome_group_resolved_separately(self, scorer, storage):
        storage.write_definition(
            make_definition(label="Neck stiffness", kind=EventKind.PRODROME, display_group="Early signs")
        )
        seed_scoring(storage, severities={"Neck stiffness": Severity.HIGH})
        _insert(storage, "Early signs", 0, kind=EventKind.TRIGGER)
        assert scorer.score_daily(USER, T).score == 0

        _insert(storage, "Early signs", 0, kind=EventKind.PRODROME, source="manual")
        assert scorer.score_daily(USER, T).score == 10


class TestConfiguration:
    def test_missing_decay_weights(self, scorer, storage):
        with pytest.raises(ConfigurationError) as exc:
            scorer.score_daily(USER, T)
        assert exc.value.status == "done_no_config"

    def test_missing_thresholds(self, scorer, storage):
        storage.write_decay_weights(USER, make_decay_weights(Severity.HIGH))
        with pytest.raises(ConfigurationError) as exc:
            scorer.score_daily(USER, T)
        assert exc.value.status == "done_no_config"

    def test_misordered_thresholds(self, scorer, storage):
        seed_scoring(storage, high=3, mild=6, low=1)
        with pytest.raises(ConfigurationError) as exc:
            scorer.score_daily(USER, T)
        assert exc.value.status == "done_invalid_thresholds"

    def test_missing_zone_falls_back_to_default(self, scorer, storage):
        storage.write_decay_weights(USER, make_decay_weights(Severity.HIGH))
        storage.write_gauge_threshold(USER, GaugeThreshold(zone=Zone.HIGH, min_value=20))

        config = scorer.load_config(USER)
        assert (config.thresholds.high, config.thresholds.mild, config.thresholds.low) == (20, 5, 3)

    def test_severity_without_curve_contributes_nothing(self, scorer, storage):
        storage.write_decay_weights(USER, make_decay_weights(Severity.HIGH))
        storage.write_gauge_threshold(USER, GaugeThreshold(zone=Zone.HIGH, min_value=12))
        storage.write_severity_mapping(SeverityMapping(user_id=USER, label="Caffeine", severity=Severity.LOW))
        _insert(storage, "Caffeine", 0)

        snapshot = scorer.score_daily(USER, T)
        assert snapshot.score == 0
        assert snapshot.top_contributors == []
