"""
Property-based tests using Hypothesis for the riskcast engine.

These check invariants that must hold for any input: threshold and baseline
monotonicity, score additivity across event names, gauge bounds, forecast
decay and the numeric helpers they rest on.
"""

from datetime import date, time

import hypothesis.strategies as st
from hypothesis import assume, given, settings

from riskcast.engine.baseline.evaluator import BaselineEvaluator
from riskcast.engine.baseline.robust_index import logistic_percent
from riskcast.engine.baseline.value_kinds import TimeOfDayKind
from riskcast.engine.scoring.decay_scorer import DecayScorer, ScoredEvent, ScoringConfig
from riskcast.engine.scoring.severity import SeverityResolver
from riskcast.models.definitions import ResolvedDefinition
from riskcast.models.enums import BaselineKind, Direction, Severity
from riskcast.models.scores import GaugeThresholds
from riskcast.utils.numbers import round_half_up
from riskcast.utils.timeutil import add_days
from tests.conftest import USER, make_decay_weights, make_definition, make_settings

TARGET = date(2026, 3, 10)

finite = st.floats(min_value=-1e4, max_value=1e4, allow_nan=False, allow_infinity=False)
non_negative = st.floats(min_value=0.0, max_value=1e3, allow_nan=False, allow_infinity=False)

severities = st.sampled_from([Severity.HIGH, Severity.MILD, Severity.LOW])
ages = st.integers(min_value=0, max_value=6)


def _evaluator() -> BaselineEvaluator:
    return BaselineEvaluator(storage=None, settings=make_settings())


def _scorer() -> DecayScorer:
    return DecayScorer(storage=None, settings=make_settings())


def _config(high: float = 12, mild: float = 6, low: float = 3) -> ScoringConfig:
    return ScoringConfig(
        decay={s: make_decay_weights(s) for s in (Severity.HIGH, Severity.MILD, Severity.LOW)},
        thresholds=GaugeThresholds(high=high, mild=mild, low=low),
        resolver=SeverityResolver([], {}),
    )


def _events(prefix: str, entries: list[tuple[int, Severity, int]]) -> list[ScoredEvent]:
    return [
        ScoredEvent(name=f"{prefix}{name}", severity=severity, occurred_date=add_days(TARGET, -age))
        for name, severity, age in entries
    ]


event_entries = st.lists(st.tuples(st.integers(0, 3), severities, ages), max_size=12)


# =============================================================================
# Evaluation
# =============================================================================


@given(threshold=finite, value=finite, delta=non_negative)
@settings(max_examples=100)
def test_prop_high_threshold_monotonic(threshold: float, value: float, delta: float):
    """If a value fires a HIGH threshold, every larger value fires it too."""
    resolved = ResolvedDefinition(
        definition=make_definition(direction=Direction.HIGH), enabled=True, threshold=threshold
    )
    evaluator = _evaluator()

    if evaluator.check(resolved, value, None):
        assert evaluator.check(resolved, value + delta, None)


@given(value=finite, threshold=finite, raise_by=non_negative)
@settings(max_examples=100)
def test_prop_raising_high_threshold_never_adds_fires(value: float, threshold: float, raise_by: float):
    evaluator = _evaluator()
    definition = make_definition(direction=Direction.HIGH)
    lower = ResolvedDefinition(definition=definition, enabled=True, threshold=threshold)
    higher = ResolvedDefinition(definition=definition, enabled=True, threshold=threshold + raise_by)

    assert len(evaluator.check(higher, value, None)) <= len(evaluator.check(lower, value, None))


@given(threshold=finite, value=finite, delta=non_negative)
@settings(max_examples=100)
def test_prop_low_threshold_monotonic(threshold: float, value: float, delta: float):
    resolved = ResolvedDefinition(
        definition=make_definition(direction=Direction.LOW), enabled=True, threshold=threshold
    )
    evaluator = _evaluator()

    if evaluator.check(resolved, value, None):
        assert evaluator.check(resolved, value - delta, None)


@given(
    history=st.lists(finite, min_size=7, max_size=20),
    value=finite,
    delta=non_negative,
    strategy=st.sampled_from([BaselineKind.MEAN_STD, BaselineKind.ROBUST_MAD]),
)
@settings(max_examples=100)
def test_prop_statistical_check_monotonic(history, value, delta, strategy):
    """A value below the baseline cutoff stays below it as it falls further."""
    resolved = ResolvedDefinition(
        definition=make_definition(baseline_strategy=strategy), enabled=True, threshold=None
    )
    evaluator = _evaluator()

    if evaluator.check(resolved, value, history):
        assert evaluator.check(resolved, value - delta, history)


@given(history=st.lists(finite, min_size=0, max_size=6), value=finite)
@settings(max_examples=50)
def test_prop_short_history_never_fires_statistically(history, value):
    resolved = ResolvedDefinition(definition=make_definition(), enabled=True, threshold=None)
    assert _evaluator().check(resolved, value, history) == []


@given(
    evening=st.times(min_value=time(12, 0), max_value=time(23, 59)),
    early=st.times(min_value=time(0, 0), max_value=time(11, 59)),
)
@settings(max_examples=100)
def test_prop_bedtime_after_midnight_sorts_later(evening: time, early: time):
    kind = TimeOfDayKind()
    assert kind.normalize(early, bedtime=True) > kind.normalize(evening, bedtime=True)


# =============================================================================
# Scoring
# =============================================================================


@given(first=event_entries, second=event_entries)
@settings(max_examples=100)
def test_prop_score_additive_across_names(first, second):
    """Scores of event sets with disjoint names add up exactly."""
    scorer = _scorer()
    config = _config()
    a = _events("a-", first)
    b = _events("b-", second)

    combined = scorer.score_day(USER, TARGET, a + b, config).score
    separate = scorer.score_day(USER, TARGET, a, config).score + scorer.score_day(USER, TARGET, b, config).score

    assert combined == separate


@given(entries=event_entries)
@settings(max_examples=100)
def test_prop_contributors_sum_to_score(entries):
    snapshot = _scorer().score_day(USER, TARGET, _events("e-", entries), _config())
    assert sum(c.score for c in snapshot.top_contributors) == snapshot.score


@given(
    score=st.integers(min_value=0, max_value=10_000),
    high=st.one_of(st.just(0.0), st.floats(min_value=0.01, max_value=500.0, allow_nan=False)),
)
@settings(max_examples=200)
def test_prop_percent_bounds(score: int, high: float):
    percent = _scorer().percent_for(score, GaugeThresholds(high=high, mild=0, low=0))
    assert 0 <= percent <= 100


@given(entries=event_entries)
@settings(max_examples=100)
def test_prop_forecast_non_increasing_for_past_events(entries):
    """With only past events and non-increasing curves the forecast never rises."""
    scorer = _scorer()
    config = _config()
    events = _events("e-", entries)

    forecast = [
        scorer.score_day(USER, add_days(TARGET, offset), events, config).percent
        for offset in range(7)
    ]
    assert all(later <= earlier for earlier, later in zip(forecast, forecast[1:]))


@given(entries=event_entries)
@settings(max_examples=50)
def test_prop_events_past_window_contribute_nothing(entries):
    scorer = _scorer()
    events = _events("e-", entries)
    assert scorer.score_day(USER, add_days(TARGET, 7), events, _config()).score == 0


# =============================================================================
# Numeric helpers
# =============================================================================


@given(value=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False))
@settings(max_examples=200)
def test_prop_round_half_up_nearest(value: float):
    assert abs(round_half_up(value) - value) <= 0.5 + 1e-9


@given(n=st.integers(min_value=-10_000, max_value=10_000))
def test_prop_round_half_up_ties_go_up(n: int):
    assert round_half_up(n + 0.5) == n + 1


@given(
    a=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False),
    b=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False),
)
def test_prop_round_half_up_monotonic(a: float, b: float):
    assume(a <= b)
    assert round_half_up(a) <= round_half_up(b)


@given(z=st.floats(min_value=-500, max_value=500, allow_nan=False))
@settings(max_examples=200)
def test_prop_logistic_bounds(z: float):
    assert 0.0 <= logistic_percent(z) <= 100.0


@given(
    a=st.floats(min_value=-30, max_value=30, allow_nan=False),
    b=st.floats(min_value=-30, max_value=30, allow_nan=False),
)
def test_prop_logistic_monotonic(a: float, b: float):
    assume(a <= b)
    assert logistic_percent(a) <= logistic_percent(b)
