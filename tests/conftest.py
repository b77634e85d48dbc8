"""
Pytest configuration and shared fixtures for the riskcast test suite.

Data factories, a real DuckDB store per test, and seeding helpers shared by
the unit, integration, golden and property-based suites.
"""

import os
import tempfile
import uuid as _uuid
from datetime import date, datetime
from typing import Optional

import pytest

# Set testing environment BEFORE importing app
# Use temp path (must not exist - DuckDB creates the file).
_test_db_path = os.path.join(tempfile.gettempdir(), f"riskcast_test_{_uuid.uuid4().hex[:8]}.duckdb")
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = _test_db_path
os.environ.setdefault("LOG_FORMAT", "console")


from riskcast.config import Settings
from riskcast.models.definitions import Definition, MetricReference, Setting, SeverityMapping
from riskcast.models.enums import (
    BaselineKind,
    Direction,
    EventKind,
    EventSource,
    Severity,
    ValueKind,
    Zone,
)
from riskcast.models.events import Event
from riskcast.models.scores import DecayWeights, GaugeThreshold
from riskcast.storage.duckdb_storage import DuckDBStorage
from riskcast.utils.timeutil import add_days

USER = "user-1"

HIGH_WEIGHTS = [10, 5, 2.5, 1, 0, 0, 0]
MILD_WEIGHTS = [6, 3, 1.5, 0.5, 0, 0, 0]
LOW_WEIGHTS = [3, 1.5, 0.5, 0, 0, 0, 0]


# ---------------------------------------------------------------------------
# Pydantic model factories - reusable across all test suites
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Factory for isolated Settings (never reads a .env file)."""
    defaults = dict(
        db_path=_test_db_path,
        dev_mode=True,
        testing=True,
        log_format="console",
        worker_concurrency=4,
        dispatch_concurrency=4,
    )
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def make_definition(
    label: str = "Short sleep",
    table: str = "sleep_daily",
    column: str = "total_hours",
    direction: Direction = Direction.LOW,
    user_id: str = USER,
    **overrides,
) -> Definition:
    """Factory function for creating test Definition objects."""
    defaults = dict(
        user_id=user_id,
        label=label,
        kind=EventKind.TRIGGER,
        category="sleep",
        direction=direction,
        metric=MetricReference(table=table, column=column),
        value_kind=ValueKind.NUMERIC,
        unit="hours",
        default_threshold=None,
        baseline_window_days=14,
        baseline_strategy=BaselineKind.MEAN_STD,
    )
    defaults.update(overrides)
    return Definition(**defaults)


def make_event(
    event_type: str = "Short sleep",
    occurred_date: date = date(2026, 3, 1),
    user_id: str = USER,
    **overrides,
) -> Event:
    """Factory function for creating test Event objects."""
    defaults = dict(
        user_id=user_id,
        type=event_type,
        kind=EventKind.TRIGGER,
        source=EventSource.SYSTEM,
        occurred_date=occurred_date,
        notes=None,
        contributors=[event_type],
    )
    defaults.update(overrides)
    return Event(**defaults)


def make_decay_weights(severity: Severity = Severity.HIGH, weights: Optional[list] = None) -> DecayWeights:
    """Factory for one severity's decay curve (default HIGH = 10, 5, 2.5, 1, 0, 0, 0)."""
    defaults = {
        Severity.HIGH: HIGH_WEIGHTS,
        Severity.MILD: MILD_WEIGHTS,
        Severity.LOW: LOW_WEIGHTS,
        Severity.NONE: [0] * 7,
    }
    return DecayWeights(severity=severity, weights=list(weights or defaults[severity]))


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------


def seed_series(
    storage,
    metric: MetricReference,
    end: date,
    values: list,
    user_id: str = USER,
) -> None:
    """Write ``values`` on consecutive days ending on ``end`` (last value lands on ``end``)."""
    start = add_days(end, -(len(values) - 1))
    for offset, value in enumerate(values):
        if value is not None:
            storage.write_metric_value(user_id, metric, add_days(start, offset), value)


def seed_scoring(
    storage,
    user_id: str = USER,
    high: float = 12,
    mild: float = 6,
    low: float = 3,
    severities: Optional[dict] = None,
    curves: Optional[dict] = None,
) -> None:
    """Decay curves for every severity, gauge thresholds and label severities."""
    for severity in (Severity.HIGH, Severity.MILD, Severity.LOW):
        weights = (curves or {}).get(severity)
        storage.write_decay_weights(user_id, make_decay_weights(severity, weights))
    for zone, value in ((Zone.HIGH, high), (Zone.MILD, mild), (Zone.LOW, low)):
        storage.write_gauge_threshold(user_id, GaugeThreshold(zone=zone, min_value=value))
    for label, severity in (severities or {}).items():
        storage.write_severity_mapping(SeverityMapping(user_id=user_id, label=label, severity=severity))


def seed_setting(storage, label: str, enabled: bool = True, threshold: Optional[float] = None, user_id: str = USER):
    storage.write_setting(Setting(user_id=user_id, label=label, enabled=enabled, threshold=threshold))


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def storage(tmp_path):
    """Fresh DuckDB store per test."""
    store = DuckDBStorage(db_path=str(tmp_path / "riskcast.duckdb"))
    yield store
    store.close()


@pytest.fixture
def target_date() -> date:
    return date(2026, 3, 10)


@pytest.fixture
def now() -> datetime:
    """A naive UTC instant late on the fixture target date."""
    return datetime(2026, 3, 10, 22, 0, 0)
