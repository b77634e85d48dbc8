"""
Robust composite stress index.

Blends two physiological signals into one 0-100 daily value:

    1. Robust z-score of resting heart rate against its trailing 14 days
    2. Robust z-score of HRV against its trailing 14 days (inverted, since
       low HRV means stress)
    3. z = 0.55 * z_rhr + 0.45 * (-z_hrv)
    4. index = 100 / (1 + exp(-z)), clamped to 0-100

Each baseline needs at least 5 samples and a non-zero MAD. The result is
written back as a derived per-day metric so definitions can fire on it like
any other column. Rewriting the same day is an upsert.
"""

import math
from datetime import date
from typing import Any, Optional

import structlog

from riskcast.config import Settings, get_settings
from riskcast.models.definitions import MetricReference
from riskcast.models.evaluation import StressIndexResult
from riskcast.storage.base import StorageBackend
from riskcast.utils.numbers import clamp
from riskcast.utils.timeutil import add_days, utcnow

from .strategies import robust_zscore

logger = structlog.get_logger(__name__)

RESTING_HR = MetricReference(table="resting_hr_daily", column="value_bpm")
HRV = MetricReference(table="hrv_daily", column="value_rmssd_ms")
STRESS_TABLE = "stress_index_daily"
STRESS_INDEX = MetricReference(table=STRESS_TABLE, column="value")

BASELINE_DAYS = 14
RHR_WEIGHT = 0.55
HRV_WEIGHT = 0.45


def logistic_percent(z: float) -> float:
    """Squash a z-score onto 0-100."""
    # exp() only ever sees a non-positive argument, so it cannot overflow
    if z >= 0:
        value = 100.0 / (1.0 + math.exp(-z))
    else:
        e = math.exp(z)
        value = 100.0 * e / (1.0 + e)
    return clamp(value, 0.0, 100.0)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return float(value)


class StressIndexCalculator:
    """
    Computes and stores the daily stress index for one user.

    Example:
        >>> calc = StressIndexCalculator(storage)
        >>> result = calc.compute("user-1", date(2026, 3, 1))
        >>> result.status, result.value
        ('written', 73.1)
    """

    def __init__(self, storage: StorageBackend, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or get_settings()
        self.min_samples = self.settings.robust_min_baseline_samples

    def _history(self, user_id: str, metric: MetricReference, start: date, end: date) -> list[float]:
        values = map(_as_number, self.storage.read_metric_history(user_id, metric, start, end))
        return [v for v in values if v is not None]

    def compute(self, user_id: str, target_date: date) -> StressIndexResult:
        result = StressIndexResult(user_id=user_id, target_date=target_date, status="skipped")

        rhr = _as_number(self.storage.read_metric_value(user_id, RESTING_HR, target_date))
        hrv = _as_number(self.storage.read_metric_value(user_id, HRV, target_date))
        if rhr is None or hrv is None:
            result.reason = "missing_inputs"
            return result

        start = add_days(target_date, -BASELINE_DAYS)
        end = add_days(target_date, -1)
        rhr_history = self._history(user_id, RESTING_HR, start, end)
        hrv_history = self._history(user_id, HRV, start, end)

        if len(rhr_history) < self.min_samples or len(hrv_history) < self.min_samples:
            result.reason = "insufficient_baseline"
            return result

        z_rhr = robust_zscore(rhr, rhr_history, self.min_samples)
        z_hrv = robust_zscore(hrv, hrv_history, self.min_samples)
        if z_rhr is None or z_hrv is None:
            result.reason = "baseline_zero_variance"
            return result

        value = logistic_percent(RHR_WEIGHT * z_rhr + HRV_WEIGHT * (-z_hrv))
        window = min(len(rhr_history), len(hrv_history))

        derived = {
            "value": value,
            "rhr_z": z_rhr,
            "hrv_z": z_hrv,
            "baseline_window_days": window,
            "computed_at": utcnow(),
        }
        for column, column_value in derived.items():
            self.storage.write_metric_value(
                user_id, MetricReference(table=STRESS_TABLE, column=column), target_date, column_value
            )

        logger.info(
            "stress_index_written",
            user_id=user_id,
            target_date=str(target_date),
            value=round(value, 2),
            rhr_z=round(z_rhr, 3),
            hrv_z=round(z_hrv, 3),
        )

        result.status = "written"
        result.value = value
        result.rhr_z = z_rhr
        result.hrv_z = z_hrv
        result.baseline_window_days = window
        return result
