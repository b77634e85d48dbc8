"""
Value-kind strategies.

Metric columns hold numbers, ordinal risk strings or ISO timestamps. Each
definition carries a ``value_kind`` tag, and the matching handler here
normalizes raw values to floats, converts thresholds into the same unit and
renders values for reason strings.
"""

from abc import ABC
from datetime import datetime, time
from typing import Any, Optional

from riskcast.errors import ValueConversionError
from riskcast.models.enums import Direction, ValueKind
from riskcast.utils.numbers import round_half_up

MINUTES_PER_DAY = 24 * 60

RISK_RANK = {"none": 0, "low": 1, "medium": 2, "high": 3}


def format_value(value: float, unit: Optional[str]) -> str:
    """Render a normalized value in its display unit."""
    if unit == "hours":
        return f"{value:.1f}h"
    if unit == "%":
        return f"{value:.0f}%"
    if unit == "count":
        return str(round_half_up(value))
    return f"{value:.1f}"


class ValueKindHandler(ABC):
    """Normalize, compare and format values of one kind."""

    kind: ValueKind

    def normalize(self, raw: Any, bedtime: bool = False) -> float:
        if isinstance(raw, bool):
            raise ValueConversionError(self.kind.value, raw)
        if isinstance(raw, (int, float)):
            return float(raw)
        try:
            return float(str(raw).strip())
        except ValueError as e:
            raise ValueConversionError(self.kind.value, raw) from e

    def threshold_value(self, threshold: float, bedtime: bool = False) -> float:
        """Express an absolute threshold in the normalized unit."""
        return float(threshold)

    def format(self, value: float, unit: Optional[str]) -> str:
        return format_value(value, unit)

    def threshold_reason(self, direction: Direction, threshold: float, unit: Optional[str]) -> str:
        side = "below" if direction == Direction.LOW else "above"
        return f"{side} {format_value(threshold, unit)} threshold"


class NumericKind(ValueKindHandler):
    kind = ValueKind.NUMERIC


class CumulativeKind(ValueKindHandler):
    """Running daily totals. Compared like numbers; partial days are gated by the evaluator."""

    kind = ValueKind.CUMULATIVE


class OrdinalRiskKind(ValueKindHandler):
    """none/low/medium/high exposure levels mapped to 0-3."""

    kind = ValueKind.ORDINAL_RISK

    def normalize(self, raw: Any, bedtime: bool = False) -> float:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return float(raw)
        if isinstance(raw, str):
            return float(RISK_RANK.get(raw.strip().lower(), 0))
        return 0.0


class TimeOfDayKind(ValueKindHandler):
    """
    Clock times as minutes since midnight.

    With ``bedtime`` set, times before noon are pushed past midnight
    (+24h) so a 01:00 bedtime sorts after a 23:00 one.
    """

    kind = ValueKind.TIME_OF_DAY

    def normalize(self, raw: Any, bedtime: bool = False) -> float:
        clock = self._parse_clock(raw)
        minutes = clock.hour * 60 + clock.minute
        if bedtime and clock.hour < 12:
            minutes += MINUTES_PER_DAY
        return float(minutes)

    def threshold_value(self, threshold: float, bedtime: bool = False) -> float:
        """Thresholds are configured in clock hours."""
        minutes = threshold * 60
        if bedtime and threshold < 12:
            minutes += MINUTES_PER_DAY
        return float(minutes)

    def format(self, value: float, unit: Optional[str]) -> str:
        minutes = round_half_up(value)
        if minutes >= MINUTES_PER_DAY:
            minutes -= MINUTES_PER_DAY
        return f"{minutes // 60:02d}:{minutes % 60:02d}"

    def threshold_reason(self, direction: Direction, threshold: float, unit: Optional[str]) -> str:
        side = "before" if direction == Direction.LOW else "after"
        return f"{side} {threshold:g}:00 threshold"

    def _parse_clock(self, raw: Any) -> time:
        if isinstance(raw, datetime):
            return raw.time()
        if isinstance(raw, time):
            return raw
        if isinstance(raw, str):
            text = raw.strip()
            try:
                return datetime.fromisoformat(text.replace("Z", "+00:00")).time()
            except ValueError:
                pass
            try:
                return time.fromisoformat(text)
            except ValueError as e:
                raise ValueConversionError(self.kind.value, raw) from e
        raise ValueConversionError(self.kind.value, raw)


VALUE_KINDS: dict[ValueKind, ValueKindHandler] = {
    ValueKind.NUMERIC: NumericKind(),
    ValueKind.CUMULATIVE: CumulativeKind(),
    ValueKind.ORDINAL_RISK: OrdinalRiskKind(),
    ValueKind.TIME_OF_DAY: TimeOfDayKind(),
}


def get_value_kind(kind: ValueKind) -> ValueKindHandler:
    return VALUE_KINDS[kind]
