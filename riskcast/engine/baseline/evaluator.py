"""
Baseline Evaluator - decides which definitions fire for one user and date.

Algorithm:
    1. Load the user's definitions and apply settings; keep the enabled ones
    2. Group definitions by metric (table::column) so each signal is read once
    3. For each group read the target-date value and the trailing history
       (``[target - window, target - 1]``, target excluded)
    4. For each definition, normalize by value kind and fire when EITHER
       a. the value is beyond the absolute threshold, or
       b. the value is beyond the baseline cutoff (mean +/- 2 SD, or the
          robust median/MAD cutoff), when the window is large enough
    5. Write one system event per (user, event type, date); a second firing
       of the same type appends its reason to the existing event instead

Cumulative definitions with direction ``low`` are not judged before the
configured late-day hour, since a partial-day total is not yet "too low".

A read or conversion failure in one metric group is logged and recorded in
the report; the remaining groups are still evaluated.
"""

from collections import OrderedDict
from datetime import date
from typing import Any, Optional

import structlog

from riskcast.config import Settings, get_settings
from riskcast.errors import ConfigurationError, RiskcastError, StorageError, ValueConversionError
from riskcast.models.definitions import ResolvedDefinition
from riskcast.models.enums import Direction, EventSource, ValueKind
from riskcast.models.evaluation import DefinitionResult, EvaluationReport
from riskcast.models.events import Event
from riskcast.storage.base import StorageBackend
from riskcast.utils.timeutil import add_days

from .strategies import BaselineStrategy, build_strategies
from .value_kinds import get_value_kind

logger = structlog.get_logger(__name__)


class BaselineEvaluator:
    """
    Evaluates every active definition of a user for one target date.

    Attributes:
        storage: Metric, catalog and event store
        settings: Sample minimums, deviation multipliers and gating hour
        strategies: Baseline strategy per ``BaselineKind``

    Example:
        >>> evaluator = BaselineEvaluator(storage)
        >>> report = evaluator.evaluate("user-1", date(2026, 3, 1), local_hour=23)
        >>> report.events_created
        2
    """

    def __init__(
        self,
        storage: StorageBackend,
        settings: Optional[Settings] = None,
        strategies: Optional[dict] = None,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.strategies = strategies or build_strategies(self.settings)

    def active_definitions(self, user_id: str) -> list[ResolvedDefinition]:
        """
        Definitions with settings applied, enabled ones only.

        Raises:
            ConfigurationError: If the user has no definitions or none enabled
        """
        definitions = self.storage.read_definitions(user_id)
        if not definitions:
            raise ConfigurationError(
                status="done_no_definitions",
                message=f"No definitions configured for user {user_id}",
                details={"user_id": user_id},
            )

        settings = self.storage.read_settings(user_id)
        resolved = [ResolvedDefinition.resolve(d, settings.get(d.label)) for d in definitions]
        active = [r for r in resolved if r.enabled]
        if not active:
            raise ConfigurationError(
                status="done_no_active_definitions",
                message=f"All definitions disabled for user {user_id}",
                details={"user_id": user_id, "definitions": len(definitions)},
            )
        return active

    def evaluate(self, user_id: str, target_date: date, local_hour: int) -> EvaluationReport:
        """
        Evaluate and write events for one user and date.

        Args:
            user_id: User to evaluate
            target_date: Local date being judged
            local_hour: User's current local hour for that date (23 once the
                date has fully elapsed)

        Returns:
            Per-definition results and event write counts

        Raises:
            ConfigurationError: If there is nothing to evaluate
            StorageError: If every metric group failed to load
        """
        active = self.active_definitions(user_id)

        groups: "OrderedDict[str, list[ResolvedDefinition]]" = OrderedDict()
        for resolved in active:
            groups.setdefault(resolved.definition.metric.key, []).append(resolved)

        report = EvaluationReport(
            user_id=user_id,
            target_date=target_date,
            local_hour=local_hour,
            definitions=len(active),
            groups=len(groups),
        )

        logger.info(
            "evaluation_started",
            user_id=user_id,
            target_date=str(target_date),
            definitions=len(active),
            groups=len(groups),
        )

        for metric_key, members in groups.items():
            self._evaluate_group(report, metric_key, members)

        if report.groups and report.group_errors == report.groups:
            raise StorageError(
                f"All {report.groups} metric groups failed for user {user_id}",
                details={"user_id": user_id, "target_date": str(target_date)},
            )

        logger.info(
            "evaluation_completed",
            user_id=user_id,
            target_date=str(target_date),
            fired=report.fired,
            events_created=report.events_created,
            notes_appended=report.notes_appended,
            group_errors=report.group_errors,
        )
        return report

    def _evaluate_group(
        self,
        report: EvaluationReport,
        metric_key: str,
        members: list[ResolvedDefinition],
    ) -> None:
        metric = members[0].definition.metric

        try:
            raw = self.storage.read_metric_value(report.user_id, metric, report.target_date)
        except RiskcastError as e:
            logger.warning("metric_fetch_failed", user_id=report.user_id, metric=metric_key, error=str(e))
            report.group_errors += 1
            report.results.append(DefinitionResult(metric=metric_key, status="fetch_error", error=str(e)))
            return

        if raw is None:
            report.results.append(DefinitionResult(metric=metric_key, status="no_data"))
            return

        histories: dict[int, Optional[list[Any]]] = {}

        for resolved in members:
            definition = resolved.definition
            result = DefinitionResult(
                metric=metric_key,
                status="not_fired",
                label=definition.label,
                event_type=definition.event_type,
            )
            report.results.append(result)

            if (
                definition.value_kind == ValueKind.CUMULATIVE
                and definition.direction == Direction.LOW
                and report.local_hour < self.settings.cumulative_low_check_hour
            ):
                result.status = "skipped_cumulative_low_before_eod"
                continue

            handler = get_value_kind(definition.value_kind)
            try:
                value = handler.normalize(raw, bedtime=definition.bedtime)
            except ValueConversionError as e:
                logger.warning(
                    "metric_value_invalid",
                    user_id=report.user_id,
                    metric=metric_key,
                    label=definition.label,
                    raw=repr(raw),
                )
                result.status = "invalid_value"
                result.error = e.message
                continue
            result.value = value

            window = definition.baseline_window_days or self.settings.default_baseline_days
            if window not in histories:
                histories[window] = self._read_history(report, metric_key, resolved, window)

            reasons = self.check(resolved, value, histories[window])
            if not reasons:
                continue

            result.reasons = reasons
            report.fired += 1
            note = f"{definition.label}: {handler.format(value, definition.unit)} - {'; '.join(reasons)}"
            result.status = self._write_event(report, resolved, note)

    def _read_history(
        self,
        report: EvaluationReport,
        metric_key: str,
        resolved: ResolvedDefinition,
        window: int,
    ) -> Optional[list[Any]]:
        """Raw trailing values, or None when the history read fails."""
        try:
            return self.storage.read_metric_history(
                report.user_id,
                resolved.definition.metric,
                add_days(report.target_date, -window),
                add_days(report.target_date, -1),
            )
        except RiskcastError as e:
            logger.warning(
                "baseline_fetch_failed",
                user_id=report.user_id,
                metric=metric_key,
                window=window,
                error=str(e),
            )
            return None

    def check(
        self,
        resolved: ResolvedDefinition,
        value: float,
        history: Optional[list[Any]],
    ) -> list[str]:
        """Reasons the value fires; empty when it does not."""
        definition = resolved.definition
        handler = get_value_kind(definition.value_kind)
        reasons = []

        if resolved.threshold is not None:
            limit = handler.threshold_value(resolved.threshold, bedtime=definition.bedtime)
            beyond = value < limit if definition.direction == Direction.LOW else value > limit
            if beyond:
                reasons.append(handler.threshold_reason(definition.direction, resolved.threshold, definition.unit))

        if history:
            samples = []
            for raw in history:
                try:
                    samples.append(handler.normalize(raw, bedtime=definition.bedtime))
                except ValueConversionError:
                    logger.debug("baseline_value_dropped", label=definition.label, raw=repr(raw))

            strategy: BaselineStrategy = self.strategies[definition.baseline_strategy]
            baseline = strategy.compute(samples)
            if baseline is not None and strategy.deviates(value, baseline, definition.direction):
                reasons.append(
                    strategy.reason(
                        baseline,
                        definition.direction,
                        lambda v: handler.format(v, definition.unit),
                    )
                )

        return reasons

    def _write_event(self, report: EvaluationReport, resolved: ResolvedDefinition, note: str) -> str:
        """Insert the event, or append to the one already there for this type and date."""
        definition = resolved.definition
        event = Event(
            user_id=report.user_id,
            type=definition.event_type,
            kind=definition.kind,
            source=EventSource.SYSTEM,
            occurred_date=report.target_date,
            notes=note,
            contributors=[definition.label],
        )

        if self.storage.insert_event(event):
            report.events_created += 1
            logger.info(
                "event_created",
                user_id=report.user_id,
                type=event.type,
                label=definition.label,
                occurred_date=str(report.target_date),
            )
            return "created"

        self.storage.append_event_note(
            report.user_id,
            event.type,
            EventSource.SYSTEM,
            report.target_date,
            note,
            contributor=definition.label,
        )
        report.notes_appended += 1
        logger.debug(
            "event_note_appended",
            user_id=report.user_id,
            type=event.type,
            label=definition.label,
        )
        return "appended"
