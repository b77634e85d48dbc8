"""
Dispatcher - decides per user whether and for which date work runs.

Runs on a fixed cadence of a few minutes. For each candidate user it resolves
the local wall-clock time and enqueues every job type that is due. Enqueue
is keyed on (job_type, user_id, target_date), so the several ticks that land
inside one eligibility window still produce a single job. Hourly job types
reuse that one row per day: a run finished before the current window opened
is queued again.

Users fan out over a bounded pool. One user failing is recorded in the tick
summary and never aborts the rest of the batch.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from riskcast.config import Settings, get_settings
from riskcast.engine.jobs.queue import JobQueue
from riskcast.engine.jobs.specs import CandidateSource, JobSpec, Schedule, build_job_specs
from riskcast.models.jobs import DispatchSummary, UserDispatch
from riskcast.storage.base import StorageBackend
from riskcast.utils.timeutil import add_days, to_naive_utc

from .localtime import local_time
from .pool import map_bounded

logger = structlog.get_logger(__name__)

LOCATION_LOOKBACK_DAYS = 7

STATUS_ENQUEUED = "enqueued"
STATUS_DUPLICATE = "duplicate"
STATUS_NOT_DUE = "not_due"
STATUS_ERROR = "error"


class Dispatcher:
    """
    Fans the current instant out into per-user job rows.

    Example:
        >>> dispatcher = Dispatcher(storage)
        >>> summary = dispatcher.run_tick(datetime.now(timezone.utc))
        >>> summary.enqueued, summary.skipped, summary.errors
    """

    def __init__(
        self,
        storage: StorageBackend,
        settings: Optional[Settings] = None,
        queue: Optional[JobQueue] = None,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.specs = build_job_specs(self.settings)
        self.queue = queue or JobQueue(storage, self.settings, self.specs)

    def run_tick(self, now: Optional[datetime] = None) -> DispatchSummary:
        """
        Run one dispatcher tick.

        Args:
            now: Current instant; naive values are taken as UTC

        Returns:
            Counts of enqueued, skipped and errored (user, job type) pairs
            plus a per-pair status line
        """
        now = now or datetime.now(timezone.utc)
        now_utc = to_naive_utc(now)

        candidates = self._candidates(now_utc)
        logger.info("dispatch_tick_started", now_utc=now_utc.isoformat(), users=len(candidates))

        users = sorted(candidates)
        outcomes = map_bounded(
            lambda user_id: self._dispatch_user(user_id, candidates[user_id], now_utc),
            users,
            self.settings.dispatch_concurrency,
        )

        summary = DispatchSummary(now_utc=now_utc)
        for outcome in outcomes:
            if outcome.ok:
                lines = outcome.value
            else:
                lines = [
                    UserDispatch(
                        user_id=outcome.item,
                        job_type=spec.job_type,
                        status=STATUS_ERROR,
                        error=str(outcome.error),
                    )
                    for spec in candidates[outcome.item]
                ]
            for line in lines:
                summary.results.append(line)
                if line.status == STATUS_ENQUEUED:
                    summary.enqueued += 1
                elif line.status == STATUS_ERROR:
                    summary.errors += 1
                else:
                    summary.skipped += 1

        logger.info(
            "dispatch_tick_completed",
            enqueued=summary.enqueued,
            skipped=summary.skipped,
            errors=summary.errors,
        )
        return summary

    def _candidates(self, now_utc: datetime) -> dict[str, list[JobSpec]]:
        """Map each candidate user to the job specs they are a candidate for."""
        users_by_source = {
            CandidateSource.DEFINITIONS: self.storage.list_definition_users(),
            CandidateSource.SCORING: self.storage.list_scoring_users(),
            CandidateSource.LOCATIONS: self.storage.list_location_users(
                add_days(now_utc.date(), -LOCATION_LOOKBACK_DAYS)
            ),
        }

        candidates: dict[str, list[JobSpec]] = {}
        for spec in self.specs.values():
            for user_id in users_by_source[spec.candidates]:
                candidates.setdefault(user_id, []).append(spec)
        return candidates

    def _resolve_timezone(self, user_id: str, now_utc: datetime) -> Optional[str]:
        tz_name = self.storage.resolve_timezone(user_id, now_utc.date())
        if tz_name is None:
            logger.debug("timezone_fallback", user_id=user_id, timezone=self.settings.fallback_timezone)
        return tz_name

    def _dispatch_user(
        self, user_id: str, specs: list[JobSpec], now_utc: datetime
    ) -> list[UserDispatch]:
        """Enqueue each due job type for one user."""
        clock = local_time(
            now_utc,
            self._resolve_timezone(user_id, now_utc),
            self.settings.fallback_timezone,
        )

        lines = []
        for spec in specs:
            line = UserDispatch(
                user_id=user_id,
                job_type=spec.job_type,
                status=STATUS_NOT_DUE,
                timezone=clock.timezone,
                local_hour=clock.hour,
            )

            if spec.is_due(
                clock.hour,
                clock.minute,
                self.settings.evaluation_hour,
                self.settings.eval_window_minutes,
            ):
                target_date = spec.target_date_for(clock.date)
                line.target_date = target_date
                if spec.schedule == Schedule.HOURLY:
                    # One row per day; a run finished in an earlier hour is reset.
                    inserted = self.queue.requeue(
                        spec.job_type,
                        user_id,
                        target_date,
                        now_utc,
                        timezone=clock.timezone,
                        finished_before=now_utc - timedelta(minutes=self.settings.eval_window_minutes),
                    )
                else:
                    inserted = self.queue.enqueue(
                        spec.job_type, user_id, target_date, now_utc, timezone=clock.timezone
                    )
                line.status = STATUS_ENQUEUED if inserted else STATUS_DUPLICATE
                if inserted:
                    logger.info(
                        "job_dispatched",
                        user_id=user_id,
                        job_type=spec.job_type.value,
                        target_date=str(target_date),
                        timezone=clock.timezone,
                    )

            lines.append(line)
        return lines

