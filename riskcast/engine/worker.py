"""
Worker - leases queued jobs and runs them.

One batch:
    1. Pick up to ``batch_size`` candidate jobs, oldest first
    2. For each (bounded pool): lease it, run the handler for its type,
       then complete or fail it through the queue's conditional updates
    3. Return a summary; individual failures never escape the batch

Handlers:
    trigger_daily / trigger_intraday -> BaselineEvaluator, then re-queue
                                        today's risk_score for the user
    risk_score                        -> DecayScorer (live + daily snapshots)
    stress_index                      -> StressIndexCalculator

A ConfigurationError from a handler completes the job as ``done`` with the
error's status as ``result_status``. Any other exception is a failed
attempt: the job returns to ``queued`` until attempts run out.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from riskcast.config import Settings, get_settings
from riskcast.engine.baseline.evaluator import BaselineEvaluator
from riskcast.engine.baseline.robust_index import StressIndexCalculator
from riskcast.engine.dispatch.localtime import local_hour_for, local_time
from riskcast.engine.dispatch.pool import map_bounded
from riskcast.engine.jobs.queue import JobQueue
from riskcast.engine.scoring.decay_scorer import DecayScorer
from riskcast.errors import ConfigurationError
from riskcast.models.enums import JobStatus, JobType
from riskcast.models.jobs import Job, JobOutcome, WorkerSummary
from riskcast.storage.base import StorageBackend
from riskcast.utils.logging import job_context
from riskcast.utils.timeutil import to_naive_utc

logger = structlog.get_logger(__name__)

HandlerResult = tuple[str, dict[str, Any]]


class Worker:
    """
    Runs batches of leased jobs.

    Example:
        >>> worker = Worker(storage)
        >>> summary = worker.run_batch(batch_size=50)
        >>> summary.picked, summary.done, summary.errors
    """

    def __init__(
        self,
        storage: StorageBackend,
        settings: Optional[Settings] = None,
        queue: Optional[JobQueue] = None,
        evaluator: Optional[BaselineEvaluator] = None,
        scorer: Optional[DecayScorer] = None,
        stress: Optional[StressIndexCalculator] = None,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.queue = queue or JobQueue(storage, self.settings)
        self.evaluator = evaluator or BaselineEvaluator(storage, self.settings)
        self.scorer = scorer or DecayScorer(storage, self.settings)
        self.stress = stress or StressIndexCalculator(storage, self.settings)

        self.handlers: dict[JobType, Callable[[Job, datetime], HandlerResult]] = {
            JobType.TRIGGER_DAILY: self._run_triggers,
            JobType.TRIGGER_INTRADAY: self._run_triggers,
            JobType.RISK_SCORE: self._run_risk_score,
            JobType.STRESS_INDEX: self._run_stress_index,
        }

    def run_batch(
        self,
        batch_size: Optional[int] = None,
        now: Optional[datetime] = None,
        job_types: Optional[list[JobType]] = None,
    ) -> WorkerSummary:
        """
        Pick, lease and run one batch of jobs.

        Args:
            batch_size: Maximum jobs to pick (default from settings)
            now: Current instant; naive values are taken as UTC
            job_types: Restrict the batch to these job types

        Returns:
            Counts of picked, done, errored and skipped jobs plus per-job lines
        """
        batch_size = batch_size or self.settings.worker_batch_size
        now = to_naive_utc(now or datetime.now(timezone.utc))

        jobs = self.queue.pick(now, batch_size, job_types)
        summary = WorkerSummary(picked=len(jobs))
        if not jobs:
            logger.debug("worker_batch_empty")
            return summary

        logger.info("worker_batch_started", picked=len(jobs), batch_size=batch_size)

        outcomes = map_bounded(
            lambda job: self.run_job(job, now),
            jobs,
            self.settings.worker_concurrency,
        )

        for outcome in outcomes:
            if outcome.ok:
                line = outcome.value
            else:
                job = outcome.item
                line = JobOutcome(
                    job_id=job.id,
                    job_type=job.job_type,
                    user_id=job.user_id,
                    target_date=job.target_date,
                    status="error",
                    error=str(outcome.error),
                )
            summary.results.append(line)

            if line.status.startswith("done"):
                summary.done += 1
            elif line.status in ("error", "expired"):
                summary.errors += 1
            else:
                summary.skipped += 1

        logger.info(
            "worker_batch_completed",
            picked=summary.picked,
            done=summary.done,
            errors=summary.errors,
            skipped=summary.skipped,
        )
        return summary

    def run_job(self, job: Job, now: datetime) -> JobOutcome:
        """
        Lease and run one picked job.

        Outcome statuses: ``done*`` (completed, with the result status),
        ``retry`` (failed, attempts left), ``error`` (failed terminally),
        ``expired`` (stale with attempts exhausted), ``lease_not_acquired``
        and ``lease_lost``.
        """
        outcome = JobOutcome(
            job_id=job.id,
            job_type=job.job_type,
            user_id=job.user_id,
            target_date=job.target_date,
            status="lease_not_acquired",
        )

        if self.queue.is_exhausted(job):
            if self.queue.expire(job, now):
                outcome.status = "expired"
                outcome.error = "lease expired with attempts exhausted"
            return outcome

        leased = self.queue.lease(job, now)
        if leased is None:
            return outcome

        with job_context(leased):
            try:
                result_status, detail = self.handlers[leased.job_type](leased, now)
            except ConfigurationError as e:
                logger.info("job_configuration_missing", status=e.status, message=e.message)
                result_status, detail = e.status, e.to_dict()
            except Exception as e:
                logger.error("job_failed", error=str(e), exc_info=True)
                status = self.queue.fail(leased, f"{type(e).__name__}: {e}", now)
                outcome.error = str(e)
                if status is None:
                    outcome.status = "lease_lost"
                elif status == JobStatus.ERROR:
                    outcome.status = "error"
                else:
                    outcome.status = "retry"
                return outcome

            outcome.detail = detail
            if not self.queue.complete(leased, result_status, now):
                outcome.status = "lease_lost"
                return outcome

            outcome.status = result_status
            logger.info("job_completed", result_status=result_status)
            return outcome

    # =========================================================================
    # Handlers
    # =========================================================================

    def _local_hour(self, job: Job, now: datetime) -> int:
        """Hour used for cumulative gating; a job without a timezone counts as end of day."""
        if not job.timezone:
            return 23
        return local_hour_for(job.target_date, now, job.timezone, self.settings.fallback_timezone)

    def _run_triggers(self, job: Job, now: datetime) -> HandlerResult:
        report = self.evaluator.evaluate(job.user_id, job.target_date, self._local_hour(job, now))

        clock = local_time(now, job.timezone, self.settings.fallback_timezone)
        self.queue.requeue(JobType.RISK_SCORE, job.user_id, clock.date, now, timezone=clock.timezone)

        detail = report.model_dump(mode="json", exclude={"results"})
        detail["results"] = [r.model_dump(mode="json", exclude_none=True) for r in report.results]
        return report.result_status, detail

    def _run_risk_score(self, job: Job, now: datetime) -> HandlerResult:
        live = self.scorer.run(job.user_id, job.target_date, now)
        return "done", {
            "score": live.score,
            "zone": live.zone.value,
            "percent": live.percent,
            "forecast": live.forecast,
            "contributors": len(live.top_contributors),
        }

    def _run_stress_index(self, job: Job, now: datetime) -> HandlerResult:
        result = self.stress.compute(job.user_id, job.target_date)
        status = "done" if result.status == "written" else f"done_skipped_{result.reason}"
        return status, result.model_dump(mode="json", exclude_none=True)
