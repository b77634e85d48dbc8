"""
Job Queue - leasing protocol over the shared job table.

State machine:
    queued --lease--> running --complete--> done
                      running --fail------> queued   (attempts left)
                      running --fail------> error    (attempts exhausted)
                      running --stale-----> running  (reclaimed by a new lease)

Every transition is a conditional update in the store. The number of rows it
touches is the only signal of success, so two workers racing for one job get
exactly one lease between them and the loser skips the job for this cycle.
Attempts are counted at lease time regardless of outcome. There is no
backoff: a failed job is simply eligible again on the next batch.
"""

from datetime import date, datetime, timedelta
from typing import Optional

import structlog

from riskcast.config import Settings
from riskcast.models.enums import JobStatus, JobType
from riskcast.models.jobs import Job
from riskcast.storage.base import StorageBackend
from riskcast.utils.timeutil import to_naive_utc

from .specs import JobSpec, build_job_specs

logger = structlog.get_logger(__name__)

MAX_ERROR_LENGTH = 1000


class JobQueue:
    """
    Enqueue, lease, complete and fail jobs for the worker pool.

    Attributes:
        storage: Shared store holding the job table
        max_attempts: Leases allowed before a job is terminally errored
        specs: Per-type schedule and stale-lease timeout
    """

    def __init__(
        self,
        storage: StorageBackend,
        settings: Settings,
        specs: Optional[dict[JobType, JobSpec]] = None,
    ):
        self.storage = storage
        self.max_attempts = settings.max_attempts
        self.specs = specs or build_job_specs(settings)

    def stale_cutoff(self, job_type: JobType, now: datetime) -> datetime:
        """Leases taken before this instant are stale for ``job_type``."""
        minutes = self.specs[job_type].stale_lock_minutes
        return to_naive_utc(now) - timedelta(minutes=minutes)

    def enqueue(
        self,
        job_type: JobType,
        user_id: str,
        target_date: date,
        now: datetime,
        timezone: Optional[str] = None,
    ) -> bool:
        """Insert a queued job. Returns False when it already exists."""
        now = to_naive_utc(now)
        job = Job(
            job_type=job_type,
            user_id=user_id,
            target_date=target_date,
            timezone=timezone,
            created_at=now,
            updated_at=now,
        )
        return self.storage.enqueue_job(job)

    def requeue(
        self,
        job_type: JobType,
        user_id: str,
        target_date: date,
        now: datetime,
        timezone: Optional[str] = None,
        finished_before: Optional[datetime] = None,
    ) -> bool:
        """
        Queue a job again even if it already completed.

        A job that ended in ``error`` is not retried.

        With ``finished_before`` set, a run that finished at or after that
        instant is left alone.
        """
        requeued = self.storage.requeue_job(
            job_type, user_id, target_date, timezone, now, finished_before=finished_before
        )
        if requeued:
            logger.info(
                "job_requeued",
                job_type=job_type.value,
                user_id=user_id,
                target_date=str(target_date),
            )
        return requeued

    def pick(
        self,
        now: datetime,
        limit: int,
        job_types: Optional[list[JobType]] = None,
    ) -> list[Job]:
        """Candidate jobs for one batch, oldest first. Takes no lease."""
        cutoffs = {job_type: self.stale_cutoff(job_type, now) for job_type in self.specs}
        jobs = self.storage.select_jobs(
            now=to_naive_utc(now),
            limit=limit,
            max_attempts=self.max_attempts,
            stale_cutoffs=cutoffs,
            job_types=job_types,
        )
        logger.debug("jobs_picked", count=len(jobs), limit=limit)
        return jobs

    def is_exhausted(self, job: Job) -> bool:
        """A stale running job that already used every attempt is not leased again."""
        return job.status == JobStatus.RUNNING and job.attempts >= self.max_attempts

    def lease(self, job: Job, now: datetime) -> Optional[Job]:
        """
        Take the lease on a picked job.

        Returns:
            The job as leased (status running, attempts incremented), or None
            when another worker got there first
        """
        leased = self.storage.lease_job(
            job_id=job.id,
            now=to_naive_utc(now),
            max_attempts=self.max_attempts,
            stale_cutoff=self.stale_cutoff(job.job_type, now),
        )
        if leased is None:
            logger.info("lease_not_acquired", job_id=job.id, job_type=job.job_type.value)
            return None

        if job.status == JobStatus.RUNNING:
            logger.warning(
                "stale_lease_reclaimed",
                job_id=job.id,
                job_type=job.job_type.value,
                previous_locked_at=str(job.locked_at),
                attempts=leased.attempts,
            )
        return leased

    def expire(self, job: Job, now: datetime) -> bool:
        """Terminally error a stale job whose attempts are exhausted."""
        expired = self.storage.expire_job(
            job_id=job.id,
            stale_cutoff=self.stale_cutoff(job.job_type, now),
            error=f"lease expired after {job.attempts} attempts",
            now=to_naive_utc(now),
        )
        if expired:
            logger.warning(
                "job_expired",
                job_id=job.id,
                job_type=job.job_type.value,
                attempts=job.attempts,
            )
        return expired

    def complete(self, job: Job, result_status: str, now: datetime) -> bool:
        """Mark a leased job done. False means the lease was lost meanwhile."""
        completed = self.storage.complete_job(job.id, job.locked_at, result_status, to_naive_utc(now))
        if not completed:
            logger.warning("lease_lost_on_complete", job_id=job.id, job_type=job.job_type.value)
        return completed

    def fail(self, job: Job, error: str, now: datetime) -> Optional[JobStatus]:
        """Record a failed attempt. Returns the new status, or None if the lease was lost."""
        status = self.storage.fail_job(
            job.id,
            job.locked_at,
            error[:MAX_ERROR_LENGTH],
            self.max_attempts,
            to_naive_utc(now),
        )
        if status is None:
            logger.warning("lease_lost_on_fail", job_id=job.id, job_type=job.job_type.value)
        elif status == JobStatus.ERROR:
            logger.error(
                "job_attempts_exhausted",
                job_id=job.id,
                job_type=job.job_type.value,
                attempts=job.attempts,
                error=error,
            )
        return status
