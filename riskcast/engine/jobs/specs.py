"""
Job type registry.

Each job type declares when the dispatcher considers it, which local date it
targets, who its candidate users are and how long its lease may sit before
another worker may reclaim it.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum

from riskcast.config import Settings
from riskcast.models.enums import JobType
from riskcast.utils.timeutil import add_days


class Schedule(str, Enum):
    DAILY = "daily"
    HOURLY = "hourly"


class CandidateSource(str, Enum):
    """Which configuration table names the users a job type fans out to."""

    DEFINITIONS = "definitions"
    SCORING = "scoring"
    LOCATIONS = "locations"


@dataclass(frozen=True)
class JobSpec:
    job_type: JobType
    schedule: Schedule
    date_offset: int
    stale_lock_minutes: int
    candidates: CandidateSource
    description: str = ""

    def is_due(self, local_hour: int, local_minute: int, evaluation_hour: int, window_minutes: int) -> bool:
        """
        Whether a tick at this local wall-clock time should enqueue the job.

        Only the first ``window_minutes`` of the hour qualify. Daily jobs also
        need the evaluation hour; hourly jobs qualify every hour.
        """
        if local_minute >= window_minutes:
            return False
        if self.schedule == Schedule.HOURLY:
            return True
        return local_hour == evaluation_hour

    def target_date_for(self, local_date: date) -> date:
        return add_days(local_date, self.date_offset)


def build_job_specs(settings: Settings) -> dict[JobType, JobSpec]:
    """Registry of every job type the dispatcher and worker know about."""
    return {
        JobType.TRIGGER_DAILY: JobSpec(
            job_type=JobType.TRIGGER_DAILY,
            schedule=Schedule.DAILY,
            date_offset=-1,
            stale_lock_minutes=settings.stale_lock_minutes,
            candidates=CandidateSource.DEFINITIONS,
            description="Evaluate every definition against yesterday's fully elapsed data",
        ),
        JobType.TRIGGER_INTRADAY: JobSpec(
            job_type=JobType.TRIGGER_INTRADAY,
            schedule=Schedule.HOURLY,
            date_offset=0,
            stale_lock_minutes=settings.stale_lock_minutes,
            candidates=CandidateSource.DEFINITIONS,
            description="Re-evaluate today's partial data, cumulative lows gated by hour",
        ),
        JobType.RISK_SCORE: JobSpec(
            job_type=JobType.RISK_SCORE,
            schedule=Schedule.DAILY,
            date_offset=0,
            stale_lock_minutes=settings.stale_lock_minutes,
            candidates=CandidateSource.SCORING,
            description="Recompute today's score and the seven-day forecast",
        ),
        JobType.STRESS_INDEX: JobSpec(
            job_type=JobType.STRESS_INDEX,
            schedule=Schedule.DAILY,
            date_offset=-1,
            stale_lock_minutes=settings.derived_stale_lock_minutes,
            candidates=CandidateSource.LOCATIONS,
            description="Derive the robust stress index for yesterday",
        ),
    }
