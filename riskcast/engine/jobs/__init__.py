"""
Job queue and job type registry.

Components:
    JobQueue: Leasing protocol over the shared job table
    JobSpec: Schedule, target date offset and stale-lease timeout per job type
"""

from riskcast.engine.jobs.queue import JobQueue
from riskcast.engine.jobs.specs import CandidateSource, JobSpec, Schedule, build_job_specs

__all__ = [
    "CandidateSource",
    "JobQueue",
    "JobSpec",
    "Schedule",
    "build_job_specs",
]
