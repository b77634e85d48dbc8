"""
Job queue models.

A Job is one unit of leasable work for one user and one target date.
Rows are created by the dispatcher and mutated only through the queue's
conditional updates.
"""

from datetime import date, datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from riskcast.utils.timeutil import utcnow

from .enums import JobStatus, JobType


class Job(BaseModel):
    """
    A leasable work item.

    Attributes:
        id: Unique job identifier
        job_type: Which handler runs the job
        user_id: User the work is for
        target_date: Local day being evaluated
        timezone: IANA zone the dispatcher resolved for the user
        status: queued, running, done or error
        attempts: Leases taken so far, incremented at lease time
        locked_at: Lease timestamp while running
        last_error: Message from the most recent failed attempt
        result_status: Descriptive outcome of the last successful run
        created_at: Insertion time, used for oldest-first selection
        updated_at: Last mutation time
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    job_type: JobType
    user_id: str
    target_date: date
    timezone: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    attempts: int = Field(default=0, ge=0)
    locked_at: Optional[datetime] = None
    last_error: Optional[str] = None
    result_status: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class JobOutcome(BaseModel):
    """Per-job line in a worker batch summary."""

    job_id: str
    job_type: JobType
    user_id: str
    target_date: date
    status: str
    error: Optional[str] = None
    detail: dict[str, Any] = Field(default_factory=dict)


class WorkerSummary(BaseModel):
    """Result of one worker batch (RunWorkerBatch)."""

    picked: int = 0
    done: int = 0
    errors: int = 0
    skipped: int = 0
    results: list[JobOutcome] = Field(default_factory=list)


class UserDispatch(BaseModel):
    """Per-user, per-job-type line in a dispatcher tick summary."""

    user_id: str
    job_type: JobType
    status: str
    timezone: Optional[str] = None
    target_date: Optional[date] = None
    local_hour: Optional[int] = None
    error: Optional[str] = None


class DispatchSummary(BaseModel):
    """Result of one dispatcher tick (RunDispatchTick)."""

    now_utc: datetime
    enqueued: int = 0
    skipped: int = 0
    errors: int = 0
    results: list[UserDispatch] = Field(default_factory=list)
