"""
Scheduling router - the two cron entry points over HTTP.

Wired to:
- Dispatcher.run_tick for the per-user fan-out
- Worker.run_batch for leasing and running queued jobs
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from riskcast.config import get_settings
from riskcast.engine.dispatch import Dispatcher
from riskcast.engine.worker import Worker
from riskcast.models.enums import JobType
from riskcast.storage import StorageBackend, get_storage
from riskcast.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.post("/dispatch/tick")
def run_dispatch_tick(
    now: Optional[datetime] = Query(default=None, description="Override the current instant (UTC)"),
    storage: StorageBackend = Depends(get_storage),
):
    """
    Run one dispatcher tick.

    Returns enqueued, skipped and error counts plus one line per
    (user, job type) pair.
    """
    summary = Dispatcher(storage, get_settings()).run_tick(now)
    logger.info("dispatch_tick_request", enqueued=summary.enqueued, errors=summary.errors)
    return {"success": True, "data": summary.model_dump(mode="json")}


@router.post("/worker/batch")
def run_worker_batch(
    batch_size: Optional[int] = Query(default=None, ge=1, le=500),
    job_type: Optional[list[JobType]] = Query(default=None),
    now: Optional[datetime] = Query(default=None, description="Override the current instant (UTC)"),
    storage: StorageBackend = Depends(get_storage),
):
    """
    Lease and run one batch of queued jobs.

    Returns picked, done, error and skipped counts plus one line per job.
    """
    summary = Worker(storage, get_settings()).run_batch(batch_size=batch_size, now=now, job_types=job_type)
    logger.info("worker_batch_request", picked=summary.picked, done=summary.done, errors=summary.errors)
    return {"success": True, "data": summary.model_dump(mode="json")}
