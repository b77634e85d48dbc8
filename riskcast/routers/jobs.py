"""
Job inspection router - read-only view of the job table.

Wired to:
- StorageBackend.read_jobs / read_job
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from riskcast.models.enums import JobStatus, JobType
from riskcast.storage import StorageBackend, get_storage

router = APIRouter()


@router.get("")
def list_jobs(
    status: Optional[JobStatus] = None,
    job_type: Optional[JobType] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    storage: StorageBackend = Depends(get_storage),
):
    """
    List jobs, oldest first.

    Args:
        status: Filter by status (queued, running, done, error)
        job_type: Filter by job type
        limit: Maximum rows (max 1000)
    """
    jobs = storage.read_jobs(status=status, job_type=job_type, limit=limit)
    return {
        "success": True,
        "data": [job.model_dump(mode="json") for job in jobs],
        "count": len(jobs),
    }


@router.get("/{job_id}")
def get_job(job_id: str, storage: StorageBackend = Depends(get_storage)):
    job = storage.read_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return {"success": True, "data": job.model_dump(mode="json")}
