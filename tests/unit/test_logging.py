"""
Unit tests for job-scoped logging context.
"""

from datetime import date, datetime

import structlog

from riskcast.engine.worker import Worker
from riskcast.models.enums import JobType
from riskcast.models.jobs import Job
from riskcast.utils.logging import job_context, job_log_context
from tests.conftest import USER, make_settings

NOW = datetime(2026, 3, 10, 9, 5)
TODAY = date(2026, 3, 10)


def _job(**overrides) -> Job:
    fields = {"job_type": JobType.RISK_SCORE, "user_id": USER, "target_date": TODAY, "attempts": 2}
    fields.update(overrides)
    return Job(**fields)


class TestJobContext:
    def test_fields(self):
        job = _job()
        assert job_log_context(job) == {
            "job_id": job.id,
            "job_type": "risk_score",
            "user_id": USER,
            "target_date": "2026-03-10",
            "attempt": 2,
        }

    def test_bound_inside_and_cleared_after(self):
        structlog.contextvars.clear_contextvars()
        job = _job()

        with job_context(job):
            bound = structlog.contextvars.get_contextvars()

        assert bound["job_id"] == job.id
        assert bound["user_id"] == USER
        assert structlog.contextvars.get_contextvars() == {}

    def test_unbound_when_block_raises(self):
        structlog.contextvars.clear_contextvars()
        try:
            with job_context(_job()):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert structlog.contextvars.get_contextvars() == {}

    def test_worker_handlers_run_inside_job_context(self, storage):
        worker = Worker(storage, make_settings())
        seen = {}

        def handler(job, now):
            seen.update(structlog.contextvars.get_contextvars())
            return "done", {}

        worker.handlers[JobType.RISK_SCORE] = handler
        worker.queue.enqueue(JobType.RISK_SCORE, USER, TODAY, NOW)
        worker.run_batch(now=NOW)

        job = storage.read_jobs()[0]
        assert seen["job_id"] == job.id
        assert seen["job_type"] == "risk_score"
        assert seen["target_date"] == "2026-03-10"
        assert seen["attempt"] == 1
