"""
Unit tests for the worker: job lifecycle, handler routing and outcomes.
"""

from datetime import date, datetime, timedelta

import pytest

from riskcast.engine.baseline.evaluator import BaselineEvaluator
from riskcast.engine.worker import Worker
from riskcast.models.definitions import MetricReference
from riskcast.models.enums import JobStatus, JobType, Severity, ValueKind
from tests.conftest import USER, make_definition, make_event, make_settings, seed_scoring, seed_series

NOW = datetime(2026, 3, 10, 9, 5)
YESTERDAY = date(2026, 3, 9)
TODAY = date(2026, 3, 10)
SLEEP = MetricReference(table="sleep_daily", column="total_hours")
STEPS = MetricReference(table="activity_daily", column="steps")


class ExplodingEvaluator(BaselineEvaluator):
    def evaluate(self, user_id, target_date, local_hour):
        raise RuntimeError("metric store timeout")


@pytest.fixture
def worker(storage):
    return Worker(storage, make_settings())


@pytest.fixture
def sleepy_user(storage):
    storage.write_definition(make_definition(default_threshold=6))
    seed_series(storage, SLEEP, YESTERDAY, [5.0])
    seed_scoring(storage, severities={"Short sleep": Severity.HIGH})


def _only(summary):
    assert len(summary.results) == 1
    return summary.results[0]


class TestTriggerJobs:
    def test_trigger_job_writes_event_and_completes(self, worker, storage, sleepy_user):
        worker.queue.enqueue(JobType.TRIGGER_DAILY, USER, YESTERDAY, NOW, timezone="UTC")

        summary = worker.run_batch(now=NOW, job_types=[JobType.TRIGGER_DAILY])

        assert (summary.picked, summary.done, summary.errors) == (1, 1, 0)
        line = _only(summary)
        assert line.status == "done"
        assert line.detail["events_created"] == 1

        job = storage.read_jobs(job_type=JobType.TRIGGER_DAILY)[0]
        assert job.status == JobStatus.DONE
        assert job.result_status == "done"
        assert len(storage.read_events(USER, YESTERDAY, TODAY)) == 1

    def test_trigger_job_requeues_todays_risk_score(self, worker, storage, sleepy_user):
        worker.queue.enqueue(JobType.TRIGGER_DAILY, USER, YESTERDAY, NOW, timezone="UTC")
        worker.run_batch(now=NOW)

        score_jobs = storage.read_jobs(job_type=JobType.RISK_SCORE)
        assert len(score_jobs) == 1
        assert score_jobs[0].target_date == TODAY
        assert score_jobs[0].status == JobStatus.QUEUED

    def test_finished_risk_score_reset_by_new_trigger_run(self, worker, storage, sleepy_user):
        worker.queue.enqueue(JobType.RISK_SCORE, USER, TODAY, NOW, timezone="UTC")
        worker.run_batch(now=NOW)
        assert storage.read_live_snapshot(USER).score == 0

        worker.queue.enqueue(JobType.TRIGGER_DAILY, USER, YESTERDAY, NOW, timezone="UTC")
        worker.run_batch(now=NOW + timedelta(minutes=1), job_types=[JobType.TRIGGER_DAILY])
        assert storage.read_jobs(job_type=JobType.RISK_SCORE)[0].status == JobStatus.QUEUED

        worker.run_batch(now=NOW + timedelta(minutes=2), job_types=[JobType.RISK_SCORE])
        assert storage.read_live_snapshot(USER).score == 5

    def test_trigger_run_does_not_revive_errored_risk_score(self, worker, storage, sleepy_user):
        worker.queue.enqueue(JobType.RISK_SCORE, USER, TODAY, NOW, timezone="UTC")
        for attempt in range(3):
            now = NOW + timedelta(minutes=attempt)
            leased = worker.queue.lease(worker.queue.pick(now, 10)[0], now)
            worker.queue.fail(leased, "scorer crashed", now)

        worker.queue.enqueue(JobType.TRIGGER_DAILY, USER, YESTERDAY, NOW, timezone="UTC")
        summary = worker.run_batch(now=NOW + timedelta(minutes=5), job_types=[JobType.TRIGGER_DAILY])

        assert _only(summary).status == "done"
        score_job = storage.read_jobs(job_type=JobType.RISK_SCORE)[0]
        assert score_job.status == JobStatus.ERROR
        assert score_job.attempts == 3

    def test_missing_definitions_completes_benignly(self, worker, storage):
        worker.queue.enqueue(JobType.TRIGGER_DAILY, "nobody", YESTERDAY, NOW)

        line = _only(worker.run_batch(now=NOW))

        assert line.status == "done_no_definitions"
        job = storage.read_jobs()[0]
        assert job.status == JobStatus.DONE
        assert job.result_status == "done_no_definitions"
        assert job.attempts == 1

    def test_job_without_timezone_judged_at_end_of_day(self, worker, storage):
        storage.write_definition(
            make_definition(label="Low steps", table="activity_daily", column="steps",
                            value_kind=ValueKind.CUMULATIVE, default_threshold=5000, unit="count")
        )
        seed_series(storage, STEPS, TODAY, [1200])
        worker.queue.enqueue(JobType.TRIGGER_INTRADAY, USER, TODAY, NOW)

        line = _only(worker.run_batch(now=NOW))
        assert line.detail["local_hour"] == 23
        assert line.detail["fired"] == 1

    def test_cumulative_low_gated_by_job_timezone(self, worker, storage):
        storage.write_definition(
            make_definition(label="Low steps", table="activity_daily", column="steps",
                            value_kind=ValueKind.CUMULATIVE, default_threshold=5000, unit="count")
        )
        seed_series(storage, STEPS, TODAY, [1200])
        worker.queue.enqueue(JobType.TRIGGER_INTRADAY, USER, TODAY, NOW, timezone="UTC")

        line = _only(worker.run_batch(now=NOW))
        assert line.detail["local_hour"] == 9
        assert line.detail["fired"] == 0
        assert storage.read_events(USER, TODAY, date(2026, 3, 11)) == []


class TestRetries:
    def test_failure_retries_then_errors(self, storage, sleepy_user):
        settings = make_settings()
        worker = Worker(storage, settings, evaluator=ExplodingEvaluator(storage, settings))
        worker.queue.enqueue(JobType.TRIGGER_DAILY, USER, YESTERDAY, NOW)

        statuses = []
        for attempt in range(3):
            summary = worker.run_batch(now=NOW + timedelta(minutes=attempt))
            statuses.append(_only(summary).status)

        assert statuses == ["retry", "retry", "error"]
        assert summary.errors == 1
        job = storage.read_jobs()[0]
        assert job.status == JobStatus.ERROR
        assert "metric store timeout" in job.last_error
        assert worker.run_batch(now=NOW + timedelta(hours=1)).picked == 0

    def test_terminal_failure_counts_as_error(self, storage, sleepy_user):
        settings = make_settings(max_attempts=1)
        worker = Worker(storage, settings, evaluator=ExplodingEvaluator(storage, settings))
        worker.queue.enqueue(JobType.TRIGGER_DAILY, USER, YESTERDAY, NOW)

        summary = worker.run_batch(now=NOW)
        assert (summary.done, summary.errors, summary.skipped) == (0, 1, 0)

    def test_all_groups_failing_is_retried(self, worker, storage):
        storage.write_definition(make_definition(label="Ghost", table="never_written", column="value"))
        worker.queue.enqueue(JobType.TRIGGER_DAILY, USER, YESTERDAY, NOW)

        line = _only(worker.run_batch(now=NOW))
        assert line.status == "retry"
        assert storage.read_jobs()[0].status == JobStatus.QUEUED

    def test_one_failing_job_does_not_stop_batch(self, storage, sleepy_user):
        settings = make_settings()
        worker = Worker(storage, settings, evaluator=ExplodingEvaluator(storage, settings))
        worker.queue.enqueue(JobType.TRIGGER_DAILY, USER, YESTERDAY, NOW)
        worker.queue.enqueue(JobType.RISK_SCORE, USER, TODAY, NOW)

        summary = worker.run_batch(now=NOW)
        statuses = {line.job_type: line.status for line in summary.results}
        assert statuses == {JobType.TRIGGER_DAILY: "retry", JobType.RISK_SCORE: "done"}


class TestLeasing:
    def test_stale_exhausted_job_expired(self, worker, storage):
        worker.queue.enqueue(JobType.RISK_SCORE, USER, TODAY, NOW)
        for _ in range(2):
            leased = worker.queue.lease(worker.queue.pick(NOW, 10)[0], NOW)
            worker.queue.fail(leased, "crash", NOW)
        worker.queue.lease(worker.queue.pick(NOW, 10)[0], NOW)

        summary = worker.run_batch(now=NOW + timedelta(minutes=11))

        assert _only(summary).status == "expired"
        assert summary.errors == 1
        assert storage.read_jobs()[0].status == JobStatus.ERROR

    def test_lease_taken_elsewhere_is_skipped(self, worker, storage):
        worker.queue.enqueue(JobType.RISK_SCORE, USER, TODAY, NOW)
        picked = worker.queue.pick(NOW, 10)[0]
        worker.queue.lease(picked, NOW)

        outcome = worker.run_job(picked, NOW)
        assert outcome.status == "lease_not_acquired"

    def test_stale_running_job_reclaimed_and_finished(self, worker, storage, sleepy_user):
        worker.queue.enqueue(JobType.RISK_SCORE, USER, TODAY, NOW)
        worker.queue.lease(worker.queue.pick(NOW, 10)[0], NOW)

        summary = worker.run_batch(now=NOW + timedelta(minutes=11))

        assert _only(summary).status == "done"
        job = storage.read_jobs()[0]
        assert job.status == JobStatus.DONE
        assert job.attempts == 2

    def test_empty_queue(self, worker):
        summary = worker.run_batch(now=NOW)
        assert (summary.picked, summary.done, summary.errors, summary.skipped) == (0, 0, 0, 0)


class TestRiskScoreJobs:
    def test_risk_score_job_writes_snapshots(self, worker, storage, sleepy_user):
        storage.insert_event(make_event("Short sleep", TODAY))
        worker.queue.enqueue(JobType.RISK_SCORE, USER, TODAY, NOW)

        line = _only(worker.run_batch(now=NOW))

        assert line.status == "done"
        assert line.detail["score"] == 10
        assert line.detail["forecast"][0] == 69
        assert storage.read_live_snapshot(USER).score == 10
        assert [s.date for s in storage.read_daily_snapshots(USER)] == [TODAY]

    def test_risk_score_without_config(self, worker, storage):
        worker.queue.enqueue(JobType.RISK_SCORE, USER, TODAY, NOW)

        line = _only(worker.run_batch(now=NOW))
        assert line.status == "done_no_config"
        assert storage.read_live_snapshot(USER) is None


class TestStressIndexJobs:
    def test_missing_inputs_completes_as_skipped(self, worker, storage):
        worker.queue.enqueue(JobType.STRESS_INDEX, USER, YESTERDAY, NOW)

        line = _only(worker.run_batch(now=NOW))
        assert line.status == "done_skipped_missing_inputs"
        assert storage.read_jobs()[0].status == JobStatus.DONE
