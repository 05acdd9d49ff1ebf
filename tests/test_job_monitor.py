"""Tests for job health checks, stuck run handling and metrics."""

from datetime import datetime, timedelta, timezone

import pytest

from plan_engine.errors import NotFoundError
from plan_engine.jobs import JOB_NAME, JobMonitor
from plan_engine.models import JobRun, JobStatus

NOW = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)


def log_run(store, hours_ago, status=JobStatus.SUCCESS, duration=30, records=0):
    started = NOW - timedelta(hours=hours_ago)
    run = JobRun(job_name=JOB_NAME, started_at=started)
    store.start_job_run(run)
    if status != JobStatus.RUNNING:
        run.status = status
        run.completed_at = started + timedelta(seconds=duration)
        run.records_updated = records
        store.finish_job_run(run)
    return run


@pytest.fixture
def monitor(store):
    return JobMonitor(store, clock=lambda: NOW)


class TestHealth:

    def test_never_run_is_critical(self, monitor):
        result = monitor.check_health()
        assert result["status"] == "critical"
        assert result["ok"] is False
        assert result["last_run"] is None

    def test_recent_run_is_healthy(self, monitor, store):
        log_run(store, hours_ago=3)
        result = monitor.check_health()
        assert result["status"] == "healthy"
        assert result["hours_since_last_run"] == 3.0
        assert result["last_status"] == "success"

    def test_within_alert_threshold_is_warning(self, monitor, store):
        log_run(store, hours_ago=24.5)
        assert monitor.check_health()["status"] == "warning"

    def test_missed_execution_is_critical(self, monitor, store):
        log_run(store, hours_ago=30)
        result = monitor.check_health()
        assert result["status"] == "critical"
        assert "missed execution" in result["message"]


class TestStuckRuns:

    def test_finds_only_old_running_rows(self, monitor, store):
        stuck = log_run(store, hours_ago=1, status=JobStatus.RUNNING)
        log_run(store, hours_ago=0.01, status=JobStatus.RUNNING)
        log_run(store, hours_ago=2)

        assert [run.id for run in monitor.find_stuck_runs()] == [stuck.id]
        assert monitor.check_health()["stuck_runs"] == [stuck.id]

    def test_mark_failed(self, monitor, store):
        stuck = log_run(store, hours_ago=1, status=JobStatus.RUNNING)

        run = monitor.mark_failed(stuck.id)

        stored = store.get_job_run(stuck.id)
        assert run.status == stored.status == JobStatus.FAILED
        assert stored.completed_at == NOW
        assert stored.metadata["resolved_manually"] is True
        assert monitor.find_stuck_runs() == []

    def test_mark_failed_unknown_run(self, monitor):
        with pytest.raises(NotFoundError):
            monitor.mark_failed("missing")

    def test_mark_failed_rejects_finished_run(self, monitor, store):
        run = log_run(store, hours_ago=1)
        with pytest.raises(ValueError):
            monitor.mark_failed(run.id)


class TestMetrics:

    def test_summary_and_performance(self, monitor, store):
        log_run(store, hours_ago=48, duration=10, records=4)
        log_run(store, hours_ago=24, duration=30, records=2)
        log_run(store, hours_ago=1, status=JobStatus.FAILED, duration=5)
        log_run(store, hours_ago=24 * 40)  # outside the window

        metrics = monitor.metrics(days=30)

        assert metrics["summary"] == {
            "total_runs": 3,
            "successful_runs": 2,
            "failed_runs": 1,
            "success_rate": 66.67,
            "total_records_updated": 6,
        }
        assert metrics["performance"] == {
            "avg_duration_seconds": 20.0,
            "min_duration_seconds": 10.0,
            "max_duration_seconds": 30.0,
        }
        assert metrics["recent_executions"][0]["status"] == "failed"

    def test_no_runs(self, monitor):
        metrics = monitor.metrics()
        assert metrics["summary"]["total_runs"] == 0
        assert metrics["summary"]["success_rate"] == 0.0
