"""
Job Monitor

Reads the job log to report health (missed executions), stuck runs and
execution metrics for the overdue status job.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict

from ..clock import utc_now
from ..config import Config
from ..errors import NotFoundError
from ..models import JobRun, JobStatus
from ..output import OutputBuilder
from ..storage import LedgerStore
from .overdue import JOB_NAME

logger = logging.getLogger(__name__)


class JobMonitor:
    """Health checks and metrics over the JobRun log."""

    def __init__(
        self,
        store: LedgerStore,
        job_name: str = JOB_NAME,
        clock: Callable[[], datetime] = utc_now,
        stuck_after: timedelta = timedelta(seconds=Config.JOB_STUCK_AFTER_SECONDS),
        healthy_hours: float = Config.JOB_HEALTHY_HOURS,
        alert_threshold_hours: float = Config.JOB_ALERT_THRESHOLD_HOURS,
    ):
        self.store = store
        self.job_name = job_name
        self.clock = clock
        self.stuck_after = stuck_after
        self.healthy_hours = healthy_hours
        self.alert_threshold_hours = alert_threshold_hours
        self.output_builder = OutputBuilder()

    def check_health(self) -> Dict[str, Any]:
        """
        Detect missed executions.

        healthy:  last run within 24 hours
        warning:  within the 25 hour alert threshold
        critical: beyond the threshold, or never run
        """
        now = self.clock()
        runs = self.store.list_job_runs(self.job_name, limit=1)
        last_run = runs[0] if runs else None

        if last_run is None:
            hours = None
            status = "critical"
            message = "Job has never run"
        else:
            hours = (now - last_run.started_at).total_seconds() / 3600
            if hours <= self.healthy_hours:
                status, message = "healthy", "Job running normally"
            elif hours <= self.alert_threshold_hours:
                status, message = "warning", "Job slightly delayed but within tolerance"
            else:
                status = "critical"
                message = f"Job has not run in {round(hours)} hours - missed execution detected"

        if status == "critical":
            logger.warning(f"ALERT: {self.job_name} missed execution: {message}")

        return {
            "ok": status != "critical",
            "job_name": self.job_name,
            "last_run": last_run.started_at.isoformat() if last_run else None,
            "last_status": last_run.status.value if last_run else None,
            "hours_since_last_run": round(hours, 1) if hours is not None else None,
            "status": status,
            "message": message,
            "stuck_runs": [run.id for run in self.find_stuck_runs()],
        }

    def find_stuck_runs(self) -> list[JobRun]:
        """Runs still marked running after the expected duration."""
        now = self.clock()
        running = self.store.list_job_runs(self.job_name, status=JobStatus.RUNNING)
        return [run for run in running if now - run.started_at >= self.stuck_after]

    def mark_failed(self, run_id: str, reason: str = "Marked failed after being stuck in running") -> JobRun:
        """Manually resolve a stuck run so the job can be re-triggered."""
        run = self.store.get_job_run(run_id)
        if run is None:
            raise NotFoundError(f"Job run {run_id} not found")
        if run.status != JobStatus.RUNNING:
            raise ValueError(f"Job run {run_id} is {run.status.value}, not running")

        run = replace(
            run,
            status=JobStatus.FAILED,
            completed_at=self.clock(),
            error_message=reason,
            metadata={**run.metadata, "resolved_manually": True},
        )
        self.store.finish_job_run(run)
        logger.warning(f"Job run {run_id} marked failed: {reason}")
        return run

    def metrics(self, days: int = 30, limit: int = 10) -> Dict[str, Any]:
        """Execution statistics for the last `days` days."""
        end = self.clock()
        start = end - timedelta(days=days)
        runs = self.store.list_job_runs(self.job_name, since=start)

        successful = [run for run in runs if run.status == JobStatus.SUCCESS]
        failed = [run for run in runs if run.status == JobStatus.FAILED]
        durations = [run.duration_seconds for run in successful if run.duration_seconds is not None]

        return {
            "job_name": self.job_name,
            "time_range": {"start": start.isoformat(), "end": end.isoformat(), "days": days},
            "summary": {
                "total_runs": len(runs),
                "successful_runs": len(successful),
                "failed_runs": len(failed),
                "success_rate": round(len(successful) / len(runs) * 100, 2) if runs else 0.0,
                "total_records_updated": sum(run.records_updated for run in runs),
            },
            "performance": {
                "avg_duration_seconds": round(sum(durations) / len(durations), 2) if durations else 0.0,
                "min_duration_seconds": min(durations) if durations else 0.0,
                "max_duration_seconds": max(durations) if durations else 0.0,
            },
            "recent_executions": [self.output_builder.job_run(run) for run in runs[:limit]],
        }
