"""
Overdue Status Job

Daily sweep that moves pending installments to overdue once their student
due date has passed, per agency, on the agency's own clock. Each execution
is logged as one JobRun row.

The sweep is idempotent: it only ever moves pending -> overdue for rows
already past due, so a retried or duplicated run changes nothing beyond the
first successful pass.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from ..clock import agency_now, utc_now
from ..config import Config
from ..errors import FatalJobFailure, PartialTenantFailure, TransientStorageError
from ..events import EventSink, LoggingEventSink, installment_overdue
from ..ledger import InstallmentLedger
from ..models import Agency, AgencyResult, InstallmentUpdate, JobRun, JobStatus, JobSummary, NoOp
from ..output import OutputBuilder
from ..storage import LedgerStore

logger = logging.getLogger(__name__)

JOB_NAME = "update-installment-statuses"


class OverdueStatusJob:
    """Tenant-aware pending -> overdue sweep."""

    def __init__(
        self,
        store: LedgerStore,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = utc_now,
        ledger: InstallmentLedger | None = None,
        max_workers: int = Config.JOB_MAX_WORKERS,
        max_retries: int = Config.JOB_MAX_RETRIES,
        retry_initial_delay: float = Config.JOB_RETRY_INITIAL_DELAY,
        stuck_after: timedelta = timedelta(seconds=Config.JOB_STUCK_AFTER_SECONDS),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.events = events or LoggingEventSink()
        self.clock = clock
        self.ledger = ledger or InstallmentLedger()
        self.max_workers = max(1, max_workers)
        self.max_retries = max_retries
        self.retry_initial_delay = retry_initial_delay
        self.stuck_after = stuck_after
        self.sleep = sleep
        self.output_builder = OutputBuilder()

    def run(self, trigger: str = "scheduled", force: bool = False) -> JobSummary:
        """
        Execute one sweep over all agencies.

        Returns a `skipped` summary without logging a run when another run
        is still in progress, or when a manual trigger finds that today's
        run already succeeded (pass force=True to sweep anyway).
        """
        started_at = self.clock().astimezone(timezone.utc)

        skip_reason = self._skip_reason(trigger, force, started_at)
        if skip_reason:
            logger.info(f"Skipping {JOB_NAME}: {skip_reason}")
            return JobSummary(status="skipped", message=skip_reason)

        try:
            run = self.store.start_job_run(
                JobRun(job_name=JOB_NAME, started_at=started_at, metadata={"trigger": trigger})
            )
        except Exception as e:
            logger.error(f"Failed to start job logging: {str(e)}", exc_info=True)
            raise FatalJobFailure(f"Failed to start job logging: {e}") from e

        logger.info(f"Job {JOB_NAME} started (run {run.id}, trigger={trigger})")

        try:
            agencies = self._with_retry(self.store.list_agencies)
            results = self._sweep_all(agencies, started_at)
        except Exception as e:
            logger.error(f"Job {JOB_NAME} failed: {str(e)}", exc_info=True)
            self._mark_failed(run, e)
            raise FatalJobFailure(str(e), job_run_id=run.id) from e

        return self._complete(run, results)

    # -------------------------------------------------------------------------
    # Run guards
    # -------------------------------------------------------------------------

    def _skip_reason(self, trigger: str, force: bool, now: datetime) -> str | None:
        try:
            running = self.store.list_job_runs(JOB_NAME, status=JobStatus.RUNNING)
            active = [r for r in running if now - r.started_at < self.stuck_after]
            if active:
                return f"run {active[0].id} is still in progress (started {active[0].started_at.isoformat()})"

            if trigger == "manual" and not force:
                midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
                done = self.store.list_job_runs(JOB_NAME, since=midnight, status=JobStatus.SUCCESS, limit=1)
                if done:
                    return f"run {done[0].id} already completed successfully today"
        except Exception as e:
            logger.error(f"Failed to read job log: {str(e)}", exc_info=True)
            raise FatalJobFailure(f"Failed to read job log: {e}") from e
        return None

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    def _sweep_all(self, agencies: list[Agency], now: datetime) -> list[AgencyResult]:
        if not agencies:
            return []
        workers = min(self.max_workers, len(agencies))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="overdue-sweep") as pool:
            return list(pool.map(lambda agency: self._process_agency(agency, now), agencies))

    def _process_agency(self, agency: Agency, now: datetime) -> AgencyResult:
        """Sweep one agency. Never raises: failures are returned as results."""
        try:
            local_now = agency_now(agency, now)
            if local_now.time() < agency.cutoff_time:
                logger.debug(
                    f"Agency {agency.id}: local time {local_now.time():%H:%M} "
                    f"is before cutoff {agency.cutoff_time:%H:%M}"
                )
                return AgencyResult(
                    agency_id=agency.id,
                    status="skipped",
                    local_date=local_now.date(),
                    skipped_reason=f"before cutoff {agency.cutoff_time:%H:%M}",
                )
            return self._with_retry(lambda: self._sweep_agency(agency, local_now.date()))
        except Exception as e:
            failure = PartialTenantFailure(agency.id, type(e).__name__, str(e))
            logger.error(f"Overdue sweep failed for {failure}", exc_info=True)
            return AgencyResult(agency_id=agency.id, status="failed", errors=[str(failure)])

    def _sweep_agency(self, agency: Agency, local_today: date) -> AgencyResult:
        result = AgencyResult(agency_id=agency.id, local_date=local_today)
        transitions: list[InstallmentUpdate] = []

        with self.store.transaction() as session:
            for installment in session.find_overdue_candidates(agency.id, local_today):
                try:
                    with session.savepoint():
                        outcome = self.ledger.transition_to_overdue(installment, local_today)
                        if isinstance(outcome, NoOp):
                            continue
                        session.save_installment(outcome.after)
                except TransientStorageError:
                    raise
                except Exception as e:
                    logger.error(
                        f"Agency {agency.id}: could not mark installment {installment.id} overdue: {str(e)}",
                        exc_info=True,
                    )
                    result.errors.append(f"installment {installment.id}: {e}")
                    continue
                transitions.append(outcome)

        result.updated_count = len(transitions)
        result.overdue_ids = [update.after.id for update in transitions]
        logger.info(f"Agency {agency.id}: {result.updated_count} installments marked overdue")

        for update in transitions:
            self.events.publish(installment_overdue(update))
        return result

    def _with_retry(self, fn):
        """Call fn, retrying transient storage errors with exponential backoff."""
        delay = self.retry_initial_delay
        for attempt in range(self.max_retries + 1):
            try:
                return fn()
            except TransientStorageError as e:
                if attempt >= self.max_retries:
                    raise
                logger.warning(f"Retry {attempt + 1}/{self.max_retries} after {delay}s: {str(e)}")
                self.sleep(delay)
                delay *= 2

    # -------------------------------------------------------------------------
    # Job log
    # -------------------------------------------------------------------------

    def _complete(self, run: JobRun, results: list[AgencyResult]) -> JobSummary:
        failed = [r for r in results if r.status == "failed"]
        errors = [error for r in results for error in r.errors]
        records_updated = sum(r.updated_count for r in results)

        run = replace(
            run,
            completed_at=self.clock().astimezone(timezone.utc),
            status=JobStatus.FAILED if failed else JobStatus.SUCCESS,
            records_updated=records_updated,
            error_message="; ".join(errors) or None,
            metadata={
                **run.metadata,
                "agencies": [self.output_builder.agency_result(r) for r in results],
                "total_agencies_processed": len(results),
                "agencies_failed": len(failed),
            },
        )
        try:
            self.store.finish_job_run(run)
        except Exception as e:
            logger.error(f"Failed to complete job log for run {run.id}: {str(e)}", exc_info=True)
            raise FatalJobFailure(f"Failed to complete job log: {e}", job_run_id=run.id) from e

        logger.info(
            f"Job {JOB_NAME} finished with status {run.status.value}: "
            f"{records_updated} records updated across {len(results)} agencies"
        )
        return JobSummary(
            status=run.status.value,
            records_updated=records_updated,
            tenants_processed=len(results),
            tenants_failed=len(failed),
            errors=errors,
            job_run_id=run.id,
            agencies=results,
        )

    def _mark_failed(self, run: JobRun, error: Exception) -> None:
        run = replace(
            run,
            completed_at=self.clock().astimezone(timezone.utc),
            status=JobStatus.FAILED,
            error_message=str(error),
            metadata={**run.metadata, "error_type": type(error).__name__},
        )
        try:
            self.store.finish_job_run(run)
        except Exception as e:
            # The row stays `running` and is reported as stuck by the monitor
            logger.error(f"Failed to mark run {run.id} as failed: {str(e)}", exc_info=True)
