"""
Storage contract used by the engine.

Every plan and installment read takes the caller's tenant id explicitly.
Tenant isolation itself is enforced below this layer; the engine never
trusts a record's tenant field without the filter already applied.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date, datetime

from ..models import Agency, Installment, JobRun, JobStatus, PaymentPlan


class LedgerSession(ABC):
    """Unit of work over plans and installments. Commits as a whole."""

    @abstractmethod
    def get_agency(self, tenant_id: str) -> Agency | None: ...

    @abstractmethod
    def get_plan(self, tenant_id: str, plan_id: str, for_update: bool = False) -> PaymentPlan | None: ...

    @abstractmethod
    def get_installment(
        self, tenant_id: str, installment_id: str, for_update: bool = False
    ) -> Installment | None: ...

    @abstractmethod
    def list_installments(self, tenant_id: str, plan_id: str) -> list[Installment]: ...

    @abstractmethod
    def find_overdue_candidates(self, tenant_id: str, as_of: date) -> list[Installment]:
        """Pending installments of active plans with student_due_date < as_of."""

    @abstractmethod
    def add_plan(self, plan: PaymentPlan, installments: list[Installment]) -> None: ...

    @abstractmethod
    def save_plan(self, plan: PaymentPlan) -> None: ...

    @abstractmethod
    def save_installment(self, installment: Installment) -> None: ...

    @abstractmethod
    def savepoint(self) -> AbstractContextManager:
        """Nested scope; an exception inside rolls back only this scope."""


class LedgerStore(ABC):
    """Entry point to storage: transactions, tenants and the job log."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[LedgerSession]: ...

    @abstractmethod
    def list_agencies(self) -> list[Agency]: ...

    @abstractmethod
    def add_agency(self, agency: Agency) -> None: ...

    # Job log (append-only; rows are only ever completed, never removed)

    @abstractmethod
    def start_job_run(self, run: JobRun) -> JobRun: ...

    @abstractmethod
    def finish_job_run(self, run: JobRun) -> JobRun: ...

    @abstractmethod
    def get_job_run(self, run_id: str) -> JobRun | None: ...

    @abstractmethod
    def list_job_runs(
        self,
        job_name: str,
        since: datetime | None = None,
        status: JobStatus | None = None,
        limit: int | None = None,
    ) -> list[JobRun]:
        """Runs for a job, newest first."""
