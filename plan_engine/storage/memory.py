"""
In-memory LedgerStore.

A single re-entrant lock is held for the length of each transaction, which
serializes concurrent writers the way row locks would. Writes are staged
and only become visible when the transaction exits cleanly.
"""

import copy
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime

from ..models import (
    Agency,
    Installment,
    InstallmentStatus,
    JobRun,
    JobStatus,
    PaymentPlan,
    PlanStatus,
)
from .base import LedgerSession, LedgerStore


class MemoryLedgerSession(LedgerSession):

    def __init__(self, store: "MemoryLedgerStore"):
        self._store = store
        self._plans: dict[str, PaymentPlan] = {}
        self._installments: dict[str, Installment] = {}

    def _plan(self, plan_id: str) -> PaymentPlan | None:
        return self._plans.get(plan_id) or self._store.plans.get(plan_id)

    def _installment(self, installment_id: str) -> Installment | None:
        return self._installments.get(installment_id) or self._store.installments.get(installment_id)

    def _all_installments(self) -> list[Installment]:
        merged = {**self._store.installments, **self._installments}
        return list(merged.values())

    def get_agency(self, tenant_id: str) -> Agency | None:
        agency = self._store.agencies.get(tenant_id)
        return replace(agency) if agency else None

    def get_plan(self, tenant_id: str, plan_id: str, for_update: bool = False) -> PaymentPlan | None:
        plan = self._plan(plan_id)
        if plan is None or plan.tenant_id != tenant_id:
            return None
        return replace(plan)

    def get_installment(
        self, tenant_id: str, installment_id: str, for_update: bool = False
    ) -> Installment | None:
        installment = self._installment(installment_id)
        if installment is None or installment.tenant_id != tenant_id:
            return None
        return replace(installment)

    def list_installments(self, tenant_id: str, plan_id: str) -> list[Installment]:
        rows = [
            replace(inst)
            for inst in self._all_installments()
            if inst.tenant_id == tenant_id and inst.plan_id == plan_id
        ]
        return sorted(rows, key=lambda inst: inst.sequence)

    def find_overdue_candidates(self, tenant_id: str, as_of: date) -> list[Installment]:
        rows = []
        for inst in self._all_installments():
            if inst.tenant_id != tenant_id or inst.status != InstallmentStatus.PENDING:
                continue
            if inst.student_due_date is None or not inst.student_due_date < as_of:
                continue
            plan = self._plan(inst.plan_id)
            if plan is None or plan.tenant_id != tenant_id or plan.status != PlanStatus.ACTIVE:
                continue
            rows.append(replace(inst))
        return sorted(rows, key=lambda inst: (inst.student_due_date, inst.sequence))

    def add_plan(self, plan: PaymentPlan, installments: list[Installment]) -> None:
        if self._plan(plan.id) is not None:
            raise ValueError(f"payment plan {plan.id} already exists")
        self._plans[plan.id] = replace(plan)
        for inst in installments:
            self._installments[inst.id] = replace(inst)

    def save_plan(self, plan: PaymentPlan) -> None:
        if self._plan(plan.id) is None:
            raise LookupError(f"payment plan {plan.id} does not exist")
        self._plans[plan.id] = replace(plan)

    def save_installment(self, installment: Installment) -> None:
        if self._installment(installment.id) is None:
            raise LookupError(f"installment {installment.id} does not exist")
        self._installments[installment.id] = replace(installment)

    @contextmanager
    def savepoint(self):
        plans, installments = dict(self._plans), dict(self._installments)
        try:
            yield self
        except BaseException:
            self._plans, self._installments = plans, installments
            raise

    def commit(self) -> None:
        self._store.plans.update(self._plans)
        self._store.installments.update(self._installments)


class MemoryLedgerStore(LedgerStore):
    """Thread-safe store kept entirely in process memory."""

    def __init__(self):
        self._lock = threading.RLock()
        self.agencies: dict[str, Agency] = {}
        self.plans: dict[str, PaymentPlan] = {}
        self.installments: dict[str, Installment] = {}
        self.job_runs: dict[str, JobRun] = {}

    @contextmanager
    def transaction(self):
        with self._lock:
            session = MemoryLedgerSession(self)
            yield session
            session.commit()

    def list_agencies(self) -> list[Agency]:
        with self._lock:
            return [replace(agency) for agency in self.agencies.values()]

    def add_agency(self, agency: Agency) -> None:
        with self._lock:
            self.agencies[agency.id] = replace(agency)

    def start_job_run(self, run: JobRun) -> JobRun:
        with self._lock:
            if run.id in self.job_runs:
                raise ValueError(f"job run {run.id} already exists")
            self.job_runs[run.id] = copy.deepcopy(run)
            return copy.deepcopy(run)

    def finish_job_run(self, run: JobRun) -> JobRun:
        with self._lock:
            if run.id not in self.job_runs:
                raise LookupError(f"job run {run.id} does not exist")
            self.job_runs[run.id] = copy.deepcopy(run)
            return copy.deepcopy(run)

    def get_job_run(self, run_id: str) -> JobRun | None:
        with self._lock:
            run = self.job_runs.get(run_id)
            return copy.deepcopy(run) if run else None

    def list_job_runs(
        self,
        job_name: str,
        since: datetime | None = None,
        status: JobStatus | None = None,
        limit: int | None = None,
    ) -> list[JobRun]:
        with self._lock:
            runs = [
                copy.deepcopy(run)
                for run in self.job_runs.values()
                if run.job_name == job_name
                and (since is None or run.started_at >= since)
                and (status is None or run.status == status)
            ]
        runs.sort(key=lambda run: run.started_at, reverse=True)
        return runs[:limit] if limit is not None else runs
