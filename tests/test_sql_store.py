"""
Tests for the SQLAlchemy store.

Runs against in-memory SQLite. The processor and job run unchanged on top
of it, so these double as integration tests for the SQL mapping.
"""

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

import pytest

from plan_engine.jobs import JOB_NAME, OverdueStatusJob
from plan_engine.models import InstallmentStatus, JobRun, JobStatus, PaymentRequest, PlanStatus
from plan_engine.processor import PaymentProcessor
from plan_engine.storage import SqlLedgerStore

from conftest import AFTER_CUTOFF, make_installment, make_plan, seed_plan


@pytest.fixture
def sql_store(agency):
    store = SqlLedgerStore.from_url("sqlite://", create_tables=True)
    store.add_agency(agency)
    return store


@pytest.fixture
def sql_plan(sql_store):
    installments = [
        make_installment("inst-1", sequence=1, due=date(2025, 3, 9)),
        make_installment("inst-2", sequence=2, due=date(2025, 4, 9)),
    ]
    return seed_plan(sql_store, make_plan(), installments)


class TestSqlLedgerStore:

    def test_agency_round_trip(self, sql_store, agency):
        assert sql_store.list_agencies() == [agency]

    def test_plan_and_installments_are_stored(self, sql_store, sql_plan):
        with sql_store.transaction() as session:
            plan = session.get_plan("agency-a", "plan-1")
            installments = session.list_installments("agency-a", "plan-1")

        assert plan.expected_commission == Decimal('300.00')
        assert plan.status == PlanStatus.ACTIVE
        assert [inst.id for inst in installments] == ["inst-1", "inst-2"]
        assert installments[0].amount == Decimal('1000.00')

    def test_reads_are_tenant_scoped(self, sql_store, sql_plan):
        with sql_store.transaction() as session:
            assert session.get_plan("agency-b", "plan-1") is None
            assert session.get_installment("agency-b", "inst-1") is None
            assert session.list_installments("agency-b", "plan-1") == []

    def test_overdue_candidates(self, sql_store, sql_plan):
        with sql_store.transaction() as session:
            candidates = session.find_overdue_candidates("agency-a", date(2025, 3, 10))
        assert [inst.id for inst in candidates] == ["inst-1"]

    def test_failed_transaction_rolls_back(self, sql_store, sql_plan):
        with pytest.raises(RuntimeError):
            with sql_store.transaction() as session:
                installment = session.get_installment("agency-a", "inst-1", for_update=True)
                installment.status = InstallmentStatus.CANCELLED
                session.save_installment(installment)
                raise RuntimeError("abort")

        with sql_store.transaction() as session:
            assert session.get_installment("agency-a", "inst-1").status == InstallmentStatus.PENDING

    def test_savepoint_discards_only_inner_write(self, sql_store, sql_plan):
        with sql_store.transaction() as session:
            first = session.get_installment("agency-a", "inst-1")
            first.status = InstallmentStatus.OVERDUE
            session.save_installment(first)

            with pytest.raises(RuntimeError):
                with session.savepoint():
                    second = session.get_installment("agency-a", "inst-2")
                    second.status = InstallmentStatus.CANCELLED
                    session.save_installment(second)
                    raise RuntimeError("row failed")

        with sql_store.transaction() as session:
            assert session.get_installment("agency-a", "inst-1").status == InstallmentStatus.OVERDUE
            assert session.get_installment("agency-a", "inst-2").status == InstallmentStatus.PENDING

    def test_job_runs(self, sql_store):
        older = JobRun(job_name=JOB_NAME, started_at=AFTER_CUTOFF - timedelta(hours=1))
        newer = JobRun(job_name=JOB_NAME, started_at=AFTER_CUTOFF, metadata={"trigger": "manual"})
        sql_store.start_job_run(older)
        sql_store.start_job_run(newer)

        older.status = JobStatus.SUCCESS
        older.completed_at = AFTER_CUTOFF - timedelta(minutes=59)
        sql_store.finish_job_run(older)

        runs = sql_store.list_job_runs(JOB_NAME)
        assert [run.id for run in runs] == [newer.id, older.id]
        assert runs[0].started_at == AFTER_CUTOFF
        assert runs[0].metadata == {"trigger": "manual"}
        assert [run.id for run in sql_store.list_job_runs(JOB_NAME, status=JobStatus.RUNNING)] == [newer.id]
        assert sql_store.get_job_run(older.id).duration_seconds == 60.0


class TestSqlIntegration:

    def test_payment_and_sweep(self, sql_store, sql_plan):
        processor = PaymentProcessor(sql_store, clock=lambda: AFTER_CUTOFF)
        job = OverdueStatusJob(sql_store, clock=lambda: AFTER_CUTOFF, max_workers=1)

        summary = job.run()
        assert summary.status == "success"
        assert summary.records_updated == 1

        result = processor.record_payment(
            "agency-a", "inst-1", PaymentRequest(paid_date=date(2025, 3, 10), paid_amount=Decimal('1000'))
        )
        assert result.installment.before.status == InstallmentStatus.OVERDUE
        assert result.installment.after.status == InstallmentStatus.PAID

        with sql_store.transaction() as session:
            plan = session.get_plan("agency-a", "plan-1")
        assert plan.earned_commission == Decimal('150.00')
        assert sql_store.get_job_run(summary.job_run_id).status == JobStatus.SUCCESS

    def test_parallel_sweep_over_many_agencies(self, agency):
        store = SqlLedgerStore.from_url("sqlite://", create_tables=True)
        agency_ids = [f"agency-{n:02d}" for n in range(12)]
        for agency_id in agency_ids:
            store.add_agency(replace(agency, id=agency_id))
            installments = [
                make_installment(
                    f"{agency_id}-inst-{seq}",
                    plan_id=f"{agency_id}-plan",
                    tenant_id=agency_id,
                    sequence=seq,
                    amount="400",
                    due=date(2025, 3, seq),
                )
                for seq in range(1, 6)
            ]
            seed_plan(store, make_plan(f"{agency_id}-plan", tenant_id=agency_id), installments)

        summary = OverdueStatusJob(store, clock=lambda: AFTER_CUTOFF, max_workers=4).run()

        assert summary.status == "success"
        assert summary.tenants_processed == 12
        assert summary.records_updated == 60
        assert summary.errors == []
        with store.transaction() as session:
            for agency_id in agency_ids:
                statuses = {inst.status for inst in session.list_installments(agency_id, f"{agency_id}-plan")}
                assert statuses == {InstallmentStatus.OVERDUE}
