"""Shared fixtures: an in-memory store seeded with one agency and plan."""

from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from plan_engine.aggregator import PlanAggregator
from plan_engine.events import RecordingEventSink
from plan_engine.models import (
    Agency,
    Installment,
    InstallmentStatus,
    PaymentPlan,
)
from plan_engine.storage import MemoryLedgerStore

# 18:00 in Brisbane (UTC+10, no daylight saving): past the 17:00 cutoff
AFTER_CUTOFF = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)
# 15:00 in Brisbane: before the cutoff
BEFORE_CUTOFF = datetime(2025, 3, 10, 5, 0, tzinfo=timezone.utc)
LOCAL_TODAY = date(2025, 3, 10)


def make_plan(plan_id="plan-1", tenant_id="agency-a", total="2000", rate="15", **kwargs):
    return PaymentPlan(
        id=plan_id,
        tenant_id=tenant_id,
        total_value=Decimal(total),
        commission_rate_percent=Decimal(rate),
        start_date=kwargs.pop("start_date", date(2025, 1, 1)),
        **kwargs,
    )


def make_installment(
    installment_id="inst-1",
    plan_id="plan-1",
    tenant_id="agency-a",
    sequence=1,
    amount="1000",
    due=date(2025, 3, 9),
    status=InstallmentStatus.PENDING,
    **kwargs,
):
    return Installment(
        id=installment_id,
        plan_id=plan_id,
        tenant_id=tenant_id,
        sequence=sequence,
        amount=Decimal(amount),
        student_due_date=due,
        college_due_date=due,
        status=status,
        **kwargs,
    )


def seed_plan(store, plan, installments):
    """Write a plan and its installments with derived figures filled in."""
    plan = PlanAggregator().recompute(plan, installments).after
    with store.transaction() as session:
        session.add_plan(plan, installments)
    return plan


@pytest.fixture
def agency():
    return Agency(id="agency-a", name="Agency A", timezone="Australia/Brisbane", cutoff_time=time(17, 0))


@pytest.fixture
def store(agency):
    store = MemoryLedgerStore()
    store.add_agency(agency)
    return store


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def two_installment_plan(store):
    """A 2,000 plan at 15% (expected 300.00) split into two 1,000 installments."""
    installments = [
        make_installment("inst-1", sequence=1, due=date(2025, 3, 9)),
        make_installment("inst-2", sequence=2, due=date(2025, 4, 9)),
    ]
    return seed_plan(store, make_plan(), installments)
