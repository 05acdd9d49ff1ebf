"""
Payment Processor - Main Orchestrator

Runs every mutating operation on plans and installments inside a single
store transaction, with the plan recompute as the last write.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict

from .aggregator import PlanAggregator
from .calculators import CommissionCalculator, InstallmentScheduleGenerator
from .clock import agency_today, utc_now
from .errors import NotFoundError
from .events import EventSink, LoggingEventSink, payment_recorded, plan_completed
from .ledger import InstallmentLedger
from .models import (
    InstallmentResult,
    InstallmentUpdate,
    PaymentPlan,
    PaymentRequest,
    PlanResult,
    PlanStatus,
    ScheduleRequest,
)
from .output import OutputBuilder
from .storage import LedgerSession, LedgerStore
from .validators import PlanValidator

logger = logging.getLogger(__name__)


class PaymentProcessor:
    """
    Orchestrates payment plan operations.

    record_payment pipeline:
    1. Lock the installment row
    2. Lock the owning plan
    3. Validate and apply the payment (InstallmentLedger)
    4. Recompute the plan from its live installments (PlanAggregator)
    5. Commit, then publish audit events
    """

    def __init__(
        self,
        store: LedgerStore,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.events = events or LoggingEventSink()
        self.clock = clock
        self.plan_validator = PlanValidator()
        self.calculator = CommissionCalculator()
        self.schedule_generator = InstallmentScheduleGenerator()
        self.ledger = InstallmentLedger()
        self.aggregator = PlanAggregator(self.calculator)
        self.output_builder = OutputBuilder()

    def record_payment(self, tenant_id: str, installment_id: str, payment: PaymentRequest) -> InstallmentResult:
        """Record a payment and refresh the plan's earned commission atomically."""
        with self.store.transaction() as session:
            installment = session.get_installment(tenant_id, installment_id, for_update=True)
            if installment is None:
                raise NotFoundError(f"Installment {installment_id} not found")
            plan = self._locked_plan(session, tenant_id, installment.plan_id)

            today = agency_today(session.get_agency(tenant_id), self.clock())
            update = self.ledger.record_payment(installment, payment, today)
            session.save_installment(update.after)

            result = InstallmentResult(update, self._recompute(session, plan))

        logger.info(
            f"Payment of {payment.paid_amount} recorded on installment {installment_id}: "
            f"{update.before.status.value} -> {update.after.status.value}"
        )
        self._publish(result)
        return result

    def cancel_installment(self, tenant_id: str, installment_id: str) -> InstallmentResult:
        """Cancel an installment and refresh the plan."""
        with self.store.transaction() as session:
            installment = session.get_installment(tenant_id, installment_id, for_update=True)
            if installment is None:
                raise NotFoundError(f"Installment {installment_id} not found")
            plan = self._locked_plan(session, tenant_id, installment.plan_id)

            update = self.ledger.cancel(installment)
            session.save_installment(update.after)

            result = InstallmentResult(update, self._recompute(session, plan))

        logger.info(f"Installment {installment_id} cancelled")
        if result.plan.became_completed:
            self.events.publish(plan_completed(result.plan.after))
        return result

    def create_plan(self, tenant_id: str, plan: PaymentPlan, schedule: ScheduleRequest) -> PlanResult:
        """
        Create a plan and its installment schedule in one transaction.

        Generated installments are activated to pending. An initial payment
        flagged as already paid is recorded as paid on its due date (or
        today, if that date is still in the future).
        """
        plan = replace(plan, tenant_id=tenant_id, status=PlanStatus.ACTIVE)
        self.plan_validator.validate(plan)
        commissionable, expected = self.calculator.derive_plan_figures(plan)
        plan = replace(plan, commissionable_value=commissionable, expected_commission=expected)

        drafts = self.schedule_generator.generate(plan, schedule)
        payments: list[InstallmentUpdate] = []

        with self.store.transaction() as session:
            agency = session.get_agency(tenant_id)
            if agency is None:
                raise NotFoundError(f"Agency {tenant_id} not found")
            today = agency_today(agency, self.clock())

            installments = []
            for draft in drafts:
                installment = self.ledger.activate(draft).after
                if installment.is_initial_payment and schedule.initial_payment_paid:
                    paid_on = min(installment.student_due_date, today)
                    update = self.ledger.record_payment(
                        installment,
                        PaymentRequest(paid_date=paid_on, paid_amount=installment.amount),
                        today,
                    )
                    payments.append(update)
                    installment = update.after
                installments.append(installment)

            session.add_plan(plan, installments)
            plan_update = self._recompute(session, plan)

        logger.info(
            f"Payment plan {plan.id} created for agency {tenant_id} "
            f"with {len(installments)} installments"
        )
        for update in payments:
            self.events.publish(payment_recorded(update))
        return PlanResult(plan=plan_update.after, installments=installments)

    # -------------------------------------------------------------------------
    # Dict-based convenience methods for the API layer
    # -------------------------------------------------------------------------

    def record_payment_from_dict(self, tenant_id: str, installment_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        payment = PaymentRequest.from_dict(data)
        result = self.record_payment(tenant_id, installment_id, payment)
        return self.output_builder.installment_result(result)

    def create_plan_from_dict(self, tenant_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        plan = PaymentPlan.from_dict(data["plan"], tenant_id)
        schedule = ScheduleRequest.from_dict(data["schedule"])
        result = self.create_plan(tenant_id, plan, schedule)
        return self.output_builder.plan_result(result)

    def cancel_installment_to_dict(self, tenant_id: str, installment_id: str) -> Dict[str, Any]:
        result = self.cancel_installment(tenant_id, installment_id)
        return self.output_builder.installment_result(result)

    # -------------------------------------------------------------------------

    @staticmethod
    def _locked_plan(session: LedgerSession, tenant_id: str, plan_id: str) -> PaymentPlan:
        plan = session.get_plan(tenant_id, plan_id, for_update=True)
        if plan is None:
            raise NotFoundError(f"Payment plan {plan_id} not found")
        return plan

    def _recompute(self, session: LedgerSession, plan: PaymentPlan):
        # Re-read the live rows; never reuse a snapshot taken before the write
        installments = session.list_installments(plan.tenant_id, plan.id)
        plan_update = self.aggregator.recompute(plan, installments)
        session.save_plan(plan_update.after)
        return plan_update

    def _publish(self, result: InstallmentResult) -> None:
        self.events.publish(payment_recorded(result.installment))
        if result.plan.became_completed:
            logger.info(f"Payment plan {result.plan.after.id} completed")
            self.events.publish(plan_completed(result.plan.after))
