"""
Plan Aggregator

Single source of truth for a plan's derived fields. Replaces the storage
triggers that used to recompute commissions on write: callers invoke
`recompute` explicitly, inside the same transaction, as the last write.
"""

from dataclasses import replace
from typing import Iterable

from .calculators import CommissionCalculator
from .models import Installment, InstallmentStatus, PaymentPlan, PlanStatus, PlanUpdate

SETTLED_STATUSES = (InstallmentStatus.PAID, InstallmentStatus.CANCELLED)


class PlanAggregator:
    """Recomputes commission figures and status from the live installment set."""

    def __init__(self, calculator: CommissionCalculator | None = None):
        self.calculator = calculator or CommissionCalculator()

    def recompute(self, plan: PaymentPlan, installments: Iterable[Installment]) -> PlanUpdate:
        """
        Derive commissionable value, expected and earned commission, and
        completion. Idempotent for the same installment set.

        A plan completes once every installment is paid or cancelled and at
        least one is paid. Completion is one-way: nothing here moves a
        completed plan back to active.
        """
        installments = list(installments)
        commissionable, expected = self.calculator.derive_plan_figures(plan)

        updated = replace(
            plan,
            commissionable_value=commissionable,
            expected_commission=expected,
        )
        updated = replace(
            updated,
            earned_commission=self.calculator.earned_commission(updated, installments),
        )

        if plan.status == PlanStatus.ACTIVE and self.is_settled(installments):
            updated = replace(updated, status=PlanStatus.COMPLETED)

        return PlanUpdate(before=plan, after=updated)

    @staticmethod
    def is_settled(installments: list[Installment]) -> bool:
        if not installments:
            return False
        all_settled = all(inst.status in SETTLED_STATUSES for inst in installments)
        any_paid = any(inst.status == InstallmentStatus.PAID for inst in installments)
        return all_settled and any_paid
