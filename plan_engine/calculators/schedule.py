"""
Installment Schedule Generator

Lays out the installments of a new payment plan: amounts split evenly to
the cent, college due dates stepped by frequency, student due dates pulled
forward by the agency's lead time.
"""

from datetime import date, timedelta
from decimal import ROUND_DOWN, Decimal

from dateutil.relativedelta import relativedelta

from ..errors import ValidationError
from ..models import Installment, InstallmentStatus, PaymentPlan, ScheduleRequest, new_id
from .commission import CENT, quantize_money

FREQUENCY_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
}


class InstallmentScheduleGenerator:
    """Generates draft installments for a payment plan."""

    def generate(self, plan: PaymentPlan, request: ScheduleRequest) -> list[Installment]:
        """
        Build the draft schedule.

        The total course value less the initial payment is divided evenly,
        rounded down to the cent, and the leftover cents go on the final
        installment so the schedule sums exactly to the total value.
        """
        months = FREQUENCY_MONTHS.get(request.frequency)
        if months is None:
            raise ValidationError(
                "payment_frequency",
                f"must be one of {sorted(FREQUENCY_MONTHS)}, got: {request.frequency}",
            )
        if request.number_of_installments < 1:
            raise ValidationError("number_of_installments", "must be at least 1")
        if request.student_lead_time_days < 0:
            raise ValidationError("student_lead_time_days", "cannot be negative")

        initial = quantize_money(request.initial_payment_amount)
        if initial < 0:
            raise ValidationError("initial_payment_amount", "cannot be negative")

        remaining = plan.total_value - initial
        if remaining <= 0:
            raise ValidationError(
                "initial_payment_amount",
                f"must be less than the total course value ({plan.total_value})",
            )

        installments = []
        if initial > 0:
            due = request.initial_payment_due_date or plan.start_date
            installments.append(self._make(plan, 0, initial, due, due, is_initial=True))

        count = request.number_of_installments
        base_amount = (remaining / count).quantize(CENT, rounding=ROUND_DOWN)
        remainder = remaining - base_amount * count
        if base_amount <= 0:
            raise ValidationError(
                "number_of_installments",
                f"too many installments for a remaining balance of {remaining}",
            )

        lead_time = timedelta(days=request.student_lead_time_days)
        for number in range(1, count + 1):
            college_due = request.first_college_due_date + relativedelta(months=months * (number - 1))
            amount = base_amount + remainder if number == count else base_amount
            installments.append(
                self._make(plan, number, amount, college_due - lead_time, college_due)
            )

        return installments

    @staticmethod
    def _make(
        plan: PaymentPlan,
        sequence: int,
        amount: Decimal,
        student_due: date,
        college_due: date,
        is_initial: bool = False,
    ) -> Installment:
        return Installment(
            id=new_id(),
            plan_id=plan.id,
            tenant_id=plan.tenant_id,
            sequence=sequence,
            amount=quantize_money(amount),
            student_due_date=student_due,
            college_due_date=college_due,
            is_initial_payment=is_initial,
            generates_commission=True,
            status=InstallmentStatus.DRAFT,
        )
