"""
Commission Calculator

Pure functions for commissionable value, expected commission and earned
commission. No I/O and no shared state.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from ..models import Installment, InstallmentStatus, PaymentPlan, to_decimal

ZERO = Decimal("0")
CENT = Decimal("0.01")

EARNING_STATUSES = (InstallmentStatus.PAID, InstallmentStatus.PARTIAL)


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def rate_fraction(commission_rate_percent: Decimal) -> Decimal:
    """Convert a 0-100 percentage (15.00) into a fraction (0.15)."""
    return to_decimal(commission_rate_percent) / Decimal("100")


class CommissionCalculator:
    """Calculates commission figures for a payment plan."""

    # Fixed GST rate backed out of tax-exclusive values
    TAX_RATE = Decimal("0.10")

    @staticmethod
    def commissionable_value(
        total_value: Decimal,
        materials_cost: Decimal | None = None,
        admin_fees: Decimal | None = None,
        other_fees: Decimal | None = None,
    ) -> Decimal:
        """
        Total course value minus non-commissionable fees.

        Missing fees count as zero. Fees larger than the total clamp the
        result to zero instead of raising.
        """
        fees = sum((to_decimal(fee) or ZERO for fee in (materials_cost, admin_fees, other_fees)), ZERO)
        return max(to_decimal(total_value) - fees, ZERO)

    @classmethod
    def expected_commission(
        cls,
        commissionable_value: Decimal | None,
        rate: Decimal | None,
        tax_inclusive: bool = True,
    ) -> Decimal:
        """
        Commission expected over the life of the plan.

        `rate` is a fraction in [0, 1]. Out-of-range rates and negative or
        missing values return 0 rather than raising.

        Tax inclusive:  base = commissionable_value
        Tax exclusive:  base = commissionable_value / 1.10
        """
        commissionable_value = to_decimal(commissionable_value)
        rate = to_decimal(rate)
        if commissionable_value is None or commissionable_value < 0:
            return quantize_money(ZERO)
        if rate is None or not (0 <= rate <= 1):
            return quantize_money(ZERO)

        base = commissionable_value
        if not tax_inclusive:
            base = base / (1 + cls.TAX_RATE)

        return quantize_money(base * rate)

    @staticmethod
    def total_paid(installments: Iterable[Installment]) -> Decimal:
        """Sum of amounts received on paid and partial installments."""
        return sum(
            (
                inst.paid_amount
                for inst in installments
                if inst.status in EARNING_STATUSES and inst.paid_amount is not None
            ),
            ZERO,
        )

    @classmethod
    def earned_commission(cls, plan: PaymentPlan, installments: Iterable[Installment]) -> Decimal:
        """
        Commission earned so far, pro-rata to what the student has paid.

        earned = (total_paid / total_value) * expected_commission
        """
        if plan.total_value == 0:
            return quantize_money(ZERO)

        paid = cls.total_paid(installments)
        return quantize_money((paid / plan.total_value) * plan.expected_commission)

    @classmethod
    def derive_plan_figures(cls, plan: PaymentPlan) -> tuple[Decimal, Decimal]:
        """Commissionable value and expected commission for a plan's inputs."""
        value = quantize_money(cls.commissionable_value(
            plan.total_value,
            plan.materials_cost,
            plan.admin_fees,
            plan.other_fees,
        ))
        expected = cls.expected_commission(
            value,
            rate_fraction(plan.commission_rate_percent),
            plan.tax_inclusive,
        )
        return value, expected
