"""
Input Validation for the Payment Plan Engine

Validates caller input before any state changes.
Raises ValidationError naming the offending field.
"""

from datetime import date
from decimal import Decimal

from .errors import ValidationError
from .models import Installment, PaymentPlan, PaymentRequest


class PaymentValidator:
    """Validates a payment against the installment it is recorded on."""

    # Allow up to 10% over the installment amount for bank-fee rounding
    OVERPAYMENT_TOLERANCE = Decimal("0.10")
    NOTES_MAX_LENGTH = 500

    def validate(self, installment: Installment, payment: PaymentRequest, today: date) -> None:
        """Run all payment checks. Raises ValidationError if any fails."""
        if not installment.status.accepts_payment:
            raise ValidationError(
                "status",
                f"cannot record a payment on a {installment.status.value} installment",
            )

        if payment.paid_date is None:
            raise ValidationError("paid_date", "is required")
        if payment.paid_date > today:
            raise ValidationError("paid_date", f"cannot be in the future (today is {today})")

        self._validate_amount(installment, payment.paid_amount)

        if payment.notes is not None and len(payment.notes) > self.NOTES_MAX_LENGTH:
            raise ValidationError(
                "notes", f"must be at most {self.NOTES_MAX_LENGTH} characters"
            )

    def max_allowed_amount(self, installment: Installment) -> Decimal:
        return installment.amount * (1 + self.OVERPAYMENT_TOLERANCE)

    def _validate_amount(self, installment: Installment, amount: Decimal | None) -> None:
        if amount is None:
            raise ValidationError("paid_amount", "is required")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("paid_amount", f"must be positive, got: {amount}")
        if amount != amount.quantize(Decimal("0.01")):
            raise ValidationError("paid_amount", "cannot have more than 2 decimal places")

        max_allowed = self.max_allowed_amount(installment)
        if amount > max_allowed:
            raise ValidationError(
                "paid_amount",
                f"cannot exceed {max_allowed:.2f} (110% of installment amount)",
            )


class PlanValidator:
    """Validates plan inputs before a plan is created."""

    def validate(self, plan: PaymentPlan) -> None:
        if plan.total_value <= 0:
            raise ValidationError("total_value", f"must be positive, got: {plan.total_value}")

        for name in ("materials_cost", "admin_fees", "other_fees"):
            if getattr(plan, name) < 0:
                raise ValidationError(name, f"cannot be negative, got: {getattr(plan, name)}")

        if not (0 <= plan.commission_rate_percent <= 100):
            raise ValidationError(
                "commission_rate_percent",
                f"must be between 0 and 100, got: {plan.commission_rate_percent}",
            )

        if plan.start_date is None:
            raise ValidationError("start_date", "is required")
