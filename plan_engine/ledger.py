"""
Installment Ledger

Owns the lifecycle of a single installment. Every operation takes an
installment and returns a new instance; the input is never mutated, so a
rejected operation leaves the caller's state untouched.
"""

from dataclasses import replace
from datetime import date

from .errors import ValidationError
from .models import (
    Installment,
    InstallmentStatus,
    InstallmentUpdate,
    NoOp,
    PaymentRequest,
)
from .validators import PaymentValidator


class InstallmentLedger:
    """State machine for one installment."""

    def __init__(self, validator: PaymentValidator | None = None):
        self.validator = validator or PaymentValidator()

    def record_payment(
        self,
        installment: Installment,
        payment: PaymentRequest,
        today: date,
    ) -> InstallmentUpdate:
        """
        Record a payment received for an installment.

        The installment becomes `paid` when the amount received covers the
        installment amount, `partial` otherwise. A later payment on a partial
        installment replaces the recorded amount with the new running total.
        """
        self.validator.validate(installment, payment, today)

        new_status = (
            InstallmentStatus.PAID
            if payment.paid_amount >= installment.amount
            else InstallmentStatus.PARTIAL
        )
        updated = self._transition(
            installment,
            new_status,
            paid_date=payment.paid_date,
            paid_amount=payment.paid_amount,
            notes=payment.notes,
        )
        return InstallmentUpdate(before=installment, after=updated)

    def transition_to_overdue(self, installment: Installment, as_of: date) -> InstallmentUpdate | NoOp:
        """
        Flag a pending installment whose student due date has passed.

        Anything else is a NoOp: batch callers run this over many rows and
        an ineligible row is an expected outcome.
        """
        if installment.status != InstallmentStatus.PENDING:
            return NoOp(installment, f"status is {installment.status.value}")
        if installment.student_due_date is None:
            return NoOp(installment, "no student_due_date")
        if not installment.student_due_date < as_of:
            return NoOp(installment, f"due {installment.student_due_date} is not before {as_of}")

        updated = self._transition(installment, InstallmentStatus.OVERDUE)
        return InstallmentUpdate(before=installment, after=updated)

    def activate(self, installment: Installment) -> InstallmentUpdate:
        """Move a draft installment into the payable `pending` state."""
        if installment.status != InstallmentStatus.DRAFT:
            raise ValidationError(
                "status", f"only draft installments can be activated, got: {installment.status.value}"
            )
        updated = self._transition(installment, InstallmentStatus.PENDING)
        return InstallmentUpdate(before=installment, after=updated)

    def cancel(self, installment: Installment) -> InstallmentUpdate:
        """Cancel an installment that has not been paid or cancelled already."""
        if installment.status.is_terminal:
            raise ValidationError(
                "status", f"cannot cancel a {installment.status.value} installment"
            )
        if installment.status == InstallmentStatus.PARTIAL:
            raise ValidationError(
                "status", "cannot cancel an installment with money already received"
            )
        updated = self._transition(installment, InstallmentStatus.CANCELLED)
        return InstallmentUpdate(before=installment, after=updated)

    @staticmethod
    def _transition(installment: Installment, target: InstallmentStatus, **changes) -> Installment:
        if not installment.status.can_transition_to(target):
            raise ValidationError(
                "status",
                f"illegal transition {installment.status.value} -> {target.value}",
            )
        return replace(installment, status=target, **changes)
