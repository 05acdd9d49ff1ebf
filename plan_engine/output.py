"""
Output Builder

Constructs API response dicts from engine results.
"""

from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal

from .models import (
    AgencyResult,
    Installment,
    InstallmentResult,
    JobRun,
    JobSummary,
    PaymentPlan,
    PlanResult,
)


def to_money(value: Decimal | None) -> float | None:
    """Convert Decimal to float with 2 decimal places."""
    if value is None:
        return None
    return round(float(value), 2)


def to_iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class OutputBuilder:
    """Builds response payloads."""

    def installment(self, inst: Installment) -> dict:
        return {
            "id": inst.id,
            "payment_plan_id": inst.plan_id,
            "installment_number": inst.sequence,
            "amount": to_money(inst.amount),
            "is_initial_payment": inst.is_initial_payment,
            "generates_commission": inst.generates_commission,
            "student_due_date": to_iso(inst.student_due_date),
            "college_due_date": to_iso(inst.college_due_date),
            "status": inst.status.value,
            "paid_date": to_iso(inst.paid_date),
            "paid_amount": to_money(inst.paid_amount),
            "payment_notes": inst.notes,
        }

    def plan(self, plan: PaymentPlan) -> dict:
        return {
            "id": plan.id,
            "status": plan.status.value,
            "start_date": to_iso(plan.start_date),
            "total_value": to_money(plan.total_value),
            "materials_cost": to_money(plan.materials_cost),
            "admin_fees": to_money(plan.admin_fees),
            "other_fees": to_money(plan.other_fees),
            "commission_rate_percent": float(plan.commission_rate_percent),
            "tax_inclusive": plan.tax_inclusive,
            "commissionable_value": to_money(plan.commissionable_value),
            "expected_commission": to_money(plan.expected_commission),
            "earned_commission": to_money(plan.earned_commission),
        }

    def installment_result(self, result: InstallmentResult) -> dict:
        plan = result.plan.after
        return {
            "installment": self.installment(result.installment.after),
            "payment_plan": {
                "id": plan.id,
                "status": plan.status.value,
                "earned_commission": to_money(plan.earned_commission),
            },
        }

    def plan_result(self, result: PlanResult) -> dict:
        plan = result.plan
        regular = [inst for inst in result.installments if not inst.is_initial_payment]
        initial = sum((inst.amount for inst in result.installments if inst.is_initial_payment), Decimal("0"))
        return {
            "payment_plan": self.plan(plan),
            "installments": [self.installment(inst) for inst in result.installments],
            "summary": {
                "total_course_value": to_money(plan.total_value),
                "commissionable_value": to_money(plan.commissionable_value),
                "expected_commission": to_money(plan.expected_commission),
                "initial_payment": to_money(initial),
                "total_installments": len(result.installments),
                "amount_per_installment": to_money(regular[0].amount) if regular else 0.0,
            },
        }

    def agency_result(self, result: AgencyResult) -> dict:
        data = asdict(result)
        data["local_date"] = to_iso(result.local_date)
        return data

    def job_summary(self, summary: JobSummary) -> dict:
        return {
            "status": summary.status,
            "records_updated": summary.records_updated,
            "tenants_processed": summary.tenants_processed,
            "tenants_failed": summary.tenants_failed,
            "errors": list(summary.errors),
            "job_run_id": summary.job_run_id,
            "agencies": [self.agency_result(result) for result in summary.agencies],
            "message": summary.message,
        }

    def job_run(self, run: JobRun) -> dict:
        duration = run.duration_seconds
        return {
            "id": run.id,
            "job_name": run.job_name,
            "started_at": to_iso(run.started_at),
            "completed_at": to_iso(run.completed_at),
            "duration_seconds": round(duration, 2) if duration is not None else None,
            "records_updated": run.records_updated,
            "status": run.status.value,
            "error_message": run.error_message,
        }
