"""
Domain Models for the Payment Plan Engine

These dataclasses provide type-safe representations of agencies, payment
plans, installments and job runs. All monetary values use Decimal for precision.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from enum import Enum


def to_decimal(value) -> Decimal | None:
    """Convert an API or storage value to Decimal, keeping None."""
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid decimal value: {value!r}")


def to_date(value) -> date | None:
    """Parse an ISO date (YYYY-MM-DD) unless it already is a date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# STATUS TYPES
# =============================================================================


class InstallmentStatus(str, Enum):
    """Lifecycle of a single installment."""

    DRAFT = "draft"
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (InstallmentStatus.PAID, InstallmentStatus.CANCELLED)

    @property
    def accepts_payment(self) -> bool:
        return self in PAYABLE_STATUSES

    def can_transition_to(self, target: "InstallmentStatus") -> bool:
        return target in INSTALLMENT_TRANSITIONS[self]


PAYABLE_STATUSES = frozenset({
    InstallmentStatus.PENDING,
    InstallmentStatus.PARTIAL,
    InstallmentStatus.OVERDUE,
})

INSTALLMENT_TRANSITIONS = {
    InstallmentStatus.DRAFT: frozenset({InstallmentStatus.PENDING, InstallmentStatus.CANCELLED}),
    InstallmentStatus.PENDING: frozenset({
        InstallmentStatus.PARTIAL,
        InstallmentStatus.PAID,
        InstallmentStatus.OVERDUE,
        InstallmentStatus.CANCELLED,
    }),
    InstallmentStatus.PARTIAL: frozenset({
        InstallmentStatus.PARTIAL,
        InstallmentStatus.PAID,
        InstallmentStatus.CANCELLED,
    }),
    InstallmentStatus.OVERDUE: frozenset({
        InstallmentStatus.PARTIAL,
        InstallmentStatus.PAID,
        InstallmentStatus.CANCELLED,
    }),
    InstallmentStatus.PAID: frozenset(),
    InstallmentStatus.CANCELLED: frozenset(),
}


class PlanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


# =============================================================================
# ENTITIES
# =============================================================================


@dataclass
class Agency:
    """A tenant: an isolated agency account with its own local clock."""

    id: str
    name: str
    timezone: str = "Australia/Brisbane"
    cutoff_time: time = time(17, 0)
    currency: str = "AUD"

    @classmethod
    def from_dict(cls, data: dict) -> "Agency":
        cutoff = data.get("cutoff_time") or data.get("overdue_cutoff_time")
        if isinstance(cutoff, str):
            cutoff = time.fromisoformat(cutoff)
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            timezone=data.get("timezone", "Australia/Brisbane"),
            cutoff_time=cutoff or time(17, 0),
            currency=data.get("currency", "AUD"),
        )


@dataclass
class PaymentPlan:
    """A student's payment plan and its commission figures."""

    id: str
    tenant_id: str
    total_value: Decimal
    commission_rate_percent: Decimal
    start_date: date
    materials_cost: Decimal = Decimal("0")
    admin_fees: Decimal = Decimal("0")
    other_fees: Decimal = Decimal("0")
    tax_inclusive: bool = True
    commissionable_value: Decimal = Decimal("0")
    expected_commission: Decimal = Decimal("0")
    earned_commission: Decimal = Decimal("0")
    status: PlanStatus = PlanStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: dict, tenant_id: str) -> "PaymentPlan":
        return cls(
            id=data.get("id") or new_id(),
            tenant_id=tenant_id,
            total_value=to_decimal(data["total_value"]),
            commission_rate_percent=to_decimal(data["commission_rate_percent"]),
            start_date=to_date(data["start_date"]),
            materials_cost=to_decimal(data.get("materials_cost") or 0),
            admin_fees=to_decimal(data.get("admin_fees") or 0),
            other_fees=to_decimal(data.get("other_fees") or 0),
            tax_inclusive=data.get("tax_inclusive", True),
        )


@dataclass
class Installment:
    """One scheduled payment obligation within a payment plan."""

    id: str
    plan_id: str
    tenant_id: str
    sequence: int
    amount: Decimal
    student_due_date: date | None
    college_due_date: date | None
    is_initial_payment: bool = False
    generates_commission: bool = True
    status: InstallmentStatus = InstallmentStatus.DRAFT
    paid_date: date | None = None
    paid_amount: Decimal | None = None
    notes: str | None = None

    def snapshot(self) -> dict:
        """Field values used for audit before/after comparisons."""
        return {
            "status": self.status.value,
            "paid_date": self.paid_date,
            "paid_amount": self.paid_amount,
            "notes": self.notes,
        }


@dataclass
class JobRun:
    """One execution of a scheduled job (append-only log row)."""

    job_name: str
    started_at: datetime
    id: str = field(default_factory=new_id)
    status: JobStatus = JobStatus.RUNNING
    completed_at: datetime | None = None
    records_updated: int = 0
    error_message: str | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


# =============================================================================
# REQUEST MODELS
# =============================================================================


@dataclass
class ScheduleRequest:
    """How to lay out the installments of a new plan."""

    number_of_installments: int
    first_college_due_date: date
    frequency: str = "monthly"  # 'monthly' or 'quarterly'
    student_lead_time_days: int = 0
    initial_payment_amount: Decimal = Decimal("0")
    initial_payment_due_date: date | None = None
    initial_payment_paid: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "ScheduleRequest":
        return cls(
            number_of_installments=int(data["number_of_installments"]),
            first_college_due_date=to_date(data["first_college_due_date"]),
            frequency=data.get("payment_frequency", data.get("frequency", "monthly")),
            student_lead_time_days=int(data.get("student_lead_time_days", 0)),
            initial_payment_amount=to_decimal(data.get("initial_payment_amount") or 0),
            initial_payment_due_date=to_date(data.get("initial_payment_due_date")),
            initial_payment_paid=data.get("initial_payment_paid", False),
        )


@dataclass
class PaymentRequest:
    """A payment received for one installment."""

    paid_date: date | None
    paid_amount: Decimal | None
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentRequest":
        return cls(
            paid_date=to_date(data.get("paid_date")),
            paid_amount=to_decimal(data.get("paid_amount")),
            notes=data.get("notes") or None,
        )


# =============================================================================
# RESULT MODELS
# =============================================================================


@dataclass
class InstallmentUpdate:
    """Old and new state of an installment after a ledger operation."""

    before: Installment
    after: Installment

    @property
    def changed_fields(self) -> dict:
        old, new = self.before.snapshot(), self.after.snapshot()
        return {key: (old[key], new[key]) for key in old if old[key] != new[key]}


@dataclass
class NoOp:
    """A ledger operation whose preconditions did not hold. Not an error."""

    installment: Installment
    reason: str


@dataclass
class PlanUpdate:
    """Old and new state of a plan after recomputation."""

    before: PaymentPlan
    after: PaymentPlan

    @property
    def became_completed(self) -> bool:
        return (
            self.before.status != PlanStatus.COMPLETED
            and self.after.status == PlanStatus.COMPLETED
        )


@dataclass
class InstallmentResult:
    installment: InstallmentUpdate
    plan: PlanUpdate


@dataclass
class PlanResult:
    plan: PaymentPlan
    installments: list[Installment] = field(default_factory=list)


@dataclass
class AgencyResult:
    """Outcome of the overdue sweep for a single tenant."""

    agency_id: str
    status: str = "processed"  # 'processed', 'skipped' or 'failed'
    updated_count: int = 0
    local_date: date | None = None
    skipped_reason: str | None = None
    overdue_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class JobSummary:
    status: str
    records_updated: int = 0
    tenants_processed: int = 0
    tenants_failed: int = 0
    errors: list[str] = field(default_factory=list)
    job_run_id: str | None = None
    agencies: list[AgencyResult] = field(default_factory=list)
    message: str | None = None
