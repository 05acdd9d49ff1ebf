"""
SQLAlchemy-backed LedgerStore.

PostgreSQL in production; SQLite works for local runs and tests. Installment
reads for payment recording take a row lock (SELECT ... FOR UPDATE) so two
payments on the same installment are serialized. SQLite has no row locks, so
there every unit of work takes a store-wide lock instead.
"""

import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import date, datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    create_engine,
    event,
    select,
)
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import TransientStorageError
from ..models import (
    Agency,
    Installment,
    InstallmentStatus,
    JobRun,
    JobStatus,
    PaymentPlan,
    PlanStatus,
)
from .base import LedgerSession, LedgerStore

logger = logging.getLogger(__name__)

Base = declarative_base()


class AgencyRecord(Base):
    __tablename__ = "agencies"
    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    timezone = Column(String(64), nullable=False, default="Australia/Brisbane")
    overdue_cutoff_time = Column(Time, nullable=False)
    currency = Column(String(3), nullable=False, default="AUD")


class PaymentPlanRecord(Base):
    __tablename__ = "payment_plans"
    id = Column(String(36), primary_key=True)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    materials_cost = Column(Numeric(12, 2), nullable=False, default=0)
    admin_fees = Column(Numeric(12, 2), nullable=False, default=0)
    other_fees = Column(Numeric(12, 2), nullable=False, default=0)
    commission_rate_percent = Column(Numeric(5, 2), nullable=False)
    gst_inclusive = Column(Boolean, nullable=False, default=True)
    commissionable_value = Column(Numeric(12, 2))
    expected_commission = Column(Numeric(12, 2))
    earned_commission = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(
        Enum(*[s.value for s in PlanStatus], name="payment_plan_status"),
        nullable=False,
        default=PlanStatus.ACTIVE.value,
    )
    start_date = Column(Date, nullable=False)


class InstallmentRecord(Base):
    __tablename__ = "installments"
    id = Column(String(36), primary_key=True)
    payment_plan_id = Column(String(36), ForeignKey("payment_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    agency_id = Column(String(36), ForeignKey("agencies.id"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    is_initial_payment = Column(Boolean, nullable=False, default=False)
    generates_commission = Column(Boolean, nullable=False, default=True)
    student_due_date = Column(Date)
    college_due_date = Column(Date)
    status = Column(
        Enum(*[s.value for s in InstallmentStatus], name="installment_status"),
        nullable=False,
        default=InstallmentStatus.DRAFT.value,
    )
    paid_date = Column(Date)
    paid_amount = Column(Numeric(12, 2))
    payment_notes = Column(Text)


class JobRunRecord(Base):
    __tablename__ = "jobs_log"
    id = Column(String(36), primary_key=True)
    job_name = Column(String(100), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))
    status = Column(
        Enum(*[s.value for s in JobStatus], name="job_status"),
        nullable=False,
    )
    records_updated = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON)


# =============================================================================
# RECORD <-> MODEL MAPPING
# =============================================================================


def _utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _agency(record: AgencyRecord) -> Agency:
    return Agency(
        id=record.id,
        name=record.name,
        timezone=record.timezone,
        cutoff_time=record.overdue_cutoff_time,
        currency=record.currency,
    )


def _plan(record: PaymentPlanRecord) -> PaymentPlan:
    return PaymentPlan(
        id=record.id,
        tenant_id=record.agency_id,
        total_value=record.total_amount,
        commission_rate_percent=record.commission_rate_percent,
        start_date=record.start_date,
        materials_cost=record.materials_cost,
        admin_fees=record.admin_fees,
        other_fees=record.other_fees,
        tax_inclusive=record.gst_inclusive,
        commissionable_value=record.commissionable_value,
        expected_commission=record.expected_commission,
        earned_commission=record.earned_commission,
        status=PlanStatus(record.status),
    )


def _write_plan(record: PaymentPlanRecord, plan: PaymentPlan) -> PaymentPlanRecord:
    record.id = plan.id
    record.agency_id = plan.tenant_id
    record.total_amount = plan.total_value
    record.materials_cost = plan.materials_cost
    record.admin_fees = plan.admin_fees
    record.other_fees = plan.other_fees
    record.commission_rate_percent = plan.commission_rate_percent
    record.gst_inclusive = plan.tax_inclusive
    record.commissionable_value = plan.commissionable_value
    record.expected_commission = plan.expected_commission
    record.earned_commission = plan.earned_commission
    record.status = plan.status.value
    record.start_date = plan.start_date
    return record


def _installment(record: InstallmentRecord) -> Installment:
    return Installment(
        id=record.id,
        plan_id=record.payment_plan_id,
        tenant_id=record.agency_id,
        sequence=record.installment_number,
        amount=record.amount,
        student_due_date=record.student_due_date,
        college_due_date=record.college_due_date,
        is_initial_payment=record.is_initial_payment,
        generates_commission=record.generates_commission,
        status=InstallmentStatus(record.status),
        paid_date=record.paid_date,
        paid_amount=record.paid_amount,
        notes=record.payment_notes,
    )


def _write_installment(record: InstallmentRecord, inst: Installment) -> InstallmentRecord:
    record.id = inst.id
    record.payment_plan_id = inst.plan_id
    record.agency_id = inst.tenant_id
    record.installment_number = inst.sequence
    record.amount = inst.amount
    record.is_initial_payment = inst.is_initial_payment
    record.generates_commission = inst.generates_commission
    record.student_due_date = inst.student_due_date
    record.college_due_date = inst.college_due_date
    record.status = inst.status.value
    record.paid_date = inst.paid_date
    record.paid_amount = inst.paid_amount
    record.payment_notes = inst.notes
    return record


def _job_run(record: JobRunRecord) -> JobRun:
    return JobRun(
        id=record.id,
        job_name=record.job_name,
        started_at=_utc(record.started_at),
        completed_at=_utc(record.completed_at),
        status=JobStatus(record.status),
        records_updated=record.records_updated or 0,
        error_message=record.error_message,
        metadata=record.meta or {},
    )


def _write_job_run(record: JobRunRecord, run: JobRun) -> JobRunRecord:
    record.id = run.id
    record.job_name = run.job_name
    record.started_at = run.started_at
    record.completed_at = run.completed_at
    record.status = run.status.value
    record.records_updated = run.records_updated
    record.error_message = run.error_message
    record.meta = run.metadata
    return record


# =============================================================================
# SESSION AND STORE
# =============================================================================


class SqlLedgerSession(LedgerSession):

    def __init__(self, session):
        self.session = session

    def get_agency(self, tenant_id: str) -> Agency | None:
        record = self.session.get(AgencyRecord, tenant_id)
        return _agency(record) if record else None

    def get_plan(self, tenant_id: str, plan_id: str, for_update: bool = False) -> PaymentPlan | None:
        stmt = select(PaymentPlanRecord).where(
            PaymentPlanRecord.id == plan_id,
            PaymentPlanRecord.agency_id == tenant_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        record = self.session.scalars(stmt).first()
        return _plan(record) if record else None

    def get_installment(
        self, tenant_id: str, installment_id: str, for_update: bool = False
    ) -> Installment | None:
        stmt = select(InstallmentRecord).where(
            InstallmentRecord.id == installment_id,
            InstallmentRecord.agency_id == tenant_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        record = self.session.scalars(stmt).first()
        return _installment(record) if record else None

    def list_installments(self, tenant_id: str, plan_id: str) -> list[Installment]:
        stmt = (
            select(InstallmentRecord)
            .where(
                InstallmentRecord.payment_plan_id == plan_id,
                InstallmentRecord.agency_id == tenant_id,
            )
            .order_by(InstallmentRecord.installment_number)
        )
        return [_installment(record) for record in self.session.scalars(stmt)]

    def find_overdue_candidates(self, tenant_id: str, as_of: date) -> list[Installment]:
        # Rows locked by an in-flight payment are left for the next run
        stmt = (
            select(InstallmentRecord)
            .join(PaymentPlanRecord, PaymentPlanRecord.id == InstallmentRecord.payment_plan_id)
            .where(
                InstallmentRecord.agency_id == tenant_id,
                PaymentPlanRecord.agency_id == tenant_id,
                PaymentPlanRecord.status == PlanStatus.ACTIVE.value,
                InstallmentRecord.status == InstallmentStatus.PENDING.value,
                InstallmentRecord.student_due_date < as_of,
            )
            .order_by(InstallmentRecord.student_due_date, InstallmentRecord.installment_number)
            .with_for_update(of=InstallmentRecord, skip_locked=True)
        )
        return [_installment(record) for record in self.session.scalars(stmt)]

    def add_plan(self, plan: PaymentPlan, installments: list[Installment]) -> None:
        self.session.add(_write_plan(PaymentPlanRecord(), plan))
        self.session.flush()
        self.session.add_all([_write_installment(InstallmentRecord(), inst) for inst in installments])
        self.session.flush()

    def save_plan(self, plan: PaymentPlan) -> None:
        record = self.session.get(PaymentPlanRecord, plan.id)
        if record is None:
            raise LookupError(f"payment plan {plan.id} does not exist")
        _write_plan(record, plan)
        self.session.flush()

    def save_installment(self, installment: Installment) -> None:
        record = self.session.get(InstallmentRecord, installment.id)
        if record is None:
            raise LookupError(f"installment {installment.id} does not exist")
        _write_installment(record, installment)
        self.session.flush()

    @contextmanager
    def savepoint(self):
        try:
            with self.session.begin_nested():
                yield self
        except (OperationalError, DisconnectionError) as e:
            raise TransientStorageError(str(e)) from e


class SqlLedgerStore(LedgerStore):
    """LedgerStore on top of a SQLAlchemy engine."""

    def __init__(self, engine, create_tables: bool = False):
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        # SQLite has one writer, and in-memory databases share a single connection
        self._lock = threading.RLock() if engine.dialect.name == "sqlite" else nullcontext()
        if create_tables:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str, create_tables: bool = False) -> "SqlLedgerStore":
        return cls(build_engine(url), create_tables=create_tables)

    @contextmanager
    def _translate_errors(self):
        try:
            with self._lock:
                yield
        except (OperationalError, DisconnectionError) as e:
            logger.error(f"Storage error: {str(e)}")
            raise TransientStorageError(str(e)) from e

    @contextmanager
    def transaction(self):
        with self._translate_errors():
            with self.session_factory.begin() as session:
                yield SqlLedgerSession(session)

    def list_agencies(self) -> list[Agency]:
        with self._translate_errors():
            with self.session_factory() as session:
                records = session.scalars(select(AgencyRecord).order_by(AgencyRecord.id))
                return [_agency(record) for record in records]

    def add_agency(self, agency: Agency) -> None:
        with self._translate_errors():
            with self.session_factory.begin() as session:
                session.merge(AgencyRecord(
                    id=agency.id,
                    name=agency.name,
                    timezone=agency.timezone,
                    overdue_cutoff_time=agency.cutoff_time,
                    currency=agency.currency,
                ))

    def start_job_run(self, run: JobRun) -> JobRun:
        with self._translate_errors():
            with self.session_factory.begin() as session:
                session.add(_write_job_run(JobRunRecord(), run))
        return run

    def finish_job_run(self, run: JobRun) -> JobRun:
        with self._translate_errors():
            with self.session_factory.begin() as session:
                record = session.get(JobRunRecord, run.id)
                if record is None:
                    raise LookupError(f"job run {run.id} does not exist")
                _write_job_run(record, run)
        return run

    def get_job_run(self, run_id: str) -> JobRun | None:
        with self._translate_errors():
            with self.session_factory() as session:
                record = session.get(JobRunRecord, run_id)
                return _job_run(record) if record else None

    def list_job_runs(
        self,
        job_name: str,
        since: datetime | None = None,
        status: JobStatus | None = None,
        limit: int | None = None,
    ) -> list[JobRun]:
        stmt = select(JobRunRecord).where(JobRunRecord.job_name == job_name)
        if since is not None:
            stmt = stmt.where(JobRunRecord.started_at >= since)
        if status is not None:
            stmt = stmt.where(JobRunRecord.status == status.value)
        stmt = stmt.order_by(JobRunRecord.started_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._translate_errors():
            with self.session_factory() as session:
                return [_job_run(record) for record in session.scalars(stmt)]


def build_engine(url: str):
    """Create an engine; SQLite gets the settings it needs for savepoints and threads."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, pool_recycle=1800)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine
