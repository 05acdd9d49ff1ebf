"""
Audit events emitted by the engine.

The engine publishes events to a sink; storing them is somebody else's job.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from .models import InstallmentUpdate, PaymentPlan

logger = logging.getLogger(__name__)

PAYMENT_RECORDED = "payment_recorded"
INSTALLMENT_OVERDUE = "installment_overdue"
PLAN_COMPLETED = "plan_completed"


@dataclass
class DomainEvent:
    name: str
    tenant_id: str
    payload: dict = field(default_factory=dict)


class EventSink(Protocol):
    def publish(self, event: DomainEvent) -> None: ...


class LoggingEventSink:
    """Default sink: writes each event to the log."""

    def publish(self, event: DomainEvent) -> None:
        logger.info(f"Event {event.name} for agency {event.tenant_id}: {event.payload}")


class RecordingEventSink:
    """Keeps published events in memory."""

    def __init__(self):
        self.events: list[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[DomainEvent]:
        return [event for event in self.events if event.name == name]


def payment_recorded(update: InstallmentUpdate) -> DomainEvent:
    before, after = update.before, update.after
    return DomainEvent(
        name=PAYMENT_RECORDED,
        tenant_id=after.tenant_id,
        payload={
            "installment_id": after.id,
            "old_status": before.status.value,
            "new_status": after.status.value,
            "old_amount": before.paid_amount,
            "new_amount": after.paid_amount,
        },
    )


def installment_overdue(update: InstallmentUpdate) -> DomainEvent:
    after = update.after
    return DomainEvent(
        name=INSTALLMENT_OVERDUE,
        tenant_id=after.tenant_id,
        payload={"installment_id": after.id, "due_date": after.student_due_date},
    )


def plan_completed(plan: PaymentPlan) -> DomainEvent:
    return DomainEvent(name=PLAN_COMPLETED, tenant_id=plan.tenant_id, payload={"plan_id": plan.id})
