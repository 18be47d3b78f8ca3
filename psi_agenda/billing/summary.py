"""Monthly financial and patient-flow summaries built from aggregated events."""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from psi_agenda.scheduling.models import (
    ZERO,
    Patient,
    PaymentEvent,
    PaymentStatus,
    PayRecurrence,
)


class RevenueSummary(BaseModel):
    """Received vs. overdue money for the payment events of a month."""

    received: Decimal = ZERO
    overdue: Decimal = ZERO
    paid_count: int = 0
    overdue_count: int = 0
    pending_count: int = 0


class ReceivableItem(BaseModel):
    """Expected income from one patient in the month."""

    patient_id: str
    name: Optional[str] = None
    recurrence: PayRecurrence
    due_day: Optional[int] = None
    due_label: str = ""
    estimated: Decimal = ZERO
    sessions_count: int = 0
    payments_count: int = 0
    mode: Optional[str] = None


class Receivables(BaseModel):
    items: list[ReceivableItem] = Field(default_factory=list)
    total: Decimal = ZERO
    monthly: Decimal = ZERO
    weekly: Decimal = ZERO


class PatientFlow(BaseModel):
    """Patient movement for a reference month."""

    new_patients: int = 0
    exited_patients: int = 0
    active_count: int = 0
    adjustment_overdue: list[str] = Field(
        default_factory=list,
        description="Active patient ids whose rate was last adjusted a year or more ago, oldest first",
    )


class MonthSummary(BaseModel):
    month: date
    revenue: RevenueSummary
    receivables: Receivables
    flow: PatientFlow


def _payments(events: Iterable[object]) -> list[PaymentEvent]:
    return [e for e in events if isinstance(e, PaymentEvent)]


def revenue_summary(events: Iterable[object]) -> RevenueSummary:
    """Totals over payment events; pending counts everything not yet paid."""
    summary = RevenueSummary()
    for payment in _payments(events):
        if payment.status == PaymentStatus.PAID:
            summary.received += payment.rate
            summary.paid_count += 1
            continue
        summary.pending_count += 1
        if payment.status == PaymentStatus.OVERDUE:
            summary.overdue += payment.rate
            summary.overdue_count += 1
    return summary


def receivables(events: Iterable[object]) -> Receivables:
    """Payment events grouped per patient, ordered by monthly due day then name."""
    by_patient: dict[str, ReceivableItem] = {}
    for payment in _payments(events):
        item = by_patient.get(payment.patient_id)
        if item is None:
            monthly = payment.pay_recurrence == PayRecurrence.MONTHLY
            item = ReceivableItem(
                patient_id=payment.patient_id,
                name=payment.name,
                recurrence=payment.pay_recurrence,
                due_day=payment.date.day if monthly else None,
                due_label=str(payment.date.day) if monthly else (payment.pay_day or ""),
                mode=payment.mode,
            )
            by_patient[payment.patient_id] = item
        item.estimated += payment.rate
        item.sessions_count += payment.sessions_count
        item.payments_count += 1

    items = sorted(
        by_patient.values(),
        key=lambda it: (it.due_day if it.due_day is not None else 999, it.name or ""),
    )
    result = Receivables(items=items)
    for it in items:
        result.total += it.estimated
        if it.recurrence == PayRecurrence.MONTHLY:
            result.monthly += it.estimated
        else:
            result.weekly += it.estimated
    return result


def _whole_years_between(later: date, earlier: date) -> int:
    years = later.year - earlier.year
    if (later.month, later.day) < (earlier.month, earlier.day):
        years -= 1
    return years


def _same_month(a: Optional[date], b: date) -> bool:
    return a is not None and (a.year, a.month) == (b.year, b.month)


def patient_flow(patients: Sequence[Patient], reference: date) -> PatientFlow:
    """New, exited and active patients plus overdue rate adjustments."""
    overdue = [
        p for p in patients
        if p.is_active
        and p.last_adjustment is not None
        and _whole_years_between(reference, p.last_adjustment) >= 1
    ]
    overdue.sort(key=lambda p: p.last_adjustment)
    return PatientFlow(
        new_patients=sum(1 for p in patients if _same_month(p.start_date, reference)),
        exited_patients=sum(1 for p in patients if _same_month(p.end_date, reference)),
        active_count=sum(1 for p in patients if p.is_active),
        adjustment_overdue=[p.id for p in overdue],
    )


def summarize(patients: Sequence[Patient], events: Sequence[object], month: date) -> MonthSummary:
    return MonthSummary(
        month=month,
        revenue=revenue_summary(events),
        receivables=receivables(events),
        flow=patient_flow(patients, month),
    )
