"""Payment cycles: due dates, billing windows and per-cycle amounts.

A payment event bills every session inside its window
``(previous_due, due]``: the previous due date is excluded, the current one
included. Monthly windows reach back into the previous month, so callers must
pass the previous month's sessions along with the current ones.
"""

import logging
import re
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Mapping, NamedTuple, Optional

from psi_agenda.scheduling.frequency import weekday_index, weekday_of
from psi_agenda.scheduling.keys import PaymentKey, payment_key
from psi_agenda.scheduling.models import (
    ZERO,
    Patient,
    PaymentEvent,
    PaymentPatch,
    PaymentStatus,
    PayRecurrence,
    SessionEvent,
    local_today,
)
from psi_agenda.scheduling.recurrence import clamp_day, month_bounds, shift_month

logger = logging.getLogger(__name__)


class BillingWindow(NamedTuple):
    """Half-open window ``(previous_due, due]``."""

    previous_due: date
    due: date

    def contains(self, day: date) -> bool:
        return self.previous_due < day <= self.due

    @property
    def period_start(self) -> date:
        return self.previous_due + timedelta(days=1)

    @property
    def period_end(self) -> date:
        return self.due


def pay_day_number(value: Optional[str]) -> int:
    """Day-of-month from a ``payDay`` value, clamped to 1..31 (default 1)."""
    match = re.match(r"\s*(\d+)", str(value or ""))
    day = int(match.group(1)) if match else 1
    return max(1, min(day or 1, 31))


def monthly_windows(patient: Patient, month: date) -> list[BillingWindow]:
    day = pay_day_number(patient.pay_day)
    due = clamp_day(month.year, month.month, day)
    prev = shift_month(month, -1)
    return [BillingWindow(clamp_day(prev.year, prev.month, day), due)]


def weekly_windows(patient: Patient, month: date) -> list[BillingWindow]:
    idx = weekday_index(patient.pay_day)
    if idx is None:
        logger.debug("Patient %s has unresolvable weekly pay day %r", patient.id, patient.pay_day)
        return []
    first, last = month_bounds(month)
    windows: list[BillingWindow] = []
    day = first + timedelta(days=(idx - weekday_of(first)) % 7)
    while day <= last:
        windows.append(BillingWindow(day - timedelta(days=7), day))
        day += timedelta(weeks=1)
    return windows


def billing_windows(patient: Patient, month: date) -> list[BillingWindow]:
    """Billing windows whose due date falls in *month*."""
    if patient.billing_recurrence == PayRecurrence.WEEKLY:
        return weekly_windows(patient, month)
    return monthly_windows(patient, month)


def session_rate(session: SessionEvent, fallback: Decimal) -> Decimal:
    """The session's own rate when positive, otherwise the patient's rate."""
    if session.rate is not None and session.rate > 0:
        return session.rate
    return fallback if fallback > 0 else ZERO


def sum_billable(
    sessions: Iterable[SessionEvent],
    patient_id: str,
    window: BillingWindow,
    fallback_rate: Decimal = ZERO,
) -> tuple[Decimal, int]:
    """Total and count of *patient_id*'s billable sessions inside *window*."""
    total = ZERO
    count = 0
    for session in sessions:
        if session.patient_id != patient_id:
            continue
        if not session.is_billable or not window.contains(session.date):
            continue
        total += session_rate(session, fallback_rate)
        count += 1
    return total, count


def default_payment_status(due: date, today: date) -> PaymentStatus:
    return PaymentStatus.OVERDUE if due < today else PaymentStatus.PENDING


def build_payment_events(
    patients: Iterable[Patient],
    month: date,
    sessions: Iterable[SessionEvent],
    payment_overrides: Optional[Mapping[PaymentKey, PaymentPatch]] = None,
    today: Optional[date] = None,
) -> list[PaymentEvent]:
    """Payment events due in *month* for every active, billed patient.

    *sessions* should cover the current and previous month (generated,
    override-patched) plus extra sessions.
    """
    payment_overrides = payment_overrides or {}
    today = today or local_today()
    sessions = [s for s in sessions if s.patient_id]

    events: list[PaymentEvent] = []
    for patient in patients:
        if not patient.is_active or not patient.is_billed:
            continue
        recurrence = patient.billing_recurrence
        for window in billing_windows(patient, month):
            total, count = sum_billable(sessions, patient.id, window, patient.rate)
            patch = payment_overrides.get(payment_key(patient.id, window.due))
            changes = patch.changes() if patch else {}
            status = changes.get("status") or default_payment_status(window.due, today)
            events.append(
                PaymentEvent(
                    id=payment_key(patient.id, window.due).to_storage(),
                    patient_id=patient.id,
                    name=patient.name,
                    date=window.due,
                    original_date=window.due,
                    rate=total,
                    unit_rate=patient.rate,
                    sessions_count=count,
                    period_start=window.period_start,
                    period_end=window.period_end,
                    status=status,
                    pay_recurrence=recurrence,
                    pay_day=patient.pay_day,
                    paid_at=changes.get("paid_at"),
                    mode=patient.mode,
                )
            )
    return events
