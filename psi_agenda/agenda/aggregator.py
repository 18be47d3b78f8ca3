"""Appointment aggregator: merges occurrences, overrides, extras and payments.

The result for a month is a single sorted list of events:

* generated sessions for the month, patched by their overrides,
* extra sessions dated in the month,
* payment events due in the month, each summing the billable sessions of its
  billing window (which may reach into the previous month).

Cancelled and rescheduled sessions still count as overrides but are left out
of the visible list and never billed.
"""

import logging
from datetime import date
from typing import Any, Hashable, Iterable, Mapping, Optional, Sequence

from psi_agenda.billing.cycles import build_payment_events
from psi_agenda.scheduling.keys import OccurrenceKey, PaymentKey, occurrence_key
from psi_agenda.scheduling.models import (
    Patient,
    PaymentEvent,
    PaymentPatch,
    SessionEvent,
    SessionPatch,
    RESCHEDULE_MARKERS,
    SessionStatus,
    parse_minutes,
)
from psi_agenda.scheduling.recurrence import generate_for_patients, month_bounds, shift_month

logger = logging.getLogger(__name__)

# Fields an override may never change on a session.
_IMMUTABLE_FIELDS = frozenset({"kind", "id", "patient_id", "original_date", "is_extra"})
# Fields that cannot be cleared to None.
_REQUIRED_FIELDS = frozenset({"date", "time", "duration", "rate", "status"})

AgendaEvent = SessionEvent | PaymentEvent


def apply_patch(session: SessionEvent, patch: Optional[SessionPatch]) -> SessionEvent:
    """Return *session* with *patch* merged on top. ``original_date`` never moves."""
    if patch is None:
        return session
    update: dict[str, Any] = {}
    for name in patch.model_fields_set:
        if name in _IMMUTABLE_FIELDS or name not in SessionEvent.model_fields:
            continue
        value = getattr(patch, name)
        if value is None and name in _REQUIRED_FIELDS:
            continue
        update[name] = value
    # Re-opening clears cancel/reschedule markers the patch does not set.
    if update.get("status") == SessionStatus.SCHEDULED:
        for name in RESCHEDULE_MARKERS:
            update.setdefault(name, None)
    return session.model_copy(update=update)


def apply_overrides(
    sessions: Iterable[SessionEvent],
    overrides: Mapping[OccurrenceKey, SessionPatch],
) -> list[SessionEvent]:
    return [
        apply_patch(s, overrides.get(occurrence_key(s.patient_id, s.original_date)))
        for s in sessions
    ]


def event_sort_key(event: AgendaEvent) -> tuple[date, int]:
    return event.date, parse_minutes(event.time)


def _identity(event: AgendaEvent) -> Optional[Hashable]:
    """Dedup key; ``None`` for extras without an id, which are always kept."""
    if isinstance(event, PaymentEvent):
        return "payment", event.patient_id, event.date
    if event.is_extra:
        return ("extra", event.id, event.original_date) if event.id else None
    return "session", event.patient_id, event.original_date


def aggregate(
    patients: Sequence[Patient],
    current_month: date,
    overrides: Optional[Mapping[OccurrenceKey, SessionPatch]] = None,
    extra_sessions: Optional[Iterable[SessionEvent]] = None,
    payment_overrides: Optional[Mapping[PaymentKey, PaymentPatch]] = None,
    min_date: Optional[date] = None,
    today: Optional[date] = None,
) -> list[AgendaEvent]:
    """Visible sessions and payment events for *current_month*, sorted by date and time.

    Pure: inputs are never mutated and the same inputs give the same output.
    *min_date* hides anything dated before it (e.g. activity predating the
    account); *today* decides which unpaid payments are overdue.
    """
    overrides = overrides or {}
    extras = list(extra_sessions or [])
    month_start, month_end = month_bounds(current_month)

    current = apply_overrides(generate_for_patients(patients, month_start), overrides)
    # Previous month only feeds billing windows that start before month_start.
    previous = apply_overrides(
        generate_for_patients(patients, shift_month(month_start, -1)), overrides
    )

    payments = build_payment_events(
        patients,
        month_start,
        [*previous, *current, *extras],
        payment_overrides=payment_overrides,
        today=today,
    )

    visible_extras = [s for s in extras if month_start <= s.date <= month_end]
    merged: list[AgendaEvent] = []
    seen: set[Hashable] = set()
    for event in [*current, *visible_extras, *payments]:
        if isinstance(event, SessionEvent) and not event.is_visible:
            continue
        if min_date is not None and event.date < min_date:
            continue
        ident = _identity(event)
        if ident is not None:
            if ident in seen:
                logger.debug("Dropping duplicate event %s", ident)
                continue
            seen.add(ident)
        merged.append(event)

    merged.sort(key=event_sort_key)
    return merged
