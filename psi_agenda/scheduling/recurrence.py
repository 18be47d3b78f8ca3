"""Occurrence generator: expands patient schedules into dated sessions."""

import calendar
import logging
from datetime import date, timedelta
from typing import Iterable

from psi_agenda.scheduling.frequency import (
    FrequencyType,
    first_weekday_on_or_after,
    iso_week_parity,
)
from psi_agenda.scheduling.models import Patient, SessionEvent, SessionStatus, parse_minutes

logger = logging.getLogger(__name__)

# Upper bound on week-by-week steps when snapping to ISO parity. Two would do
# except across 53-week years, where consecutive weeks share parity.
_PARITY_SNAP_LIMIT = 3


def month_bounds(day: date) -> tuple[date, date]:
    """First and last calendar day of the month containing *day*."""
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def shift_month(day: date, months: int) -> date:
    """First day of the month *months* away from *day*'s month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def clamp_day(year: int, month: int, day: int) -> date:
    """``date(year, month, day)`` with *day* clamped into the month."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, max(1, min(day, last)))


def generate_occurrences(patient: Patient, target_month: date) -> list[SessionEvent]:
    """Sessions implied by *patient*'s schedule within *target_month*.

    Occurrences fall inside ``[start_date, end_date)`` and, for year-parity
    biweekly rules, only on ISO weeks with the matching parity. Inactive
    patients, invalid start dates and unresolvable weekday labels all yield an
    empty list.
    """
    if not patient.is_active:
        return []

    start = patient.start_date
    if start is None:
        return []

    weekday = patient.weekday_index
    if weekday is None:
        logger.debug("Patient %s has unresolvable weekday %r", patient.id, patient.day_of_week)
        return []

    rule = patient.rule
    step = timedelta(weeks=rule.interval_weeks)
    month_start, month_end = month_bounds(target_month)

    cursor = first_weekday_on_or_after(start, weekday)

    if cursor < month_start:
        weeks_between = (month_start - cursor).days // 7
        if rule.type == FrequencyType.BIWEEKLY_ANCHOR:
            cursor += timedelta(weeks=2 * (weeks_between // 2))
        else:
            cursor += timedelta(weeks=weeks_between)

        while cursor < month_start:
            cursor += step

        if rule.type == FrequencyType.BIWEEKLY_YEAR:
            guard = 0
            while iso_week_parity(cursor) != rule.parity and guard < _PARITY_SNAP_LIMIT:
                cursor += timedelta(weeks=1)
                guard += 1

    occurrences: list[SessionEvent] = []
    while cursor <= month_end:
        in_window = cursor >= start and (patient.end_date is None or cursor < patient.end_date)
        parity_ok = (
            rule.type != FrequencyType.BIWEEKLY_YEAR
            or iso_week_parity(cursor) == rule.parity
        )
        if in_window and parity_ok and cursor >= month_start:
            occurrences.append(_occurrence(patient, cursor))
        cursor += step

    return occurrences


def generate_for_patients(patients: Iterable[Patient], target_month: date) -> list[SessionEvent]:
    """Occurrences for every patient, sorted by date then start time."""
    occurrences = [
        occ
        for patient in patients
        for occ in generate_occurrences(patient, target_month)
    ]
    occurrences.sort(key=lambda o: (o.date, parse_minutes(o.time)))
    return occurrences


def _occurrence(patient: Patient, day: date) -> SessionEvent:
    return SessionEvent(
        patient_id=patient.id,
        name=patient.name,
        date=day,
        original_date=day,
        time=patient.time,
        duration=patient.duration,
        rate=patient.rate,
        status=SessionStatus.SCHEDULED,
    )
