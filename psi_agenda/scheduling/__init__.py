"""Scheduling core: frequency rules, occurrence generation and conflicts."""

from psi_agenda.scheduling.conflicts import (
    ConflictResolver,
    check_schedule,
    find_conflict,
    has_conflict,
    suggest_slots,
)
from psi_agenda.scheduling.frequency import (
    FrequencyRule,
    FrequencyType,
    classify_frequency,
    coerce_frequency,
    weekday_index,
)
from psi_agenda.scheduling.keys import OccurrenceKey, PaymentKey
from psi_agenda.scheduling.models import (
    ConflictResult,
    Event,
    Patient,
    PaymentEvent,
    PaymentPatch,
    PaymentStatus,
    SessionEvent,
    SessionPatch,
    SessionStatus,
    Slot,
)
from psi_agenda.scheduling.recurrence import generate_for_patients, generate_occurrences

__all__ = [
    "ConflictResolver",
    "ConflictResult",
    "Event",
    "FrequencyRule",
    "FrequencyType",
    "OccurrenceKey",
    "Patient",
    "PaymentEvent",
    "PaymentKey",
    "PaymentPatch",
    "PaymentStatus",
    "SessionEvent",
    "SessionPatch",
    "SessionStatus",
    "Slot",
    "check_schedule",
    "classify_frequency",
    "coerce_frequency",
    "find_conflict",
    "generate_for_patients",
    "generate_occurrences",
    "has_conflict",
    "suggest_slots",
    "weekday_index",
]
