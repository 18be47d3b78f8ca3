"""Schedule conflict detection and free-slot suggestions."""

import logging
from typing import Iterable, Optional

from psi_agenda.config import get_settings
from psi_agenda.scheduling.frequency import (
    WEEKDAY_LABELS,
    FrequencyRule,
    FrequencyType,
    anchor_week_parity,
)
from psi_agenda.scheduling.models import (
    ConflictResult,
    Patient,
    Slot,
    format_minutes,
    parse_minutes,
)

logger = logging.getLogger(__name__)

# Weekday scan order for suggestions after the requested day.
_SCAN_ORDER = [1, 2, 3, 4, 5, 6, 0]
_OTHER_DAY_PENALTY = 24 * 60


def _week_parity(patient: Patient, rule: FrequencyRule) -> Optional[int]:
    if rule.type == FrequencyType.BIWEEKLY_YEAR:
        return rule.parity
    return anchor_week_parity(patient.start_date, patient.weekday_index)


def slots_conflict(candidate: Patient, other: Patient) -> bool:
    """Whether two weekly slots can ever occupy the same time.

    Biweekly slots on opposite weeks never meet. A legacy anchor rule paired
    with a year-parity rule cannot be proven to alternate and counts as a
    conflict; so does an anchor rule whose parity cannot be determined.
    """
    day = candidate.weekday_index
    if day is None or day != other.weekday_index:
        return False
    if not candidate.time or not other.time:
        return False
    if not (candidate.start_minutes < other.end_minutes and other.start_minutes < candidate.end_minutes):
        return False

    r1, r2 = candidate.rule, other.rule
    if r1.is_biweekly and r2.is_biweekly:
        if r1.type != r2.type:
            return True
        p1 = _week_parity(candidate, r1)
        p2 = _week_parity(other, r2)
        if p1 is None or p2 is None:
            return True
        return p1 == p2

    return True


class ConflictResolver:
    """Checks a candidate slot against active patients and proposes alternatives."""

    def __init__(
        self,
        grid_start: str = "07:00",
        grid_end: str = "21:00",
        step_minutes: int = 10,
        max_suggestions: int = 3,
    ) -> None:
        self.grid_start = parse_minutes(grid_start)
        self.grid_end = parse_minutes(grid_end)
        self.step_minutes = max(1, step_minutes)
        self.max_suggestions = max_suggestions

    @classmethod
    def from_settings(cls) -> "ConflictResolver":
        settings = get_settings()
        return cls(
            grid_start=settings.suggestion_start,
            grid_end=settings.suggestion_end,
            step_minutes=settings.suggestion_step_minutes,
            max_suggestions=settings.max_suggestions,
        )

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def find_conflict(
        self,
        candidate: Patient,
        existing: Iterable[Patient],
        ignore_id: Optional[str] = None,
    ) -> Optional[Patient]:
        """First active patient whose slot collides with *candidate*, if any."""
        if not candidate.is_active:
            return None
        ignore = str(ignore_id) if ignore_id is not None else None
        for other in existing:
            if not other.is_active:
                continue
            if ignore is not None and other.id == ignore:
                continue
            if candidate.id and other.id == candidate.id:
                continue
            if slots_conflict(candidate, other):
                return other
        return None

    def has_conflict(
        self,
        candidate: Patient,
        existing: Iterable[Patient],
        ignore_id: Optional[str] = None,
    ) -> bool:
        return self.find_conflict(candidate, existing, ignore_id) is not None

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def suggest_slots(
        self,
        candidate: Patient,
        existing: Iterable[Patient],
        ignore_id: Optional[str] = None,
        max_suggestions: Optional[int] = None,
    ) -> list[Slot]:
        """Free slots nearest to the requested one, same weekday first."""
        limit = self.max_suggestions if max_suggestions is None else max_suggestions
        if limit <= 0:
            return []

        existing = list(existing)
        base_day = candidate.day_of_week or WEEKDAY_LABELS[1]
        base_idx = candidate.weekday_index if candidate.weekday_index is not None else 1
        base_min = parse_minutes(candidate.time or "09:00")

        days = [(base_day, base_idx)] + [
            (WEEKDAY_LABELS[idx], idx) for idx in _SCAN_ORDER if idx != base_idx
        ]

        found: list[tuple[int, Slot]] = []
        for label, idx in days:
            for minutes in range(self.grid_start, self.grid_end + 1, self.step_minutes):
                if idx == base_idx and minutes == base_min:
                    continue
                time = format_minutes(minutes)
                attempt = candidate.model_copy(update={"day_of_week": label, "time": time})
                if self.has_conflict(attempt, existing, ignore_id):
                    continue
                score = abs(minutes - base_min) + (0 if idx == base_idx else _OTHER_DAY_PENALTY)
                found.append((score, Slot(day_of_week=label, time=time)))
            # Any same-day slot outranks every other-day slot.
            if idx == base_idx and len(found) >= limit:
                break

        found.sort(key=lambda item: item[0])
        return [slot for _, slot in found[:limit]]

    # ------------------------------------------------------------------
    # Combined check
    # ------------------------------------------------------------------

    def check_schedule(
        self,
        candidate: Patient,
        existing: Iterable[Patient],
        ignore_id: Optional[str] = None,
    ) -> ConflictResult:
        """Structured conflict report for saving *candidate*'s schedule."""
        existing = list(existing)
        other = self.find_conflict(candidate, existing, ignore_id)
        if other is None:
            return ConflictResult(has_conflict=False)

        logger.info(
            "Schedule conflict: candidate %r (%s %s) overlaps patient %s",
            candidate.id or "<new>", candidate.day_of_week, candidate.time, other.id,
        )
        window = f"{format_minutes(candidate.start_minutes)}–{format_minutes(candidate.end_minutes)}"
        return ConflictResult(
            has_conflict=True,
            conflicting_patient_id=other.id,
            conflicting_patient_name=other.name,
            window=window,
            suggestions=self.suggest_slots(candidate, existing, ignore_id),
        )


def has_conflict(
    candidate: Patient,
    existing: Iterable[Patient],
    ignore_id: Optional[str] = None,
) -> bool:
    return ConflictResolver.from_settings().has_conflict(candidate, existing, ignore_id)


def suggest_slots(
    candidate: Patient,
    existing: Iterable[Patient],
    ignore_id: Optional[str] = None,
    max_suggestions: int = 3,
) -> list[Slot]:
    return ConflictResolver.from_settings().suggest_slots(
        candidate, existing, ignore_id, max_suggestions=max_suggestions
    )


def find_conflict(
    candidate: Patient,
    existing: Iterable[Patient],
    ignore_id: Optional[str] = None,
) -> Optional[Patient]:
    return ConflictResolver.from_settings().find_conflict(candidate, existing, ignore_id)


def check_schedule(
    candidate: Patient,
    existing: Iterable[Patient],
    ignore_id: Optional[str] = None,
) -> ConflictResult:
    return ConflictResolver.from_settings().check_schedule(candidate, existing, ignore_id)
