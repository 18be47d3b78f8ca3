"""Frequency classification and weekday label handling.

Frequency labels are the wire vocabulary shared with stored patient data:
``Semanal``, ``Quinzenal (Ímpar)``, ``Quinzenal (Par)`` and the legacy plain
``Quinzenal``. Matching happens on normalised text (accents stripped,
lowercase) so ``"quinzenal (impar)"`` and ``"Quinzenal (Ímpar)"`` classify the
same way.
"""

import re
import unicodedata
from datetime import date, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

WEEKLY_LABEL = "Semanal"
BIWEEKLY_ODD_LABEL = "Quinzenal (Ímpar)"
BIWEEKLY_EVEN_LABEL = "Quinzenal (Par)"
LEGACY_BIWEEKLY_LABEL = "Quinzenal"

# Index 0 is Sunday, matching the stored weekday convention.
WEEKDAY_LABELS: list[str] = [
    "domingo",
    "segunda-feira",
    "terça-feira",
    "quarta-feira",
    "quinta-feira",
    "sexta-feira",
    "sábado",
]

_WEEKDAY_PREFIXES: list[tuple[str, int]] = [
    ("domingo", 0),
    ("segunda", 1),
    ("terca", 2),
    ("quarta", 3),
    ("quinta", 4),
    ("sexta", 5),
    ("sabado", 6),
]

_BIWEEKLY_MARKERS = ("quinzenal", "quincenal", "biweekly")
_ODD_RE = re.compile(r"(^|[^a-z0-9])(impar|odd)([^a-z0-9]|$)")
_EVEN_RE = re.compile(r"(^|[^a-z0-9])(par|even)([^a-z0-9]|$)")

# Monday of the reference week used for legacy anchor parity.
_PARITY_EPOCH = date(2020, 1, 6)


class FrequencyType(str, Enum):
    """Recurrence rule families."""

    WEEKLY = "weekly"
    BIWEEKLY_ANCHOR = "biweekly_anchor"
    BIWEEKLY_YEAR = "biweekly_year"


class FrequencyRule(BaseModel):
    """A classified recurrence rule."""

    model_config = ConfigDict(frozen=True)

    type: FrequencyType
    parity: Optional[int] = None

    @property
    def is_biweekly(self) -> bool:
        return self.type != FrequencyType.WEEKLY

    @property
    def interval_weeks(self) -> int:
        """Generator step. Year-parity rules step weekly and filter by parity."""
        return 2 if self.type == FrequencyType.BIWEEKLY_ANCHOR else 1


def normalize_text(value: Any) -> str:
    """Strip accents, lowercase and trim. ``None`` becomes an empty string."""
    if value is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def classify_frequency(value: Any) -> FrequencyRule:
    """Classify a raw frequency label into a recurrence rule.

    Total: every input maps to exactly one rule. Anything that does not look
    biweekly is weekly; biweekly labels without an odd/even marker fall back to
    the legacy anchor rule.
    """
    text = normalize_text(value)
    if not any(marker in text for marker in _BIWEEKLY_MARKERS):
        return FrequencyRule(type=FrequencyType.WEEKLY)

    # Boundary-aware so "par" inside "impar" does not match.
    if _ODD_RE.search(text):
        return FrequencyRule(type=FrequencyType.BIWEEKLY_YEAR, parity=1)
    if _EVEN_RE.search(text):
        return FrequencyRule(type=FrequencyType.BIWEEKLY_YEAR, parity=0)

    return FrequencyRule(type=FrequencyType.BIWEEKLY_ANCHOR)


def coerce_frequency(value: Any) -> str:
    """Migrate the legacy plain ``Quinzenal`` label to ``Quinzenal (Ímpar)``."""
    raw = "" if value is None else str(value).strip()
    if normalize_text(raw) == normalize_text(LEGACY_BIWEEKLY_LABEL):
        return BIWEEKLY_ODD_LABEL
    return raw


def weekday_index(value: Any) -> Optional[int]:
    """Resolve a Portuguese weekday label to 0 (Sunday) .. 6 (Saturday).

    Accepts short (``segunda``) and long (``segunda-feira``) forms, with or
    without accents. Returns ``None`` when the label is not recognised.
    """
    text = normalize_text(value)
    if not text:
        return None
    for prefix, idx in _WEEKDAY_PREFIXES:
        if text.startswith(prefix):
            return idx
    return None


def weekday_of(day: date) -> int:
    """Weekday index of *day* using the Sunday=0 convention."""
    return (day.weekday() + 1) % 7


def iso_week(day: date) -> int:
    return day.isocalendar()[1]


def iso_week_parity(day: date) -> int:
    return iso_week(day) % 2


def first_weekday_on_or_after(start: date, weekday: int) -> date:
    """First date on or after *start* falling on *weekday* (Sunday=0)."""
    offset = (weekday - weekday_of(start)) % 7
    return start + timedelta(days=offset)


def anchor_week_parity(start: Optional[date], weekday: Optional[int]) -> Optional[int]:
    """Parity of the legacy anchor week for a ``Quinzenal`` schedule.

    The anchor is the first session date on or after *start*; its parity is the
    number of whole weeks elapsed since a fixed Monday, modulo 2. This value
    moves whenever ``startDate`` is edited, which is why legacy anchor
    schedules cannot be proven compatible with year-parity ones.
    """
    if start is None or weekday is None:
        return None
    anchor = first_weekday_on_or_after(start, weekday)
    monday = anchor - timedelta(days=anchor.weekday())
    weeks = (monday - _PARITY_EPOCH).days // 7
    return weeks % 2
