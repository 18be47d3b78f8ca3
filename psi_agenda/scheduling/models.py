"""Pydantic models for the scheduling and billing core.

Wire names are camelCase (``dayOfWeek``, ``originalDate``...) to stay
compatible with stored patient and override data; attributes are snake_case.
Validators are lenient: malformed dates become ``None`` and malformed money
becomes zero, so bad records yield empty results instead of errors.
"""

import datetime as dt
import logging
import re
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from psi_agenda.config import get_settings
from psi_agenda.scheduling.frequency import (
    FrequencyRule,
    classify_frequency,
    coerce_frequency,
    normalize_text,
    weekday_index,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class SessionStatus(str, Enum):
    """Session lifecycle statuses."""

    SCHEDULED = "scheduled"
    OCCURRED = "occurred"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    MISSED_PAID = "missed_paid"
    PAID = "paid"  # legacy, equivalent to occurred


NON_BILLABLE_STATUSES = frozenset({SessionStatus.CANCELLED, SessionStatus.RESCHEDULED})

# Set by cancelling or rescheduling; cleared when a session is re-opened.
RESCHEDULE_MARKERS = ("cancelled_at", "rescheduled_at", "rescheduled_to", "new_date", "new_time")


class PaymentStatus(str, Enum):
    """Payment event statuses."""

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class PayRecurrence(str, Enum):
    """How often a patient is billed."""

    MONTHLY = "Mensal"
    WEEKLY = "Semanal"


# ---------------------------------------------------------------------------
# Lenient coercion helpers
# ---------------------------------------------------------------------------

def local_timezone() -> dt.tzinfo:
    """Configured local timezone, UTC when the zone database lacks it."""
    name = get_settings().timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return dt.timezone.utc


def parse_date(value: Any) -> Optional[dt.date]:
    """Parse ISO dates, ISO timestamps and ``DD/MM/YYYY``; ``None`` if invalid.

    Timezone-aware timestamps are converted to the local timezone before the
    calendar date is taken.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dt.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(local_timezone())
        return value.date()
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return dt.date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return parse_date(dt.datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    try:
        return dt.datetime.strptime(text, "%d/%m/%Y").date()
    except ValueError:
        return None


def parse_money(value: Any) -> Decimal:
    """Parse a money amount (``150``, ``"150.00"``, ``"R$ 1.250,50"``); 0 if invalid."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        text = re.sub(r"[^0-9,.\-]", "", str(value))
        if "," in text:
            text = re.sub(r"\.(?=\d{3}(?:\D|$))", "", text).replace(",", ".")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return ZERO
    return amount if amount.is_finite() else ZERO


def parse_minutes(value: Any) -> int:
    """Minutes since midnight for an ``HH:MM`` string; 0 when unparseable."""
    parts = str(value or "").strip().split(":")
    try:
        hours = int(parts[0])
    except ValueError:
        hours = 0
    try:
        minutes = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        minutes = 0
    return hours * 60 + minutes


def format_minutes(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


def local_today() -> dt.date:
    """Calendar date in the configured timezone."""
    return dt.datetime.now(local_timezone()).date()


def _coerce_duration(value: Any) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return get_settings().default_session_minutes
    return minutes if minutes > 0 else get_settings().default_session_minutes


def _coerce_status(value: Any) -> SessionStatus:
    if isinstance(value, SessionStatus):
        return value
    try:
        return SessionStatus(str(value or "scheduled").strip().lower())
    except ValueError:
        return SessionStatus.SCHEDULED


def _coerce_flag(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    text = normalize_text(value)
    if text in ("true", "1", "sim", "yes"):
        return True
    if text in ("false", "0", "nao", "no", ""):
        return False
    return None


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Patient
# ---------------------------------------------------------------------------

class Patient(_CamelModel):
    """A patient record as provided by the external store. Read-only here."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    name: Optional[str] = None
    rate: Decimal = ZERO
    duration: int = 50
    frequency: str = "Semanal"
    day_of_week: str = ""
    time: str = ""
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    active: str = "Não"
    pay_day: Optional[str] = None
    pay_recurrence: Optional[str] = None
    last_adjustment: Optional[dt.date] = None
    mode: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> str:
        return str(v).strip()

    @field_validator("rate", mode="before")
    @classmethod
    def _rate(cls, v: Any) -> Decimal:
        return parse_money(v)

    @field_validator("duration", mode="before")
    @classmethod
    def _duration(cls, v: Any) -> int:
        return _coerce_duration(v)

    @field_validator("frequency", mode="before")
    @classmethod
    def _frequency(cls, v: Any) -> str:
        return coerce_frequency(v) or "Semanal"

    @field_validator("day_of_week", "time", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("start_date", "end_date", "last_adjustment", mode="before")
    @classmethod
    def _dates(cls, v: Any) -> Optional[dt.date]:
        return parse_date(v)

    @field_validator("active", mode="before")
    @classmethod
    def _active(cls, v: Any) -> str:
        if isinstance(v, bool):
            return "Sim" if v else "Não"
        return "" if v is None else str(v).strip()

    @field_validator("pay_day", "pay_recurrence", mode="before")
    @classmethod
    def _optional_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @property
    def is_active(self) -> bool:
        return normalize_text(self.active) == "sim"

    @property
    def weekday_index(self) -> Optional[int]:
        """Derived from ``day_of_week`` on every access, never cached."""
        return weekday_index(self.day_of_week)

    @property
    def rule(self) -> FrequencyRule:
        return classify_frequency(self.frequency)

    @property
    def start_minutes(self) -> int:
        return parse_minutes(self.time)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration

    @property
    def billing_recurrence(self) -> PayRecurrence:
        if normalize_text(self.pay_recurrence) == "semanal":
            return PayRecurrence.WEEKLY
        return PayRecurrence.MONTHLY

    @property
    def is_billed(self) -> bool:
        return bool(self.pay_day or self.pay_recurrence)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class RescheduleRef(_CamelModel):
    """Where a rescheduled session went, or where a moved session came from."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    patient_id: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None

    @field_validator("patient_id", "time", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, v: Any) -> Optional[dt.date]:
        return parse_date(v)


def _coerce_reschedule_ref(value: Any) -> Any:
    """Accept the stored ``{date, time}`` object or an older ``"YYYY-MM-DD HH:MM"`` string."""
    if value is None or isinstance(value, (RescheduleRef, dict)):
        return value
    if isinstance(value, str):
        parts = value.strip().split(maxsplit=1)
        if not parts:
            return None
        return {"date": parts[0], "time": parts[1] if len(parts) > 1 else None}
    return None


class SessionEvent(_CamelModel):
    """One concrete session: a generated occurrence or an extra session.

    Keys the model does not declare are kept, so stored extra sessions survive
    a load/dump cycle unchanged.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    kind: Literal["session"] = "session"
    id: Optional[str] = None
    patient_id: str
    name: Optional[str] = None
    date: dt.date
    original_date: dt.date
    time: str = ""
    duration: int = 50
    rate: Decimal = ZERO
    status: SessionStatus = SessionStatus.SCHEDULED
    is_extra: bool = False
    cancelled_at: Optional[dt.datetime] = None
    rescheduled_at: Optional[dt.datetime] = None
    rescheduled_to: Optional[RescheduleRef] = None
    rescheduled_from: Optional[RescheduleRef] = None
    new_date: Optional[dt.date] = None
    new_time: Optional[str] = None
    notes: Optional[str] = None
    notes_done: Optional[bool] = None

    @model_validator(mode="before")
    @classmethod
    def _default_original_date(cls, data: Any) -> Any:
        # Extra sessions stored without an original date are keyed by their date.
        if isinstance(data, dict):
            if data.get("originalDate") is None and data.get("original_date") is None:
                data = {**data, "original_date": data.get("date")}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("patient_id", mode="before")
    @classmethod
    def _patient_id(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("date", "original_date", "new_date", mode="before")
    @classmethod
    def _dates(cls, v: Any) -> Any:
        parsed = parse_date(v)
        return v if parsed is None else parsed

    @field_validator("rate", mode="before")
    @classmethod
    def _rate(cls, v: Any) -> Decimal:
        return parse_money(v)

    @field_validator("duration", mode="before")
    @classmethod
    def _duration(cls, v: Any) -> int:
        return _coerce_duration(v)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> SessionStatus:
        return _coerce_status(v)

    @field_validator("rescheduled_to", "rescheduled_from", mode="before")
    @classmethod
    def _reschedule_ref(cls, v: Any) -> Any:
        return _coerce_reschedule_ref(v)

    @field_validator("notes_done", mode="before")
    @classmethod
    def _notes_done(cls, v: Any) -> Optional[bool]:
        return _coerce_flag(v)

    @property
    def is_billable(self) -> bool:
        return self.status not in NON_BILLABLE_STATUSES

    @property
    def is_visible(self) -> bool:
        return self.status not in NON_BILLABLE_STATUSES

    @property
    def has_occurred(self) -> bool:
        return self.status in (SessionStatus.OCCURRED, SessionStatus.PAID)


class PaymentEvent(_CamelModel):
    """A payment due for one billing cycle of one patient."""

    kind: Literal["payment"] = "payment"
    id: str
    patient_id: str
    name: Optional[str] = None
    date: dt.date
    original_date: dt.date
    time: str = "09:00"
    duration: int = 30
    rate: Decimal = ZERO
    unit_rate: Decimal = ZERO
    sessions_count: int = 0
    period_start: dt.date
    period_end: dt.date
    status: PaymentStatus = PaymentStatus.PENDING
    pay_recurrence: PayRecurrence = PayRecurrence.MONTHLY
    pay_day: Optional[str] = None
    paid_at: Optional[dt.datetime] = None
    mode: Optional[str] = None


Event = Annotated[Union[SessionEvent, PaymentEvent], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Override patches
# ---------------------------------------------------------------------------

class SessionPatch(_CamelModel):
    """Partial update applied to a session. Unknown keys are preserved."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    status: Optional[SessionStatus] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None
    duration: Optional[int] = None
    rate: Optional[Decimal] = None
    cancelled_at: Optional[dt.datetime] = None
    rescheduled_at: Optional[dt.datetime] = None
    rescheduled_to: Optional[RescheduleRef] = None
    new_date: Optional[dt.date] = None
    new_time: Optional[str] = None
    notes: Optional[str] = None
    notes_done: Optional[bool] = None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> Optional[SessionStatus]:
        return None if v is None else _coerce_status(v)

    @field_validator("rescheduled_to", mode="before")
    @classmethod
    def _reschedule_ref(cls, v: Any) -> Any:
        return _coerce_reschedule_ref(v)

    @field_validator("notes_done", mode="before")
    @classmethod
    def _notes_done(cls, v: Any) -> Optional[bool]:
        return _coerce_flag(v)

    @field_validator("date", "new_date", mode="before")
    @classmethod
    def _dates(cls, v: Any) -> Optional[dt.date]:
        return parse_date(v)

    @field_validator("rate", mode="before")
    @classmethod
    def _rate(cls, v: Any) -> Optional[Decimal]:
        return None if v is None else parse_money(v)

    def changes(self) -> dict[str, Any]:
        """Fields explicitly present in this patch (``None`` clears a value)."""
        return self.model_dump(exclude_unset=True)

    def merged_with(self, other: "SessionPatch") -> "SessionPatch":
        merged = {**self.changes(), **other.changes()}
        if other.status == SessionStatus.SCHEDULED:
            for name in RESCHEDULE_MARKERS:
                if name not in other.model_fields_set:
                    merged[name] = None
        return SessionPatch.model_validate(merged)


class PaymentPatch(_CamelModel):
    """Partial update applied to a payment event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    status: Optional[PaymentStatus] = None
    paid_at: Optional[dt.datetime] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)

    def merged_with(self, other: "PaymentPatch") -> "PaymentPatch":
        return PaymentPatch.model_validate({**self.changes(), **other.changes()})


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

class Slot(_CamelModel):
    """A weekly slot: weekday label plus ``HH:MM`` start."""

    day_of_week: str
    time: str


class ConflictResult(_CamelModel):
    """Outcome of a schedule check. Returned, never raised."""

    has_conflict: bool = False
    conflicting_patient_id: Optional[str] = None
    conflicting_patient_name: Optional[str] = None
    window: Optional[str] = None
    suggestions: list[Slot] = Field(default_factory=list)
