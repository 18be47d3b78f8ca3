"""Override addressing.

Overrides are keyed internally by typed tuples. The string forms below are
the persisted format and only appear at the storage boundary:

- sessions: ``"{patientId}_{YYYY-MM-DD}"`` (the occurrence's original date)
- payments: ``"pay_{patientId}_{YYYY-MM-DD}"``

Older stored session keys carry a full ISO timestamp instead of a date
(``"7_2024-03-04T03:00:00.000Z"``); those are read back into the local
calendar date.
"""

import logging
from datetime import date
from typing import Any, Mapping, NamedTuple, Optional

from pydantic import ValidationError

from psi_agenda.scheduling.models import PaymentPatch, SessionPatch, parse_date

logger = logging.getLogger(__name__)

PAYMENT_PREFIX = "pay_"

OVERRIDES_BUCKET = "appointment_overrides"
EXTRA_SESSIONS_BUCKET = "extra_sessions"
PAYMENT_OVERRIDES_BUCKET = "payment_overrides"


def scoped_key(base_key: str, workspace_id: Optional[str]) -> str:
    """Scope a storage bucket name to a workspace."""
    if not workspace_id:
        return base_key
    return f"{base_key}_{workspace_id}"


class OccurrenceKey(NamedTuple):
    """Stable address of a generated occurrence."""

    patient_id: str
    original_date: date

    def to_storage(self) -> str:
        return f"{self.patient_id}_{self.original_date.isoformat()}"

    @classmethod
    def parse(cls, raw: str) -> Optional["OccurrenceKey"]:
        patient_id, sep, date_part = str(raw).rpartition("_")
        if not sep or not patient_id:
            return None
        parsed = parse_date(date_part)
        if parsed is None:
            return None
        return cls(patient_id, parsed)


class PaymentKey(NamedTuple):
    """Stable address of a payment event."""

    patient_id: str
    date: date

    def to_storage(self) -> str:
        return f"{PAYMENT_PREFIX}{self.patient_id}_{self.date.isoformat()}"

    @classmethod
    def parse(cls, raw: str) -> Optional["PaymentKey"]:
        text = str(raw)
        if not text.startswith(PAYMENT_PREFIX):
            return None
        patient_id, sep, date_part = text[len(PAYMENT_PREFIX):].rpartition("_")
        if not sep or not patient_id:
            return None
        parsed = parse_date(date_part)
        if parsed is None:
            return None
        return cls(patient_id, parsed)


def occurrence_key(patient_id: Any, original_date: date) -> OccurrenceKey:
    return OccurrenceKey(str(patient_id), original_date)


def payment_key(patient_id: Any, due_date: date) -> PaymentKey:
    return PaymentKey(str(patient_id), due_date)


def load_session_overrides(raw: Optional[Mapping[str, Any]]) -> dict[OccurrenceKey, SessionPatch]:
    """Read a persisted session-override map, skipping malformed entries."""
    result: dict[OccurrenceKey, SessionPatch] = {}
    for raw_key, value in (raw or {}).items():
        key = OccurrenceKey.parse(raw_key)
        if key is None or not isinstance(value, Mapping):
            logger.warning("Skipping malformed session override %r", raw_key)
            continue
        try:
            patch = SessionPatch.model_validate(value)
        except ValidationError as e:
            logger.warning("Skipping invalid session override %r: %s", raw_key, e)
            continue
        # Two legacy keys can collapse onto the same date; later entries win.
        existing = result.get(key)
        result[key] = existing.merged_with(patch) if existing else patch
    return result


def load_payment_overrides(raw: Optional[Mapping[str, Any]]) -> dict[PaymentKey, PaymentPatch]:
    """Read a persisted payment-override map, skipping malformed entries."""
    result: dict[PaymentKey, PaymentPatch] = {}
    for raw_key, value in (raw or {}).items():
        key = PaymentKey.parse(raw_key)
        if key is None or not isinstance(value, Mapping):
            logger.warning("Skipping malformed payment override %r", raw_key)
            continue
        try:
            result[key] = PaymentPatch.model_validate(value)
        except ValidationError as e:
            logger.warning("Skipping invalid payment override %r: %s", raw_key, e)
    return result


def dump_session_overrides(overrides: Mapping[OccurrenceKey, SessionPatch]) -> dict[str, Any]:
    return {
        key.to_storage(): patch.model_dump(mode="json", by_alias=True, exclude_unset=True)
        for key, patch in overrides.items()
    }


def dump_payment_overrides(overrides: Mapping[PaymentKey, PaymentPatch]) -> dict[str, Any]:
    return {
        key.to_storage(): patch.model_dump(mode="json", by_alias=True, exclude_unset=True)
        for key, patch in overrides.items()
    }
