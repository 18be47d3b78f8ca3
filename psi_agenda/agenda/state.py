"""Override state and mutation operations.

``AgendaState`` is an immutable snapshot of a workspace's overrides, extra
sessions and payment overrides. Every mutation returns a new state, so a
reader holding the previous snapshot never observes a partial update.

``Agenda`` keeps the current snapshot for one workspace and hands each new one
to a ``PersistenceQueue``. Writes are best-effort and happen in the
background: a failed write is logged and the in-memory state stays
authoritative. That trades durability for responsiveness, and an unflushed
edit is lost if the process dies before the queue drains.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Sequence

from pydantic import ValidationError

from psi_agenda.agenda.aggregator import AgendaEvent, aggregate, apply_patch
from psi_agenda.core.persistence import PersistenceQueue
from psi_agenda.scheduling.keys import (
    EXTRA_SESSIONS_BUCKET,
    OVERRIDES_BUCKET,
    PAYMENT_OVERRIDES_BUCKET,
    OccurrenceKey,
    PaymentKey,
    dump_payment_overrides,
    dump_session_overrides,
    load_payment_overrides,
    load_session_overrides,
    occurrence_key,
    payment_key,
)
from psi_agenda.scheduling.models import (
    RESCHEDULE_MARKERS,
    Patient,
    PaymentPatch,
    RescheduleRef,
    SessionEvent,
    SessionPatch,
    SessionStatus,
)

logger = logging.getLogger(__name__)


class ExtraSessionNotFound(LookupError):
    """Raised when patching an extra session id that is not in the state."""


def _new_extra_id() -> str:
    return f"extra_{uuid.uuid4().hex}"


def _load_extras(raw: Optional[Iterable[Any]]) -> tuple[SessionEvent, ...]:
    extras: list[SessionEvent] = []
    for item in raw or []:
        if not isinstance(item, Mapping):
            logger.warning("Skipping malformed extra session %r", item)
            continue
        try:
            extra = SessionEvent.model_validate({**item, "isExtra": True})
        except ValidationError as e:
            logger.warning("Skipping invalid extra session %r: %s", item.get("id"), e)
            continue
        if not extra.id:
            extra = extra.model_copy(update={"id": _new_extra_id()})
            logger.info("Assigned id %s to stored extra session on %s", extra.id, extra.date)
        extras.append(extra)
    return tuple(extras)


@dataclass(frozen=True)
class AgendaState:
    overrides: Mapping[OccurrenceKey, SessionPatch] = field(default_factory=dict)
    extra_sessions: tuple[SessionEvent, ...] = ()
    payment_overrides: Mapping[PaymentKey, PaymentPatch] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "overrides", MappingProxyType(dict(self.overrides)))
        object.__setattr__(self, "extra_sessions", tuple(self.extra_sessions))
        object.__setattr__(self, "payment_overrides", MappingProxyType(dict(self.payment_overrides)))

    # ------------------------------------------------------------------
    # Storage boundary
    # ------------------------------------------------------------------

    @classmethod
    def from_storage(
        cls,
        overrides: Optional[Mapping[str, Any]] = None,
        extra_sessions: Optional[Iterable[Any]] = None,
        payment_overrides: Optional[Mapping[str, Any]] = None,
    ) -> "AgendaState":
        """Build a state from the persisted string-keyed buckets."""
        return cls(
            overrides=load_session_overrides(overrides if isinstance(overrides, Mapping) else None),
            extra_sessions=_load_extras(extra_sessions if isinstance(extra_sessions, list) else None),
            payment_overrides=load_payment_overrides(
                payment_overrides if isinstance(payment_overrides, Mapping) else None
            ),
        )

    def to_storage(self) -> dict[str, Any]:
        return {
            OVERRIDES_BUCKET: dump_session_overrides(self.overrides),
            EXTRA_SESSIONS_BUCKET: [
                s.model_dump(mode="json", by_alias=True, exclude_none=True)
                for s in self.extra_sessions
            ],
            PAYMENT_OVERRIDES_BUCKET: dump_payment_overrides(self.payment_overrides),
        }

    # ------------------------------------------------------------------
    # Mutations (copy-on-write)
    # ------------------------------------------------------------------

    def update_appointment(self, session: SessionEvent, patch: SessionPatch) -> "AgendaState":
        """Patch an extra session in place, or upsert the occurrence's override."""
        if session.is_extra:
            if not any(s.id == session.id for s in self.extra_sessions):
                raise ExtraSessionNotFound(session.id)
            extras = tuple(
                apply_patch(s, patch) if s.id == session.id else s
                for s in self.extra_sessions
            )
            return AgendaState(self.overrides, extras, self.payment_overrides)

        key = occurrence_key(session.patient_id, session.original_date)
        existing = self.overrides.get(key)
        merged = existing.merged_with(patch) if existing else patch
        return AgendaState({**self.overrides, key: merged}, self.extra_sessions, self.payment_overrides)

    def add_appointment(self, session: SessionEvent) -> "AgendaState":
        """Append *session* as a new scheduled extra session with a fresh id."""
        extra = session.model_copy(
            update={
                "id": _new_extra_id(),
                "patient_id": session.patient_id.strip(),
                "original_date": session.date,
                "is_extra": True,
                "status": SessionStatus.SCHEDULED,
            }
        )
        return AgendaState(self.overrides, (*self.extra_sessions, extra), self.payment_overrides)

    def reschedule_appointment(
        self,
        session: SessionEvent,
        new_date: date,
        new_time: str,
        rescheduled_at: Optional[datetime] = None,
    ) -> "AgendaState":
        """Move one session to another slot.

        The source is marked ``rescheduled`` with a pointer to the target, and a
        scheduled extra session pointing back at the source is appended. The
        new extra is the last entry of ``extra_sessions``.
        """
        rescheduled_at = rescheduled_at or datetime.now(timezone.utc)
        marked = self.update_appointment(
            session,
            SessionPatch(
                status=SessionStatus.RESCHEDULED,
                rescheduled_at=rescheduled_at,
                rescheduled_to=RescheduleRef(date=new_date, time=new_time),
            ),
        )
        moved = session.model_copy(
            update={
                **dict.fromkeys(RESCHEDULE_MARKERS),
                "date": new_date,
                "time": new_time,
                "rescheduled_at": rescheduled_at,
                "rescheduled_from": RescheduleRef(
                    patient_id=session.patient_id,
                    date=session.original_date,
                    time=session.time,
                ),
            }
        )
        return marked.add_appointment(moved)

    def update_payment(self, patient_id: str, due_date: date, patch: PaymentPatch) -> "AgendaState":
        key = payment_key(patient_id, due_date)
        existing = self.payment_overrides.get(key)
        merged = existing.merged_with(patch) if existing else patch
        return AgendaState(self.overrides, self.extra_sessions, {**self.payment_overrides, key: merged})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def aggregate(
        self,
        patients: Sequence[Patient],
        month: date,
        min_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> list[AgendaEvent]:
        return aggregate(
            patients,
            month,
            overrides=self.overrides,
            extra_sessions=self.extra_sessions,
            payment_overrides=self.payment_overrides,
            min_date=min_date,
            today=today,
        )


class Agenda:
    """Current state of one workspace plus background persistence."""

    def __init__(
        self,
        state: Optional[AgendaState] = None,
        queue: Optional[PersistenceQueue] = None,
    ) -> None:
        self._state = state or AgendaState()
        self._queue = queue

    @property
    def state(self) -> AgendaState:
        return self._state

    def update_appointment(self, session: SessionEvent, patch: SessionPatch) -> AgendaState:
        return self._commit(self._state.update_appointment(session, patch))

    def add_appointment(self, session: SessionEvent) -> AgendaState:
        return self._commit(self._state.add_appointment(session))

    def reschedule_appointment(
        self,
        session: SessionEvent,
        new_date: date,
        new_time: str,
        rescheduled_at: Optional[datetime] = None,
    ) -> AgendaState:
        return self._commit(
            self._state.reschedule_appointment(session, new_date, new_time, rescheduled_at)
        )

    def update_payment(self, patient_id: str, due_date: date, patch: PaymentPatch) -> AgendaState:
        return self._commit(self._state.update_payment(patient_id, due_date, patch))

    def _commit(self, state: AgendaState) -> AgendaState:
        self._state = state
        if self._queue is not None:
            self._queue.submit(state.to_storage())
        return state
