"""Stateless agenda endpoints: callers send full snapshots and get results back."""

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from psi_agenda.agenda.aggregator import aggregate
from psi_agenda.agenda.state import AgendaState
from psi_agenda.billing.summary import MonthSummary, summarize
from psi_agenda.billing.tasks import TaskList, derive_tasks
from psi_agenda.scheduling.conflicts import ConflictResolver
from psi_agenda.scheduling.models import (
    ConflictResult,
    Event,
    Patient,
    SessionEvent,
)
from psi_agenda.scheduling.recurrence import generate_occurrences

router = APIRouter(prefix="/agenda")


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OccurrencesRequest(_Request):
    patient: Patient
    month: date


class EventsRequest(_Request):
    patients: list[Patient] = Field(default_factory=list)
    month: date
    overrides: dict[str, Any] = Field(default_factory=dict)
    extra_sessions: list[dict[str, Any]] = Field(default_factory=list)
    payment_overrides: dict[str, Any] = Field(default_factory=dict)
    min_date: Optional[date] = None
    today: Optional[date] = None

    def state(self) -> AgendaState:
        return AgendaState.from_storage(
            overrides=self.overrides,
            extra_sessions=self.extra_sessions,
            payment_overrides=self.payment_overrides,
        )


class ConflictRequest(_Request):
    candidate: Patient
    patients: list[Patient] = Field(default_factory=list)
    ignore_id: Optional[str] = None
    max_suggestions: Optional[int] = Field(default=None, ge=0, le=20)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/occurrences", response_model=list[SessionEvent])
async def list_occurrences(body: OccurrencesRequest) -> list[SessionEvent]:
    """Sessions one patient's schedule generates in a month (no overrides)."""
    return generate_occurrences(body.patient, body.month)


@router.post("/events", response_model=list[Event])
async def list_events(body: EventsRequest) -> list[Any]:
    """Visible sessions and payment events for a month."""
    state = body.state()
    return aggregate(
        body.patients,
        body.month,
        overrides=state.overrides,
        extra_sessions=state.extra_sessions,
        payment_overrides=state.payment_overrides,
        min_date=body.min_date,
        today=body.today,
    )


@router.post("/conflicts", response_model=ConflictResult)
async def check_conflicts(body: ConflictRequest) -> ConflictResult:
    """Check a candidate schedule against active patients.

    A conflict is reported in the response body, not as an error status, so
    the caller decides whether to block the save.
    """
    resolver = ConflictResolver.from_settings()
    if body.max_suggestions is not None:
        resolver.max_suggestions = body.max_suggestions
    return resolver.check_schedule(body.candidate, body.patients, body.ignore_id)


@router.post("/summary", response_model=MonthSummary)
async def month_summary(body: EventsRequest) -> MonthSummary:
    """Revenue, receivables and patient flow for a month."""
    events = body.state().aggregate(
        body.patients, body.month, min_date=body.min_date, today=body.today
    )
    return summarize(body.patients, events, body.month)


@router.post("/tasks", response_model=TaskList)
async def month_tasks(body: EventsRequest) -> TaskList:
    """Sessions to confirm, notes to write and payments to collect."""
    events = body.state().aggregate(
        body.patients, body.month, min_date=body.min_date, today=body.today
    )
    return derive_tasks(events, today=body.today)
