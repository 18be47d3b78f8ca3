"""Workspace endpoints: stored override state and its mutations.

Mutations answer from memory immediately; the store is updated in the
background after a short quiet period.
"""

import logging
import datetime as dt
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from psi_agenda.agenda.state import ExtraSessionNotFound
from psi_agenda.api.dependencies import AgendaRegistry, get_registry
from psi_agenda.billing.tasks import TaskList, derive_tasks
from psi_agenda.scheduling.models import (
    Event,
    Patient,
    PaymentPatch,
    SessionEvent,
    SessionPatch,
    SessionStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workspaces")


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WorkspaceEventsRequest(_Request):
    patients: list[Patient] = Field(default_factory=list)
    month: dt.date
    min_date: Optional[dt.date] = None
    today: Optional[dt.date] = None


class AppointmentUpdate(_Request):
    session: SessionEvent
    patch: SessionPatch


class RescheduleRequest(_Request):
    session: SessionEvent
    new_date: dt.date
    new_time: str = Field(pattern=r"^\d{1,2}:\d{2}$")


class PaymentUpdate(_Request):
    patient_id: str
    date: dt.date
    patch: PaymentPatch


@router.get("/{workspace_id}/state")
async def get_state(
    workspace_id: str,
    registry: AgendaRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Current override buckets in their stored format."""
    agenda = await registry.get(workspace_id)
    return agenda.state.to_storage()


@router.post("/{workspace_id}/events", response_model=list[Event])
async def workspace_events(
    workspace_id: str,
    body: WorkspaceEventsRequest,
    registry: AgendaRegistry = Depends(get_registry),
) -> list[Any]:
    agenda = await registry.get(workspace_id)
    return agenda.state.aggregate(
        body.patients, body.month, min_date=body.min_date, today=body.today
    )


@router.post("/{workspace_id}/appointments", response_model=SessionEvent, status_code=201)
async def add_appointment(
    workspace_id: str,
    body: SessionEvent,
    registry: AgendaRegistry = Depends(get_registry),
) -> SessionEvent:
    """Create an extra session. Returns it with its generated id."""
    if not body.patient_id:
        raise HTTPException(status_code=422, detail="patientId is required")
    agenda = await registry.get(workspace_id)
    state = agenda.add_appointment(body)
    return state.extra_sessions[-1]


@router.patch("/{workspace_id}/appointments")
async def update_appointment(
    workspace_id: str,
    body: AppointmentUpdate,
    registry: AgendaRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Patch one session. A ``rescheduled`` patch carrying ``newDate`` and
    ``newTime`` moves the session like ``POST .../appointments/reschedule``."""
    agenda = await registry.get(workspace_id)
    patch = body.patch
    try:
        if patch.status == SessionStatus.RESCHEDULED and patch.new_date and patch.new_time:
            state = agenda.reschedule_appointment(body.session, patch.new_date, patch.new_time)
        else:
            state = agenda.update_appointment(body.session, patch)
    except ExtraSessionNotFound:
        raise HTTPException(status_code=404, detail=f"Extra session not found: {body.session.id}")
    return state.to_storage()


@router.post(
    "/{workspace_id}/appointments/reschedule",
    response_model=SessionEvent,
    status_code=201,
)
async def reschedule_appointment(
    workspace_id: str,
    body: RescheduleRequest,
    registry: AgendaRegistry = Depends(get_registry),
) -> SessionEvent:
    """Mark a session rescheduled and create the extra session at the new slot."""
    agenda = await registry.get(workspace_id)
    try:
        state = agenda.reschedule_appointment(body.session, body.new_date, body.new_time)
    except ExtraSessionNotFound:
        raise HTTPException(status_code=404, detail=f"Extra session not found: {body.session.id}")
    logger.info(
        "Rescheduled %s %s to %s %s in workspace %s",
        body.session.patient_id, body.session.original_date, body.new_date, body.new_time, workspace_id,
    )
    return state.extra_sessions[-1]


@router.patch("/{workspace_id}/payments")
async def update_payment(
    workspace_id: str,
    body: PaymentUpdate,
    registry: AgendaRegistry = Depends(get_registry),
) -> dict[str, Any]:
    agenda = await registry.get(workspace_id)
    state = agenda.update_payment(body.patient_id, body.date, body.patch)
    return state.to_storage()


@router.post("/{workspace_id}/flush", status_code=204)
async def flush_workspace(
    workspace_id: str,
    registry: AgendaRegistry = Depends(get_registry),
) -> None:
    """Write pending changes to the store now."""
    await registry.flush(workspace_id)


@router.post("/{workspace_id}/tasks", response_model=TaskList)
async def workspace_tasks(
    workspace_id: str,
    body: WorkspaceEventsRequest,
    registry: AgendaRegistry = Depends(get_registry),
) -> TaskList:
    agenda = await registry.get(workspace_id)
    events = agenda.state.aggregate(
        body.patients, body.month, min_date=body.min_date, today=body.today
    )
    return derive_tasks(events, today=body.today)
