"""Follow-up tasks derived from a month's aggregated events.

Three kinds of task come out of the event list:

* ``confirm``: a session dated today or earlier that is still ``scheduled``
  needs its outcome recorded.
* ``note``: an occurred session dated today or earlier without notes.
* ``payment``: a payment event that is not paid yet.

Handled items are returned in a separate ``done`` list. Nothing is stored;
the lists are recomputed from the events every time.
"""

from datetime import date
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from psi_agenda.scheduling.models import (
    Event,
    PaymentEvent,
    PaymentStatus,
    SessionEvent,
    SessionStatus,
    local_today,
    parse_minutes,
)

_HANDLED_STATUSES = frozenset({SessionStatus.OCCURRED, SessionStatus.MISSED_PAID, SessionStatus.PAID})


class TaskType(str, Enum):
    CONFIRM = "confirm"
    NOTE = "note"
    PAYMENT = "payment"


class Task(BaseModel):
    id: str
    type: TaskType
    title: str
    due: date
    time: str = ""
    patient_id: str
    name: Optional[str] = None
    event: Event


class TaskList(BaseModel):
    today: date
    open: list[Task] = Field(default_factory=list)
    done: list[Task] = Field(default_factory=list)


def _who(event: SessionEvent | PaymentEvent) -> str:
    return event.name or f"patient {event.patient_id}"


def _session_ref(session: SessionEvent) -> str:
    return f"{session.id or session.patient_id}_{session.date.isoformat()}_{session.time}"


def _task(task_type: TaskType, task_id: str, title: str, event: SessionEvent | PaymentEvent) -> Task:
    return Task(
        id=task_id,
        type=task_type,
        title=title,
        due=event.date,
        time=event.time,
        patient_id=event.patient_id,
        name=event.name,
        event=event,
    )


def derive_tasks(events: Iterable[object], today: Optional[date] = None) -> TaskList:
    """Open and done tasks for *events*, each list sorted by due date and time.

    Scheduled sessions after *today* produce no task. Cancelled and rescheduled
    sessions are ignored.
    """
    today = today or local_today()
    tasks = TaskList(today=today)

    for event in events:
        if isinstance(event, PaymentEvent):
            ref = f"{event.patient_id}_{event.date.isoformat()}"
            if event.status == PaymentStatus.PAID:
                tasks.done.append(
                    _task(TaskType.PAYMENT, f"task_pay_{ref}", f"Payment received from {_who(event)}", event)
                )
            else:
                tasks.open.append(
                    _task(TaskType.PAYMENT, f"task_pay_{ref}", f"Collect payment from {_who(event)}", event)
                )
            continue

        if not isinstance(event, SessionEvent) or not event.is_visible:
            continue

        ref = _session_ref(event)
        due = event.date <= today
        if event.status in _HANDLED_STATUSES:
            tasks.done.append(
                _task(TaskType.CONFIRM, f"task_confirm_{ref}", f"Session with {_who(event)} handled", event)
            )
        elif due:
            tasks.open.append(
                _task(TaskType.CONFIRM, f"task_confirm_{ref}", f"Confirm session with {_who(event)}", event)
            )

        if not event.has_occurred:
            continue
        if event.notes_done:
            tasks.done.append(
                _task(TaskType.NOTE, f"task_note_{ref}", f"Notes written for {_who(event)}", event)
            )
        elif due:
            tasks.open.append(
                _task(TaskType.NOTE, f"task_note_{ref}", f"Write notes for {_who(event)}", event)
            )

    tasks.open.sort(key=_order)
    tasks.done.sort(key=_order)
    return tasks


def _order(task: Task) -> tuple[date, int]:
    return task.due, parse_minutes(task.time)
