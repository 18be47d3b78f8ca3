"""Appointment aggregation: visible sessions, payment events and override state."""

from psi_agenda.agenda.aggregator import AgendaEvent, aggregate, apply_patch
from psi_agenda.agenda.state import Agenda, AgendaState, ExtraSessionNotFound

__all__ = [
    "Agenda",
    "AgendaEvent",
    "AgendaState",
    "ExtraSessionNotFound",
    "aggregate",
    "apply_patch",
]
