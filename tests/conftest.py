"""Pytest configuration and fixtures."""

from datetime import date
from typing import Any

import pytest

from psi_agenda.scheduling.models import Patient, SessionEvent


def make_patient(**overrides: Any) -> Patient:
    """Active weekly Monday 14:00 patient billed on day 5; fields overridable by wire name."""
    data: dict[str, Any] = {
        "id": "1",
        "name": "Ana",
        "rate": "150",
        "duration": 50,
        "frequency": "Semanal",
        "dayOfWeek": "segunda-feira",
        "time": "14:00",
        "startDate": "2024-01-01",
        "active": "Sim",
        "payDay": "5",
    }
    data.update(overrides)
    return Patient.model_validate(data)


def make_session(patient_id: str = "1", day: date = date(2024, 3, 11), **overrides: Any) -> SessionEvent:
    data: dict[str, Any] = {
        "patientId": patient_id,
        "date": day.isoformat(),
        "time": "14:00",
        "duration": 50,
        "rate": "150",
    }
    data.update(overrides)
    return SessionEvent.model_validate(data)


@pytest.fixture
def weekly_patient() -> Patient:
    return make_patient()


@pytest.fixture
def patients_payload() -> list[dict[str, Any]]:
    """Raw patient records as stored by the front end."""
    return [
        {
            "id": 1,
            "name": "Ana",
            "rate": "150",
            "duration": 50,
            "frequency": "Semanal",
            "dayOfWeek": "segunda-feira",
            "time": "14:00",
            "startDate": "2024-01-01",
            "active": "Sim",
            "payDay": "5",
        },
        {
            "id": 2,
            "name": "Bruno",
            "rate": "R$ 200,00",
            "duration": 50,
            "frequency": "Quinzenal (Ímpar)",
            "dayOfWeek": "Quarta",
            "time": "10:00",
            "startDate": "2024-01-01",
            "active": "Sim",
        },
    ]
