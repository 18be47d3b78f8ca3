"""Tests for copy-on-write agenda state and the Agenda wrapper."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from psi_agenda.agenda.state import Agenda, AgendaState, ExtraSessionNotFound
from psi_agenda.core.persistence import PersistenceQueue
from psi_agenda.scheduling.keys import OccurrenceKey, PaymentKey
from psi_agenda.scheduling.models import (
    PaymentPatch,
    PaymentStatus,
    SessionEvent,
    SessionPatch,
    SessionStatus,
)
from tests.conftest import make_session

MARCH = date(2024, 3, 1)


@pytest.fixture
def occurrence():
    return make_session(day=date(2024, 3, 11))


# ------------------------------------------------------------ mutations

class TestUpdateAppointment:
    def test_creates_override(self, occurrence):
        state = AgendaState().update_appointment(occurrence, SessionPatch(status=SessionStatus.OCCURRED))
        assert state.overrides[OccurrenceKey("1", date(2024, 3, 11))].status == SessionStatus.OCCURRED

    def test_merges_with_existing_override(self, occurrence):
        state = (
            AgendaState()
            .update_appointment(occurrence, SessionPatch(status=SessionStatus.OCCURRED))
            .update_appointment(occurrence, SessionPatch(notes="ok"))
        )
        patch = state.overrides[OccurrenceKey("1", date(2024, 3, 11))]
        assert patch.status == SessionStatus.OCCURRED
        assert patch.notes == "ok"

    def test_moved_session_keeps_its_original_key(self, occurrence):
        patch = SessionPatch(date=date(2024, 3, 12))
        state = AgendaState().update_appointment(occurrence, patch)
        moved = occurrence.model_copy(update={"date": date(2024, 3, 12)})
        state = state.update_appointment(moved, SessionPatch(status=SessionStatus.OCCURRED))
        assert list(state.overrides) == [OccurrenceKey("1", date(2024, 3, 11))]

    def test_reopen_after_reschedule_clears_markers(self, occurrence):
        state = (
            AgendaState()
            .update_appointment(
                occurrence,
                SessionPatch(status=SessionStatus.RESCHEDULED, new_date=date(2024, 3, 12), new_time="15:00"),
            )
            .update_appointment(occurrence, SessionPatch(status=SessionStatus.SCHEDULED))
        )
        patch = state.overrides[OccurrenceKey("1", date(2024, 3, 11))]
        assert patch.status == SessionStatus.SCHEDULED
        assert patch.new_date is None
        assert patch.new_time is None

    def test_same_patch_twice_is_idempotent(self, occurrence):
        patch = SessionPatch(status=SessionStatus.CANCELLED)
        once = AgendaState().update_appointment(occurrence, patch)
        twice = once.update_appointment(occurrence, patch)
        assert once.to_storage() == twice.to_storage()

    def test_patches_extra_session_by_id(self):
        state = AgendaState().add_appointment(make_session(day=date(2024, 3, 6)))
        extra = state.extra_sessions[0]
        state = state.update_appointment(extra, SessionPatch(status=SessionStatus.OCCURRED))
        assert state.extra_sessions[0].status == SessionStatus.OCCURRED
        assert state.overrides == {}

    def test_unknown_extra_session(self):
        ghost = make_session(isExtra=True, id="extra_missing")
        with pytest.raises(ExtraSessionNotFound):
            AgendaState().update_appointment(ghost, SessionPatch(status=SessionStatus.OCCURRED))


class TestAddAppointment:
    def test_always_new_scheduled_extra(self):
        source = make_session(day=date(2024, 3, 6), status="occurred", id="client-id")
        state = AgendaState().add_appointment(source).add_appointment(source)
        first, second = state.extra_sessions
        assert first.id.startswith("extra_")
        assert first.id != second.id
        assert first.is_extra
        assert first.status == SessionStatus.SCHEDULED
        assert first.original_date == date(2024, 3, 6)


class TestRescheduleAppointment:
    def test_marks_source_and_adds_target(self, occurrence):
        at = datetime(2024, 3, 8, 12, 0, tzinfo=timezone.utc)
        state = AgendaState().reschedule_appointment(occurrence, date(2024, 3, 13), "10:00", rescheduled_at=at)

        patch = state.overrides[OccurrenceKey("1", date(2024, 3, 11))]
        assert patch.status == SessionStatus.RESCHEDULED
        assert patch.rescheduled_at == at
        assert (patch.rescheduled_to.date, patch.rescheduled_to.time) == (date(2024, 3, 13), "10:00")

        (moved,) = state.extra_sessions
        assert moved.id.startswith("extra_")
        assert moved.is_extra
        assert moved.status == SessionStatus.SCHEDULED
        assert moved.date == moved.original_date == date(2024, 3, 13)
        assert moved.time == "10:00"
        assert moved.rescheduled_at == at
        assert moved.rescheduled_from.patient_id == "1"
        assert moved.rescheduled_from.date == date(2024, 3, 11)
        assert moved.rescheduled_from.time == "14:00"

    def test_visible_agenda_follows_the_move(self, occurrence, weekly_patient):
        state = AgendaState().reschedule_appointment(occurrence, date(2024, 3, 13), "10:00")
        events = state.aggregate([weekly_patient], MARCH, today=MARCH)
        assert [e.date for e in events if isinstance(e, SessionEvent)] == [
            date(2024, 3, 4),
            date(2024, 3, 13),
            date(2024, 3, 18),
            date(2024, 3, 25),
        ]

    def test_stored_format(self, occurrence):
        stored = AgendaState().reschedule_appointment(occurrence, date(2024, 3, 13), "10:00").to_storage()
        assert stored["appointment_overrides"]["1_2024-03-11"]["rescheduledTo"] == {
            "date": "2024-03-13",
            "time": "10:00",
        }
        assert stored["extra_sessions"][0]["rescheduledFrom"] == {
            "patientId": "1",
            "date": "2024-03-11",
            "time": "14:00",
        }

    def test_moving_an_extra_session(self):
        state = AgendaState().add_appointment(make_session(day=date(2024, 3, 6)))
        state = state.reschedule_appointment(state.extra_sessions[0], date(2024, 3, 7), "09:00")
        source, moved = state.extra_sessions
        assert source.status == SessionStatus.RESCHEDULED
        assert source.rescheduled_to.date == date(2024, 3, 7)
        assert moved.date == date(2024, 3, 7)
        assert moved.rescheduled_from.date == date(2024, 3, 6)
        assert moved.id != source.id
        assert state.overrides == {}

    def test_unknown_extra_session(self):
        ghost = make_session(isExtra=True, id="extra_missing")
        with pytest.raises(ExtraSessionNotFound):
            AgendaState().reschedule_appointment(ghost, date(2024, 3, 7), "09:00")


class TestUpdatePayment:
    def test_upsert(self):
        state = (
            AgendaState()
            .update_payment("1", date(2024, 4, 5), PaymentPatch(status=PaymentStatus.PAID))
            .update_payment("1", date(2024, 4, 5), PaymentPatch(status=PaymentStatus.PENDING))
        )
        assert state.payment_overrides[PaymentKey("1", date(2024, 4, 5))].status == PaymentStatus.PENDING
        assert list(state.to_storage()["payment_overrides"]) == ["pay_1_2024-04-05"]


# ------------------------------------------------------------ copy-on-write

class TestCopyOnWrite:
    def test_previous_state_unchanged(self, occurrence):
        before = AgendaState()
        after = before.update_appointment(occurrence, SessionPatch(status=SessionStatus.CANCELLED))
        assert before.overrides == {}
        assert len(after.overrides) == 1

    def test_maps_are_read_only(self):
        state = AgendaState()
        with pytest.raises(TypeError):
            state.overrides[OccurrenceKey("1", date(2024, 3, 11))] = SessionPatch()

    def test_caller_dict_is_copied(self):
        raw = {OccurrenceKey("1", date(2024, 3, 11)): SessionPatch(status=SessionStatus.CANCELLED)}
        state = AgendaState(overrides=raw)
        raw.clear()
        assert len(state.overrides) == 1


# ------------------------------------------------------------ storage

class TestStorage:
    def test_round_trip(self, occurrence):
        state = (
            AgendaState()
            .update_appointment(occurrence, SessionPatch(status=SessionStatus.CANCELLED))
            .add_appointment(make_session(day=date(2024, 3, 6)))
            .update_payment("1", date(2024, 4, 5), PaymentPatch(status=PaymentStatus.PAID))
        )
        stored = state.to_storage()
        assert stored["appointment_overrides"] == {"1_2024-03-11": {"status": "cancelled"}}
        assert stored["extra_sessions"][0]["isExtra"] is True
        assert stored["extra_sessions"][0]["patientId"] == "1"
        reloaded = AgendaState.from_storage(
            overrides=stored["appointment_overrides"],
            extra_sessions=stored["extra_sessions"],
            payment_overrides=stored["payment_overrides"],
        )
        assert reloaded.to_storage() == stored

    def test_from_storage_tolerates_bad_buckets(self):
        state = AgendaState.from_storage(
            overrides="nope",
            extra_sessions=[{"patientId": "1"}, "junk", {"patientId": "1", "date": "2024-03-06"}],
            payment_overrides=None,
        )
        assert state.overrides == {}
        assert len(state.extra_sessions) == 1
        assert state.extra_sessions[0].is_extra

    def test_stored_reschedule_object_hides_the_occurrence(self, weekly_patient):
        state = AgendaState.from_storage(
            overrides={
                "1_2024-03-11": {
                    "status": "rescheduled",
                    "rescheduledAt": "2024-03-08T12:00:00.000Z",
                    "rescheduledTo": {"date": "2024-03-13", "time": "10:00"},
                }
            },
        )
        events = state.aggregate([weekly_patient], MARCH, today=MARCH)
        assert date(2024, 3, 11) not in [e.date for e in events if isinstance(e, SessionEvent)]

    def test_undeclared_extra_fields_survive_round_trip(self):
        raw = {
            "id": "extra_1",
            "patientId": "1",
            "date": "2024-03-13",
            "time": "10:00",
            "isExtra": True,
            "rescheduledFrom": {"patientId": "1", "date": "2024-03-11", "time": "14:00"},
            "notesDone": True,
            "psychologist": "Dra. Lia",
            "mode": "online",
        }
        stored = AgendaState.from_storage(extra_sessions=[raw]).to_storage()["extra_sessions"][0]
        for key, value in raw.items():
            assert stored[key] == value

    def test_extras_without_id_get_distinct_ids(self):
        raw = [
            {"patientId": "1", "date": "2024-03-13", "time": "10:00"},
            {"patientId": "1", "date": "2024-03-13", "time": "16:00"},
        ]
        state = AgendaState.from_storage(extra_sessions=raw)
        ids = [s.id for s in state.extra_sessions]
        assert all(i.startswith("extra_") for i in ids)
        assert len(set(ids)) == 2
        events = state.aggregate([], MARCH, today=MARCH)
        assert [e.time for e in events] == ["10:00", "16:00"]


# ------------------------------------------------------------ Agenda

class TestAgenda:
    async def test_mutations_schedule_background_write(self, occurrence):
        written: list[dict] = []

        async def writer(snapshot):
            written.append(snapshot)

        queue = PersistenceQueue(writer, debounce_seconds=0.01)
        agenda = Agenda(queue=queue)
        agenda.update_appointment(occurrence, SessionPatch(status=SessionStatus.OCCURRED))
        agenda.update_payment("1", date(2024, 4, 5), PaymentPatch(status=PaymentStatus.PAID))

        assert written == []
        await asyncio.sleep(0.1)

        assert len(written) == 1
        assert written[0] == agenda.state.to_storage()

    def test_without_queue(self, occurrence):
        agenda = Agenda()
        state = agenda.update_appointment(occurrence, SessionPatch(status=SessionStatus.OCCURRED))
        assert agenda.state is state

    async def test_reschedule_is_one_write(self, occurrence):
        written: list[dict] = []

        async def writer(snapshot):
            written.append(snapshot)

        agenda = Agenda(queue=PersistenceQueue(writer, debounce_seconds=0.01))
        agenda.reschedule_appointment(occurrence, date(2024, 3, 13), "10:00")
        await asyncio.sleep(0.1)

        assert len(written) == 1
        assert list(written[0]["appointment_overrides"]) == ["1_2024-03-11"]
        assert len(written[0]["extra_sessions"]) == 1
