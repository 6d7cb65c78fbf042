"""
Clinical record linker: notes, prescriptions and the document/status saga.
"""
import uuid
from datetime import timedelta

import pytest

from clinicbook.core.errors import (
    AppointmentNotLinkedError,
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
    PartialFailureError,
    ValidationError,
)
from clinicbook.modules.appointments.models import ApptStatus

from .conftest import NOW

WHEN = NOW + timedelta(days=2)

AMOXICILLIN = dict(medication="Amoxicillin", dosage="500mg", frequency="3x/day", duration="7 days")
IBUPROFEN = dict(medication="Ibuprofen", dosage="200mg", frequency="as needed", duration="5 days")


@pytest.fixture
async def appointment(services, doctor_id, patient_id, publish):
    await publish(doctor_id, WHEN)
    return await services.appointments.book(patient_id, doctor_id, WHEN, "sore throat")


class TestGetRecord:
    async def test_none_before_any_write(self, services, appointment):
        assert await services.records.get_record(appointment.id) is None

    async def test_none_for_unknown_appointment(self, services):
        assert await services.records.get_record(uuid.uuid4()) is None


class TestNotes:
    async def test_first_note_creates_record(self, services, appointment, doctor_id, patient_id):
        record = await services.records.attach_note(appointment.id, doctor_id, "Throat is red")

        assert record.appointment_id == appointment.id
        assert record.patient_id == patient_id
        assert [n.text for n in record.notes] == ["Throat is red"]
        assert record.notes[0].author_doctor_id == doctor_id
        assert record.prescriptions == []

    async def test_notes_are_appended(self, services, appointment, doctor_id):
        await services.records.attach_note(appointment.id, doctor_id, "first")
        await services.records.attach_note(appointment.id, doctor_id, "second")

        record = await services.records.get_record(appointment.id)
        assert [n.text for n in record.notes] == ["first", "second"]

    async def test_notes_do_not_change_status(self, services, appointment, doctor_id):
        await services.records.attach_note(appointment.id, doctor_id, "waiting room")
        assert (await services.appointments.get(appointment.id)).status == ApptStatus.SCHEDULED.value

    async def test_note_on_cancelled_appointment(self, services, appointment, doctor_id, patient_id):
        await services.appointments.cancel(appointment.id, patient_id)
        record = await services.records.attach_note(appointment.id, doctor_id, "patient called to cancel")
        assert len(record.notes) == 1

    async def test_unknown_appointment(self, services, doctor_id):
        with pytest.raises(AppointmentNotLinkedError) as exc:
            await services.records.attach_note(uuid.uuid4(), doctor_id, "lost")
        assert isinstance(exc.value, NotFoundError)
        assert isinstance(exc.value, InvalidStateError)

    async def test_empty_note(self, services, appointment, doctor_id):
        with pytest.raises(ValidationError):
            await services.records.attach_note(appointment.id, doctor_id, "")


class TestPrescriptions:
    async def test_first_prescription_completes_visit(self, services, appointment):
        result = await services.records.attach_prescription(appointment.id, **AMOXICILLIN)

        assert result.completed_now is True
        assert result.appointment.status == ApptStatus.COMPLETED.value
        assert [p.medication for p in result.record.prescriptions] == ["Amoxicillin"]
        stored = await services.appointments.get(appointment.id)
        assert stored.status == ApptStatus.COMPLETED.value

    async def test_second_prescription_appends_without_error(self, services, appointment):
        await services.records.attach_prescription(appointment.id, **AMOXICILLIN)
        result = await services.records.attach_prescription(
            appointment.id, **IBUPROFEN, doctor_notes="with food"
        )

        assert result.completed_now is False
        assert result.appointment.status == ApptStatus.COMPLETED.value
        assert [p.medication for p in result.record.prescriptions] == ["Amoxicillin", "Ibuprofen"]
        assert result.record.prescriptions[1].doctor_notes == "with food"

    async def test_unknown_appointment(self, services):
        with pytest.raises(NotFoundError):
            await services.records.attach_prescription(uuid.uuid4(), **AMOXICILLIN)

    async def test_cancelled_appointment_is_rejected_before_write(self, services, appointment, patient_id):
        await services.appointments.cancel(appointment.id, patient_id)

        with pytest.raises(InvalidStateError) as exc:
            await services.records.attach_prescription(appointment.id, **AMOXICILLIN)

        assert exc.value.code == "appointment_closed"
        assert await services.records.get_record(appointment.id) is None

    async def test_invalid_medication(self, services, appointment):
        with pytest.raises(ValidationError):
            await services.records.attach_prescription(appointment.id, **{**AMOXICILLIN, "medication": "Ab"})
        assert await services.records.get_record(appointment.id) is None
        assert (await services.appointments.get(appointment.id)).status == ApptStatus.SCHEDULED.value

    async def test_status_failure_is_partial(self, services, appointment, monkeypatch):
        async def stuck(*args, **kwargs):
            raise OperationTimeoutError("mark_completed timed out")

        monkeypatch.setattr(services.appointments, "mark_completed", stuck)

        with pytest.raises(PartialFailureError) as exc:
            await services.records.attach_prescription(appointment.id, **AMOXICILLIN)

        assert exc.value.resource == f"appointment:{appointment.id}"
        # the document step is kept and reported
        assert [p.medication for p in exc.value.result.prescriptions] == ["Amoxicillin"]
        assert (await services.appointments.get(appointment.id)).status == ApptStatus.SCHEDULED.value

    async def test_retry_after_partial_failure(self, services, appointment, monkeypatch):
        async def stuck(*args, **kwargs):
            raise OperationTimeoutError("mark_completed timed out")

        monkeypatch.setattr(services.appointments, "mark_completed", stuck)
        with pytest.raises(PartialFailureError):
            await services.records.attach_prescription(appointment.id, **AMOXICILLIN)
        monkeypatch.undo()

        done = await services.appointments.mark_completed(appointment.id)
        assert done.status == ApptStatus.COMPLETED.value

    async def test_concurrent_completion_converges(self, services, appointment, monkeypatch):
        real = services.appointments.mark_completed

        async def raced(appointment_id, **kwargs):
            # another request completes the visit first
            await real(appointment_id)
            return await real(appointment_id, **kwargs)

        monkeypatch.setattr(services.appointments, "mark_completed", raced)

        result = await services.records.attach_prescription(appointment.id, **AMOXICILLIN)

        assert result.completed_now is False
        assert result.appointment.status == ApptStatus.COMPLETED.value

    async def test_no_show_appointment_is_rejected(self, services, appointment):
        await services.appointments.mark_no_show(appointment.id)
        with pytest.raises(InvalidStateError):
            await services.records.attach_prescription(appointment.id, **AMOXICILLIN)
