"""
Availability ledger: publish, claim, release and the per-day free check.
"""
from datetime import timedelta

import pytest

from clinicbook.core.errors import (
    AlreadyBookedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from clinicbook.db.sql import session_scope
from clinicbook.modules.doctors import ledger
from clinicbook.modules.doctors.ledger import SlotHandle

from .conftest import NOW

START = NOW + timedelta(days=2)


class TestPublish:
    async def test_publish_creates_unbooked_slot(self, session_factory, doctor_id):
        async with session_scope(session_factory) as s:
            slot = await ledger.publish_slot(
                s, doctor_id=doctor_id, start_time=START, end_time=START + timedelta(hours=1)
            )
        assert slot.is_booked is False
        assert slot.doctor_id == doctor_id

    async def test_end_before_start_is_rejected(self, session_factory, doctor_id):
        async with session_scope(session_factory) as s:
            with pytest.raises(ValidationError):
                await ledger.publish_slot(s, doctor_id=doctor_id, start_time=START, end_time=START)

    async def test_unknown_doctor(self, session_factory, patient_id):
        # a patient id is not a doctor
        async with session_scope(session_factory) as s:
            with pytest.raises(NotFoundError):
                await ledger.publish_slot(
                    s, doctor_id=patient_id, start_time=START, end_time=START + timedelta(hours=1)
                )

    async def test_duplicate_start_time_conflicts(self, session_factory, doctor_id, publish):
        await publish(doctor_id, START)
        async with session_scope(session_factory) as s:
            with pytest.raises(ConflictError) as exc:
                await ledger.publish_slot(
                    s, doctor_id=doctor_id, start_time=START, end_time=START + timedelta(minutes=30)
                )
        assert exc.value.code == "slot_exists"

    async def test_same_time_for_two_doctors_is_fine(
        self, doctor_id, other_doctor_id, publish, slot_state
    ):
        await publish(doctor_id, START)
        await publish(other_doctor_id, START)
        assert await slot_state(other_doctor_id, START) is False


class TestClaimRelease:
    async def test_claim_flips_slot(self, session_factory, doctor_id, publish, slot_state):
        await publish(doctor_id, START)
        async with session_scope(session_factory) as s:
            handle = await ledger.claim_slot(s, doctor_id=doctor_id, start_time=START)
        assert handle.slot_id is not None
        assert await slot_state(doctor_id, START) is True

    async def test_second_claim_is_already_booked(self, session_factory, doctor_id, publish):
        await publish(doctor_id, START)
        async with session_scope(session_factory) as s:
            await ledger.claim_slot(s, doctor_id=doctor_id, start_time=START)
        async with session_scope(session_factory) as s:
            with pytest.raises(AlreadyBookedError):
                await ledger.claim_slot(s, doctor_id=doctor_id, start_time=START)

    async def test_claim_without_published_slot(self, session_factory, doctor_id):
        async with session_scope(session_factory) as s:
            with pytest.raises(NotFoundError) as exc:
                await ledger.claim_slot(s, doctor_id=doctor_id, start_time=START)
        assert exc.value.code == "slot_not_found"

    async def test_release_is_idempotent(self, session_factory, doctor_id, publish, slot_state):
        await publish(doctor_id, START)
        async with session_scope(session_factory) as s:
            handle = await ledger.claim_slot(s, doctor_id=doctor_id, start_time=START)

        async with session_scope(session_factory) as s:
            assert await ledger.release_slot(s, handle) is True
        async with session_scope(session_factory) as s:
            assert await ledger.release_slot(s, handle) is False
        assert await slot_state(doctor_id, START) is False

    async def test_release_of_missing_slot_is_noop(self, session_factory, doctor_id):
        async with session_scope(session_factory) as s:
            assert await ledger.release_slot(s, SlotHandle(doctor_id, START)) is False


class TestDoctorFree:
    async def test_free_until_something_is_booked(self, session_factory, doctor_id, publish):
        await publish(doctor_id, START)
        async with session_scope(session_factory) as s:
            assert await ledger.is_doctor_free(s, doctor_id=doctor_id, day=START.date()) is True
            await ledger.claim_slot(s, doctor_id=doctor_id, start_time=START)
            assert await ledger.is_doctor_free(s, doctor_id=doctor_id, day=START.date()) is False
            # other days are unaffected
            next_day = (START + timedelta(days=1)).date()
            assert await ledger.is_doctor_free(s, doctor_id=doctor_id, day=next_day) is True

    async def test_unknown_doctor(self, session_factory, patient_id):
        async with session_scope(session_factory) as s:
            with pytest.raises(NotFoundError):
                await ledger.is_doctor_free(s, doctor_id=patient_id, day=START.date())


class TestSlotDirectory:
    async def test_list_is_ordered(self, session_factory, doctor_id, publish):
        later = await publish(doctor_id, START + timedelta(hours=3))
        earlier = await publish(doctor_id, START)
        async with session_scope(session_factory) as s:
            slots = await ledger.list_by_doctor(s, doctor_id=doctor_id)
        assert [x.start_time for x in slots] == [earlier, later]

    async def test_booked_slot_cannot_be_deleted(self, session_factory, doctor_id, publish):
        await publish(doctor_id, START)
        async with session_scope(session_factory) as s:
            handle = await ledger.claim_slot(s, doctor_id=doctor_id, start_time=START)
        async with session_scope(session_factory) as s:
            with pytest.raises(ConflictError) as exc:
                await ledger.delete_slot(s, slot_id=handle.slot_id)
        assert exc.value.code == "slot_in_use"

    async def test_free_slot_is_deleted(self, session_factory, doctor_id, publish, slot_state):
        await publish(doctor_id, START)
        async with session_scope(session_factory) as s:
            slot = await ledger.find_slot(s, doctor_id=doctor_id, start_time=START)
            await ledger.delete_slot(s, slot_id=slot.id)
        assert await slot_state(doctor_id, START) is None

    async def test_slot_booked_after_load_is_not_deleted(
        self, services, session_factory, doctor_id, patient_id, publish, slot_state
    ):
        await publish(doctor_id, START)
        async with session_scope(session_factory) as s:
            slot = await ledger.get_slot(
                s, slot_id=(await ledger.find_slot(s, doctor_id=doctor_id, start_time=START)).id
            )
            assert slot.is_booked is False

            # another request books it before this one deletes
            appt = await services.appointments.book(patient_id, doctor_id, START)

            with pytest.raises(ConflictError) as exc:
                await ledger.delete_slot(s, slot_id=slot.id)
        assert exc.value.code == "slot_in_use"

        assert await slot_state(doctor_id, START) is True
        assert (await services.appointments.get(appt.id)).status == "scheduled"

    async def test_delete_unknown_slot(self, session_factory):
        import uuid

        async with session_scope(session_factory) as s:
            with pytest.raises(NotFoundError):
                await ledger.delete_slot(s, slot_id=uuid.uuid4())
