"""
Clinical record stores: both implementations honour the same contract.

The MongoDB store runs against a live server named by MONGO_TEST_DSN and
is skipped without one.
"""
import asyncio
import os
import uuid

import pytest
from pymongo import AsyncMongoClient

from clinicbook.modules.records.schemas import ClinicalNote, PrescriptionEntry
from clinicbook.modules.records.store import InMemoryClinicalRecordStore, MongoClinicalRecordStore

MONGO_TEST_DSN = os.getenv("MONGO_TEST_DSN")


@pytest.fixture(
    params=[
        "memory",
        pytest.param(
            "mongo",
            marks=pytest.mark.skipif(not MONGO_TEST_DSN, reason="MONGO_TEST_DSN not set"),
        ),
    ]
)
async def store(request):
    if request.param == "memory":
        yield InMemoryClinicalRecordStore()
        return

    database = f"clinicbook_test_{uuid.uuid4().hex[:12]}"
    mongo = MongoClinicalRecordStore(MONGO_TEST_DSN, database)
    await mongo.connect()
    try:
        yield mongo
    finally:
        await mongo.close()
        admin = AsyncMongoClient(MONGO_TEST_DSN)
        await admin.drop_database(database)
        await admin.close()


@pytest.fixture
def ids():
    return uuid.uuid4(), uuid.uuid4(), uuid.uuid4()


def _note(doctor_id, text):
    return ClinicalNote(author_doctor_id=doctor_id, text=text)


def _rx(medication):
    return PrescriptionEntry(medication=medication, dosage="1 tab", frequency="daily", duration="5 days")


async def test_nothing_stored_yet(store, ids):
    appointment_id, _, _ = ids
    assert await store.get(appointment_id) is None


async def test_first_write_creates_record(store, ids):
    appointment_id, patient_id, doctor_id = ids

    record = await store.append_note(appointment_id, patient_id, _note(doctor_id, "Chest clear"))

    assert record.appointment_id == appointment_id
    assert record.patient_id == patient_id
    assert [n.text for n in record.notes] == ["Chest clear"]
    assert record.notes[0].author_doctor_id == doctor_id
    assert record.prescriptions == []

    stored = await store.get(appointment_id)
    assert [n.text for n in stored.notes] == ["Chest clear"]


async def test_appends_keep_order(store, ids):
    appointment_id, patient_id, doctor_id = ids

    for text in ("first", "second", "third"):
        await store.append_note(appointment_id, patient_id, _note(doctor_id, text))

    assert [n.text for n in (await store.get(appointment_id)).notes] == ["first", "second", "third"]


async def test_notes_and_prescriptions_share_one_record(store, ids):
    appointment_id, patient_id, doctor_id = ids

    await store.append_prescription(appointment_id, patient_id, _rx("Amoxicillin"))
    await store.append_note(appointment_id, patient_id, _note(doctor_id, "allergy checked"))
    record = await store.append_prescription(appointment_id, patient_id, _rx("Ibuprofen"))

    assert [p.medication for p in record.prescriptions] == ["Amoxicillin", "Ibuprofen"]
    assert [n.text for n in record.notes] == ["allergy checked"]


async def test_records_are_kept_per_appointment(store, ids):
    appointment_id, patient_id, doctor_id = ids
    other = uuid.uuid4()

    await store.append_note(appointment_id, patient_id, _note(doctor_id, "mine"))
    await store.append_note(other, patient_id, _note(doctor_id, "theirs"))

    assert [n.text for n in (await store.get(appointment_id)).notes] == ["mine"]
    assert [n.text for n in (await store.get(other)).notes] == ["theirs"]


async def test_concurrent_first_writes_end_in_one_record(store, ids):
    appointment_id, patient_id, doctor_id = ids
    texts = [f"note {i}" for i in range(8)]

    await asyncio.gather(
        *(store.append_note(appointment_id, patient_id, _note(doctor_id, t)) for t in texts)
    )

    record = await store.get(appointment_id)
    assert sorted(n.text for n in record.notes) == sorted(texts)


async def test_returned_record_is_a_copy(store, ids):
    appointment_id, patient_id, doctor_id = ids

    record = await store.append_note(appointment_id, patient_id, _note(doctor_id, "kept"))
    record.notes.clear()

    assert [n.text for n in (await store.get(appointment_id)).notes] == ["kept"]


async def test_ping(store):
    assert await store.ping() is True
