# clinicbook/modules/records/store.py
"""
Clinical record persistence.

The document store cannot join a relational transaction, so every write is
a single atomic document operation (upsert + push) keyed by appointment id.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol
from uuid import UUID

from beanie import init_beanie
from beanie.operators import Push, Set
from pydantic import BaseModel
from pymongo import AsyncMongoClient
from pymongo.errors import DuplicateKeyError

from clinicbook.db.base import utcnow
from clinicbook.modules.records.models import ClinicalRecordDocument
from clinicbook.modules.records.schemas import ClinicalNote, ClinicalRecord, PrescriptionEntry

logger = logging.getLogger(__name__)


class ClinicalRecordStore(Protocol):
    async def get(self, appointment_id: UUID) -> Optional[ClinicalRecord]: ...

    async def append_note(
        self, appointment_id: UUID, patient_id: UUID, note: ClinicalNote
    ) -> ClinicalRecord: ...

    async def append_prescription(
        self, appointment_id: UUID, patient_id: UUID, entry: PrescriptionEntry
    ) -> ClinicalRecord: ...

    async def ping(self) -> bool: ...


class InMemoryClinicalRecordStore:
    """
    Process-local store with the same contract; for development and tests.
    """

    def __init__(self) -> None:
        self._records: dict[UUID, ClinicalRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, appointment_id: UUID) -> Optional[ClinicalRecord]:
        record = self._records.get(appointment_id)
        return record.model_copy(deep=True) if record else None

    async def _append(
        self, appointment_id: UUID, patient_id: UUID, field: str, entry: BaseModel
    ) -> ClinicalRecord:
        async with self._lock:
            record = self._records.get(appointment_id)
            if record is None:
                record = self._records[appointment_id] = ClinicalRecord(
                    appointment_id=appointment_id, patient_id=patient_id
                )
            getattr(record, field).append(entry.model_copy())
            record.updated_at = utcnow()
            return record.model_copy(deep=True)

    async def append_note(
        self, appointment_id: UUID, patient_id: UUID, note: ClinicalNote
    ) -> ClinicalRecord:
        return await self._append(appointment_id, patient_id, "notes", note)

    async def append_prescription(
        self, appointment_id: UUID, patient_id: UUID, entry: PrescriptionEntry
    ) -> ClinicalRecord:
        return await self._append(appointment_id, patient_id, "prescriptions", entry)

    async def ping(self) -> bool:
        return True


def _to_record(doc: ClinicalRecordDocument) -> ClinicalRecord:
    return ClinicalRecord(
        appointment_id=UUID(doc.appointment_id),
        patient_id=UUID(doc.patient_id),
        notes=doc.notes,
        prescriptions=doc.prescriptions,
        attachments=doc.attachments,
        feedback=doc.feedback,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


class MongoClinicalRecordStore:
    """
    Beanie-backed store. Call `connect` once before use.
    """

    def __init__(self, dsn: str, database: str):
        self._dsn = dsn
        self._database = database
        self._client: Optional[AsyncMongoClient] = None

    async def connect(self) -> None:
        # UUIDs inside notes are stored as BSON binary subtype 4
        self._client = AsyncMongoClient(self._dsn, uuidRepresentation="standard", tz_aware=True)
        await init_beanie(
            database=self._client[self._database],
            document_models=[ClinicalRecordDocument],
        )
        logger.info("Clinical record store connected to %s/%s", self._dsn, self._database)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    @staticmethod
    def _by_appointment(appointment_id: UUID):
        return ClinicalRecordDocument.find_one(
            ClinicalRecordDocument.appointment_id == str(appointment_id)
        )

    async def get(self, appointment_id: UUID) -> Optional[ClinicalRecord]:
        doc = await self._by_appointment(appointment_id)
        return _to_record(doc) if doc else None

    async def _append(
        self, appointment_id: UUID, patient_id: UUID, field: str, entry: BaseModel
    ) -> ClinicalRecord:
        now = utcnow()
        push = Push({field: entry.model_dump()})
        touch = Set({"updated_at": now})
        try:
            await self._by_appointment(appointment_id).upsert(
                push,
                touch,
                on_insert=ClinicalRecordDocument(
                    appointment_id=str(appointment_id),
                    patient_id=str(patient_id),
                    created_at=now,
                    updated_at=now,
                    **{field: [entry]},
                ),
            )
        except DuplicateKeyError:
            # a concurrent first write created the document in between
            await self._by_appointment(appointment_id).update(push, touch)

        doc = await self._by_appointment(appointment_id)
        return _to_record(doc)

    async def append_note(
        self, appointment_id: UUID, patient_id: UUID, note: ClinicalNote
    ) -> ClinicalRecord:
        return await self._append(appointment_id, patient_id, "notes", note)

    async def append_prescription(
        self, appointment_id: UUID, patient_id: UUID, entry: PrescriptionEntry
    ) -> ClinicalRecord:
        return await self._append(appointment_id, patient_id, "prescriptions", entry)

    async def ping(self) -> bool:
        if self._client is None:
            return False
        await self._client.admin.command("ping")
        return True
