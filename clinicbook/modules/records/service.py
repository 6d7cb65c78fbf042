# clinicbook/modules/records/service.py
"""
Links clinical documents to relational appointments.

Writes go document first, status second. A failed second step leaves a
harmless document behind and is reported as PartialFailureError so the
caller can retry mark_completed on its own.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from clinicbook.core.errors import (
    AppointmentNotLinkedError,
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
    PartialFailureError,
    ValidationError,
)
from clinicbook.modules.appointments.models import ApptStatus
from clinicbook.modules.appointments.schemas import AppointmentPublic
from clinicbook.modules.appointments.service import AppointmentService
from clinicbook.modules.records.schemas import (
    ClinicalNote,
    ClinicalRecord,
    PrescriptionEntry,
    PrescriptionResult,
)
from clinicbook.modules.records.store import ClinicalRecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLOSED_STATUSES = (ApptStatus.CANCELLED.value, ApptStatus.NO_SHOW.value)


class ClinicalRecordService:
    def __init__(
        self,
        store: ClinicalRecordStore,
        appointments: AppointmentService,
        *,
        timeout: float = 5.0,
    ):
        self._store = store
        self._appointments = appointments
        self.timeout = timeout

    async def _bounded(self, op: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(op, self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("%s on the record store timed out after %.1fs", what, self.timeout)
            raise OperationTimeoutError(f"{what} timed out") from exc

    async def _linked_appointment(self, appointment_id: UUID) -> AppointmentPublic:
        # cross-store existence check: no FK can enforce it
        try:
            return await self._appointments.get(appointment_id)
        except NotFoundError as exc:
            raise AppointmentNotLinkedError(
                f"appointment {appointment_id} does not exist"
            ) from exc

    async def get_record(self, appointment_id: UUID) -> Optional[ClinicalRecord]:
        """Return the record, or None when nothing was written yet."""
        return await self._bounded(self._store.get(appointment_id), "get_record")

    async def attach_note(
        self, appointment_id: UUID, author_doctor_id: UUID, text: str
    ) -> ClinicalRecord:
        """
        Append a timestamped note, creating the record on first write.
        Allowed in any appointment status.
        """
        appt = await self._linked_appointment(appointment_id)
        try:
            note = ClinicalNote(author_doctor_id=author_doctor_id, text=text)
        except PydanticValidationError as exc:
            raise ValidationError(str(exc), code="invalid_note") from exc

        record = await self._bounded(
            self._store.append_note(appointment_id, appt.patient_id, note), "attach_note"
        )
        logger.info("Note added to record of appointment %s by doctor %s", appointment_id, author_doctor_id)
        return record

    async def attach_prescription(
        self,
        appointment_id: UUID,
        medication: str,
        dosage: str,
        frequency: str,
        duration: str,
        *,
        doctor_notes: Optional[str] = None,
        actor_id: Optional[UUID] = None,
    ) -> PrescriptionResult:
        """
        Append a prescription; the first one on a scheduled visit completes it.

        Later prescriptions only append: an already completed appointment is
        not transitioned again.
        """
        appt = await self._linked_appointment(appointment_id)
        if appt.status in CLOSED_STATUSES:
            raise InvalidStateError(
                f"cannot prescribe for a {appt.status} appointment", code="appointment_closed"
            )
        try:
            entry = PrescriptionEntry(
                medication=medication,
                dosage=dosage,
                frequency=frequency,
                duration=duration,
                doctor_notes=doctor_notes,
            )
        except PydanticValidationError as exc:
            raise ValidationError(str(exc), code="invalid_prescription") from exc

        # step 1: document
        record = await self._bounded(
            self._store.append_prescription(appointment_id, appt.patient_id, entry),
            "attach_prescription",
        )
        logger.info("Prescription %r added to appointment %s", medication, appointment_id)

        if appt.status == ApptStatus.COMPLETED.value:
            return PrescriptionResult(record=record, appointment=appt, completed_now=False)

        # step 2: relational status
        try:
            completed = await self._appointments.mark_completed(appointment_id, actor_id=actor_id)
        except InvalidStateError as exc:
            current = await self._appointments.get(appointment_id)
            if current.status == ApptStatus.COMPLETED.value:
                # someone else completed it in between: converged
                return PrescriptionResult(record=record, appointment=current, completed_now=False)
            logger.error("Prescription stored but appointment %s is %s", appointment_id, current.status)
            raise PartialFailureError(
                "prescription stored, appointment could not be completed",
                resource=f"appointment:{appointment_id}",
                result=record,
            ) from exc
        except (SQLAlchemyError, OperationTimeoutError, NotFoundError) as exc:
            logger.error("Prescription stored but completing appointment %s failed: %s", appointment_id, exc)
            raise PartialFailureError(
                "prescription stored, appointment status not updated; retry mark_completed",
                resource=f"appointment:{appointment_id}",
                result=record,
            ) from exc

        return PrescriptionResult(record=record, appointment=completed, completed_now=True)
