# clinicbook/routers/records.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status

from clinicbook.core.errors import AppointmentNotLinkedError, AuthorizationError, NotFoundError
from clinicbook.core.permission import CallerContext, ensure_subject
from clinicbook.dependencies import get_appointment_service, get_record_service, require_roles
from clinicbook.modules.appointments.schemas import AppointmentPublic
from clinicbook.modules.appointments.service import AppointmentService
from clinicbook.modules.records.schemas import (
    ClinicalRecord,
    NoteCreateRequest,
    PrescriptionCreateRequest,
    PrescriptionResult,
)
from clinicbook.modules.records.service import ClinicalRecordService

router = APIRouter(prefix="/records", tags=["clinical-records"])


async def _appointment_or_unlinked(svc: AppointmentService, appointment_id: UUID) -> AppointmentPublic:
    try:
        return await svc.get(appointment_id)
    except NotFoundError as exc:
        raise AppointmentNotLinkedError(f"appointment {appointment_id} does not exist") from exc


@router.post(
    "/{appointment_id}/notes",
    response_model=ClinicalRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Append a clinical note (assigned doctor)",
)
async def records_add_note(
    appointment_id: UUID,
    payload: NoteCreateRequest,
    appointments: AppointmentService = Depends(get_appointment_service),
    records: ClinicalRecordService = Depends(get_record_service),
    caller: CallerContext = Depends(require_roles("doctor")),
):
    appt = await _appointment_or_unlinked(appointments, appointment_id)
    ensure_subject(caller, appt.doctor_id, allow_admin=False)
    return await records.attach_note(appointment_id, caller.subject_id, payload.text)


@router.post(
    "/{appointment_id}/prescriptions",
    response_model=PrescriptionResult,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a prescription; the first one completes the visit",
)
async def records_add_prescription(
    appointment_id: UUID,
    payload: PrescriptionCreateRequest,
    appointments: AppointmentService = Depends(get_appointment_service),
    records: ClinicalRecordService = Depends(get_record_service),
    caller: CallerContext = Depends(require_roles("doctor")),
):
    appt = await _appointment_or_unlinked(appointments, appointment_id)
    ensure_subject(caller, appt.doctor_id, allow_admin=False)
    return await records.attach_prescription(
        appointment_id,
        payload.medication,
        payload.dosage,
        payload.frequency,
        payload.duration,
        doctor_notes=payload.doctor_notes,
        actor_id=caller.subject_id,
    )


@router.get(
    "/{appointment_id}",
    response_model=Optional[ClinicalRecord],
    summary="Clinical record of an appointment (null if none yet)",
)
async def records_get(
    appointment_id: UUID,
    appointments: AppointmentService = Depends(get_appointment_service),
    records: ClinicalRecordService = Depends(get_record_service),
    caller: CallerContext = Depends(require_roles("patient", "doctor", "admin")),
):
    appt = await _appointment_or_unlinked(appointments, appointment_id)
    if not caller.is_admin and caller.subject_id not in (appt.patient_id, appt.doctor_id):
        raise AuthorizationError("not a participant of this appointment", code="not_owner")
    return await records.get_record(appointment_id)
