# clinicbook/routers/admin.py
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.permission import CallerContext
from clinicbook.db.sql import get_session
from clinicbook.dependencies import get_appointment_service, require_roles
from clinicbook.modules.appointments.service import AppointmentService
from clinicbook.modules.users import service as users_svc
from clinicbook.modules.users.schemas import (
    DoctorCreateRequest,
    DoctorUpdateRequest,
    PatientCreateRequest,
    UserPublic,
)

# Directory of patients and doctors, managed by admins
router = APIRouter(tags=["admin"])


@router.post(
    "/admin/doctors",
    response_model=UserPublic,
    status_code=status.HTTP_201_CREATED,
)
async def admin_create_doctor(
    payload: DoctorCreateRequest,
    session: AsyncSession = Depends(get_session),
    _: CallerContext = Depends(require_roles("admin")),
):
    return await users_svc.create_doctor(session, payload)


@router.put(
    "/admin/doctors/{doctor_id}",
    response_model=UserPublic,
)
async def admin_update_doctor(
    doctor_id: UUID,
    payload: DoctorUpdateRequest,
    session: AsyncSession = Depends(get_session),
    _: CallerContext = Depends(require_roles("admin")),
):
    return await users_svc.update_doctor(session, doctor_id, payload)


@router.delete(
    "/admin/doctors/{doctor_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a doctor with their slots and appointments",
)
async def admin_delete_doctor(
    doctor_id: UUID,
    session: AsyncSession = Depends(get_session),
    appointments: AppointmentService = Depends(get_appointment_service),
    caller: CallerContext = Depends(require_roles("admin")),
):
    await users_svc.delete_doctor(session, doctor_id, appointments, actor_id=caller.subject_id)


@router.post(
    "/admin/patients",
    response_model=UserPublic,
    status_code=status.HTTP_201_CREATED,
)
async def admin_create_patient(
    payload: PatientCreateRequest,
    session: AsyncSession = Depends(get_session),
    _: CallerContext = Depends(require_roles("admin")),
):
    return await users_svc.create_patient(session, payload)


@router.delete(
    "/admin/patients/{patient_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a patient and their appointments",
)
async def admin_delete_patient(
    patient_id: UUID,
    session: AsyncSession = Depends(get_session),
    appointments: AppointmentService = Depends(get_appointment_service),
    caller: CallerContext = Depends(require_roles("admin")),
):
    await users_svc.delete_patient(session, patient_id, appointments, actor_id=caller.subject_id)
