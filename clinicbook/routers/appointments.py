# clinicbook/routers/appointments.py
from __future__ import annotations

import datetime as dt
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from clinicbook.core.permission import CallerContext, ensure_subject
from clinicbook.dependencies import get_appointment_service, require_roles
from clinicbook.modules.appointments.models import ApptStatus
from clinicbook.modules.appointments.schemas import (
    AppointmentCreateRequest,
    AppointmentListPage,
    AppointmentPublic,
    AppointmentRescheduleRequest,
)
from clinicbook.modules.appointments.service import AppointmentService

router = APIRouter(tags=["appointments"])


@router.post(
    "/appointments",
    response_model=AppointmentPublic,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment on a published slot",
)
async def appointments_create(
    payload: AppointmentCreateRequest,
    svc: AppointmentService = Depends(get_appointment_service),
    caller: CallerContext = Depends(require_roles("patient")),
):
    return await svc.book(
        caller.subject_id,
        payload.doctor_id,
        payload.appointment_time,
        payload.reason,
        location_id=payload.location_id,
    )


@router.get(
    "/appointments/my",
    response_model=AppointmentListPage,
    summary="Current patient's appointments, newest first",
)
async def appointments_my(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    svc: AppointmentService = Depends(get_appointment_service),
    caller: CallerContext = Depends(require_roles("patient")),
):
    return await svc.list_for_patient(caller.subject_id, limit=limit, offset=offset)


@router.put(
    "/appointments/{appointment_id}/reschedule",
    response_model=AppointmentPublic,
    summary="Move an appointment to another slot of the same doctor",
)
async def appointments_reschedule(
    appointment_id: UUID,
    payload: AppointmentRescheduleRequest,
    svc: AppointmentService = Depends(get_appointment_service),
    caller: CallerContext = Depends(require_roles("patient")),
):
    return await svc.reschedule(
        appointment_id, caller.subject_id, payload.appointment_time, payload.reason
    )


@router.put(
    "/appointments/{appointment_id}/cancel",
    response_model=AppointmentPublic,
    summary="Cancel an appointment",
)
async def appointments_cancel(
    appointment_id: UUID,
    svc: AppointmentService = Depends(get_appointment_service),
    caller: CallerContext = Depends(require_roles("patient")),
):
    return await svc.cancel(appointment_id, caller.subject_id)


async def _ensure_assigned_doctor(
    svc: AppointmentService, appointment_id: UUID, caller: CallerContext
) -> None:
    appt = await svc.get(appointment_id)
    ensure_subject(caller, appt.doctor_id, allow_admin=False)


@router.put(
    "/appointments/{appointment_id}/complete",
    response_model=AppointmentPublic,
    summary="Assigned doctor marks the visit completed",
)
async def appointments_complete(
    appointment_id: UUID,
    svc: AppointmentService = Depends(get_appointment_service),
    caller: CallerContext = Depends(require_roles("doctor")),
):
    await _ensure_assigned_doctor(svc, appointment_id, caller)
    return await svc.mark_completed(appointment_id, actor_id=caller.subject_id)


@router.put(
    "/appointments/{appointment_id}/no-show",
    response_model=AppointmentPublic,
    summary="Assigned doctor marks the patient as no-show",
)
async def appointments_no_show(
    appointment_id: UUID,
    svc: AppointmentService = Depends(get_appointment_service),
    caller: CallerContext = Depends(require_roles("doctor")),
):
    await _ensure_assigned_doctor(svc, appointment_id, caller)
    return await svc.mark_no_show(appointment_id, actor_id=caller.subject_id)


@router.get(
    "/appointments/doctor/{doctor_id}",
    response_model=list[AppointmentPublic],
    summary="Doctor's appointments on a day",
)
async def appointments_for_doctor(
    doctor_id: UUID,
    date: dt.date = Query(..., description="Day (UTC)"),
    status_filter: Optional[ApptStatus] = Query(None, alias="status"),
    svc: AppointmentService = Depends(get_appointment_service),
    caller: CallerContext = Depends(require_roles("doctor", "admin")),
):
    # A doctor only sees their own schedule
    ensure_subject(caller, doctor_id)
    return await svc.list_for_doctor(doctor_id, date, status=status_filter)
