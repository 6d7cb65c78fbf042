# clinicbook/routers/availability.py
from __future__ import annotations

import datetime as dt
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.errors import ValidationError
from clinicbook.core.permission import CallerContext, ensure_subject
from clinicbook.db.sql import get_session
from clinicbook.dependencies import get_current_caller, require_roles
from clinicbook.modules.doctors import ledger
from clinicbook.modules.doctors.schemas import (
    AvailabilityCheck,
    AvailabilityCreate,
    AvailabilityPublic,
)

router = APIRouter(prefix="/availability", tags=["doctor-availability"])


@router.post(
    "",
    response_model=AvailabilityPublic,
    status_code=status.HTTP_201_CREATED,
    summary="Publish a bookable slot",
)
async def create_slot(
    payload: AvailabilityCreate,
    db: AsyncSession = Depends(get_session),
    caller: CallerContext = Depends(require_roles("doctor", "admin")),
):
    # doctors publish for themselves, admins must name the doctor
    if caller.is_admin:
        if payload.doctor_id is None:
            raise ValidationError("doctor_id is required", code="doctor_id_required")
        doctor_id = payload.doctor_id
    else:
        doctor_id = caller.subject_id
        ensure_subject(caller, payload.doctor_id or doctor_id)

    return await ledger.publish_slot(
        db, doctor_id=doctor_id, start_time=payload.start_time, end_time=payload.end_time
    )


@router.get(
    "/doctor/{doctor_id}",
    response_model=list[AvailabilityPublic],
    summary="All slots of a doctor, earliest first",
)
async def list_doctor_slots(
    doctor_id: UUID,
    db: AsyncSession = Depends(get_session),
    _: CallerContext = Depends(get_current_caller),
):
    return await ledger.list_by_doctor(db, doctor_id=doctor_id)


@router.get(
    "/doctor/{doctor_id}/check",
    response_model=AvailabilityCheck,
    summary="Is the doctor free on a given day",
)
async def check_doctor_availability(
    doctor_id: UUID,
    date: dt.date = Query(..., description="Day to check (UTC)"),
    db: AsyncSession = Depends(get_session),
    _: CallerContext = Depends(get_current_caller),
):
    free = await ledger.is_doctor_free(db, doctor_id=doctor_id, day=date)
    return AvailabilityCheck(doctor_id=doctor_id, date=date, is_available=free)


@router.delete(
    "/{slot_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Withdraw an unbooked slot (owning doctor or admin)",
)
async def delete_slot(
    slot_id: UUID,
    db: AsyncSession = Depends(get_session),
    caller: CallerContext = Depends(require_roles("doctor", "admin")),
):
    slot = await ledger.get_slot(db, slot_id=slot_id)
    ensure_subject(caller, slot.doctor_id)
    await ledger.delete_slot(db, slot_id=slot_id)
    return None
