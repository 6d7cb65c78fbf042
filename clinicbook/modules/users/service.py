# clinicbook/modules/users/service.py
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.errors import NotFoundError
from clinicbook.modules.appointments.models import Appointment
from clinicbook.modules.appointments.service import AppointmentService
from clinicbook.modules.doctors import ledger
from clinicbook.modules.doctors.models import AvailabilitySlot
from clinicbook.modules.users import repository as users_repo
from clinicbook.modules.users.models import User, UserRole
from clinicbook.modules.users.schemas import (
    DoctorCreateRequest,
    DoctorUpdateRequest,
    PatientCreateRequest,
    UserPublic,
)

logger = logging.getLogger(__name__)


def _to_public(user: User) -> UserPublic:
    return UserPublic.model_validate(user)


async def create_patient(session: AsyncSession, payload: PatientCreateRequest) -> UserPublic:
    user = await users_repo.create_user(
        session,
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        role=UserRole.PATIENT,
    )
    return _to_public(user)


async def create_doctor(session: AsyncSession, payload: DoctorCreateRequest) -> UserPublic:
    user = await users_repo.create_user(
        session,
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        role=UserRole.DOCTOR,
        specialty=payload.specialty,
    )
    return _to_public(user)


async def _require_doctor(session: AsyncSession, doctor_id: UUID) -> User:
    user = await users_repo.get_doctor_by_id_repo(session, doctor_id=doctor_id)
    if not user:
        raise NotFoundError(f"doctor {doctor_id} not found", code="doctor_not_found")
    return user


async def update_doctor(
    session: AsyncSession, doctor_id: UUID, payload: DoctorUpdateRequest
) -> UserPublic:
    user = await _require_doctor(session, doctor_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, field, value)
    await session.flush()
    return _to_public(user)


async def list_doctors(session: AsyncSession, specialty: str | None = None) -> list[UserPublic]:
    return [_to_public(u) for u in await users_repo.list_doctors_repo(session, specialty=specialty)]


async def delete_doctor(
    session: AsyncSession,
    doctor_id: UUID,
    appointments: AppointmentService,
    *,
    actor_id: UUID | None = None,
) -> None:
    """
    Delete a doctor with its appointments and slots. Clinical records stay.

    Scheduled visits are withdrawn through the lifecycle first so each one
    is cancelled under its own lock and audited.
    """
    await _require_doctor(session, doctor_id)
    withdrawn = await appointments.withdraw_all(doctor_id=doctor_id, actor_id=actor_id)

    async def purge() -> None:
        user = await _lock_user(session, doctor_id)
        await session.execute(delete(Appointment).where(Appointment.doctor_id == doctor_id))
        await session.execute(delete(AvailabilitySlot).where(AvailabilitySlot.doctor_id == doctor_id))
        await session.delete(user)
        await session.flush()

    await appointments.bounded(purge(), "delete_doctor")
    logger.info("Deleted doctor %s, withdrew %d appointment(s)", doctor_id, withdrawn)


async def delete_patient(
    session: AsyncSession,
    patient_id: UUID,
    appointments: AppointmentService,
    *,
    actor_id: UUID | None = None,
) -> None:
    """
    Delete a patient and their appointments; scheduled ones give their slots back first.
    """
    if await users_repo.get_patient_by_id_repo(session, patient_id=patient_id) is None:
        raise NotFoundError(f"patient {patient_id} not found", code="patient_not_found")
    withdrawn = await appointments.withdraw_all(patient_id=patient_id, actor_id=actor_id)

    async def purge() -> int:
        user = await _lock_user(session, patient_id)
        # bookings that committed after the withdrawal still hold a slot
        late = await ledger.release_held_by(session, patient_id=patient_id)
        await session.execute(delete(Appointment).where(Appointment.patient_id == patient_id))
        await session.delete(user)
        await session.flush()
        return late

    late = await appointments.bounded(purge(), "delete_patient")
    if late:
        logger.warning("Patient %s booked %d slot(s) during deletion; released", patient_id, late)
    logger.info("Deleted patient %s, withdrew %d appointment(s)", patient_id, withdrawn)


async def _lock_user(session: AsyncSession, user_id: UUID) -> User:
    # row lock keeps new appointments from referencing the user until commit
    user = (
        await session.execute(select(User).where(User.id == user_id).with_for_update())
    ).scalar_one_or_none()
    if user is None:
        raise NotFoundError(f"user {user_id} not found", code="user_not_found")
    return user
