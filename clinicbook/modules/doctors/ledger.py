# clinicbook/modules/doctors/ledger.py
"""
Availability ledger: owns the free/booked state of every doctor slot.

Claim and release are single conditional UPDATEs, so two transactions can
never both book the same (doctor, start_time) whatever the caller does.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Sequence, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.errors import (
    AlreadyBookedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from clinicbook.db.base import as_utc, utcnow
from clinicbook.modules.appointments.models import Appointment, ApptStatus
from clinicbook.modules.doctors.models import AvailabilitySlot
from clinicbook.modules.users.repository import get_doctor_by_id_repo

logger = logging.getLogger(__name__)

# statuses whose time window stays occupied
OCCUPYING_STATUSES = (ApptStatus.SCHEDULED.value, ApptStatus.COMPLETED.value)


@dataclass(frozen=True)
class SlotHandle:
    """Proof of a successful claim; pass it back to release_slot."""

    doctor_id: UUID
    start_time: datetime
    slot_id: Optional[UUID] = None


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


async def _require_doctor(db: AsyncSession, doctor_id: UUID) -> None:
    if await get_doctor_by_id_repo(db, doctor_id=doctor_id) is None:
        raise NotFoundError(f"doctor {doctor_id} not found", code="doctor_not_found")


async def find_slot(
    db: AsyncSession, *, doctor_id: UUID, start_time: datetime
) -> Optional[AvailabilitySlot]:
    rows = await db.execute(
        select(AvailabilitySlot).where(
            AvailabilitySlot.doctor_id == doctor_id,
            AvailabilitySlot.start_time == as_utc(start_time),
        )
    )
    return rows.scalar_one_or_none()


async def publish_slot(
    db: AsyncSession, *, doctor_id: UUID, start_time: datetime, end_time: datetime
) -> AvailabilitySlot:
    """
    Create an unbooked slot. At most one slot per doctor and start time.
    """
    start_time, end_time = as_utc(start_time), as_utc(end_time)
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time", code="invalid_slot_window")

    await _require_doctor(db, doctor_id)
    if await find_slot(db, doctor_id=doctor_id, start_time=start_time) is not None:
        raise ConflictError("slot already published for this start time", code="slot_exists")

    slot = AvailabilitySlot(
        doctor_id=doctor_id,
        start_time=start_time,
        end_time=end_time,
        is_booked=False,
    )
    db.add(slot)
    try:
        await db.flush()
    except IntegrityError as exc:
        # lost a race against a concurrent publish of the same start time
        raise ConflictError("slot already published for this start time", code="slot_exists") from exc

    logger.info("Published slot %s for doctor %s at %s", slot.id, doctor_id, start_time.isoformat())
    return slot


async def claim_slot(
    db: AsyncSession, *, doctor_id: UUID, start_time: datetime
) -> SlotHandle:
    """
    Atomically flip an unbooked slot to booked.

    NotFoundError when the doctor published nothing at that time,
    AlreadyBookedError when the slot exists but is taken.
    """
    start_time = as_utc(start_time)
    stmt = (
        update(AvailabilitySlot)
        .where(
            AvailabilitySlot.doctor_id == doctor_id,
            AvailabilitySlot.start_time == start_time,
            AvailabilitySlot.is_booked.is_(False),
        )
        .values(is_booked=True, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    slot = await find_slot(db, doctor_id=doctor_id, start_time=start_time)

    if not res.rowcount:  # type: ignore[attr-defined]
        if slot is None:
            raise NotFoundError("no slot published at that time", code="slot_not_found")
        logger.warning("Slot %s for doctor %s already booked", slot.id, doctor_id)
        raise AlreadyBookedError("slot already booked")

    # the row may have been loaded earlier in this session with stale state
    await db.refresh(slot)
    return SlotHandle(doctor_id=doctor_id, start_time=start_time, slot_id=slot.id)


async def release_slot(db: AsyncSession, handle: SlotHandle) -> bool:
    """
    Mark the slot free again. Releasing a free (or vanished) slot is a no-op.

    Returns True if the slot actually changed state.
    """
    stmt = (
        update(AvailabilitySlot)
        .where(
            AvailabilitySlot.doctor_id == handle.doctor_id,
            AvailabilitySlot.start_time == as_utc(handle.start_time),
            AvailabilitySlot.is_booked.is_(True),
        )
        .values(is_booked=False, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return bool(res.rowcount)  # type: ignore[attr-defined]


async def release_if_unreferenced(db: AsyncSession, handle: SlotHandle) -> bool:
    """
    Compensation for a claim whose appointment never got persisted: free the
    slot only if no occupying appointment holds that doctor and time.
    """
    start_time = as_utc(handle.start_time)
    holder = (
        select(Appointment.id)
        .where(
            Appointment.doctor_id == handle.doctor_id,
            Appointment.appointment_time == start_time,
            Appointment.status.in_(OCCUPYING_STATUSES),
        )
        .exists()
    )
    stmt = (
        update(AvailabilitySlot)
        .where(
            AvailabilitySlot.doctor_id == handle.doctor_id,
            AvailabilitySlot.start_time == start_time,
            AvailabilitySlot.is_booked.is_(True),
            ~holder,
        )
        .values(is_booked=False, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return bool(res.rowcount)  # type: ignore[attr-defined]


async def release_held_by(db: AsyncSession, *, patient_id: UUID) -> int:
    """
    Free every slot a scheduled appointment of patient_id still holds, in one UPDATE.
    """
    holder = (
        select(Appointment.id)
        .where(
            Appointment.patient_id == patient_id,
            Appointment.status == ApptStatus.SCHEDULED.value,
            Appointment.doctor_id == AvailabilitySlot.doctor_id,
            Appointment.appointment_time == AvailabilitySlot.start_time,
        )
        .correlate(AvailabilitySlot)
        .exists()
    )
    res = await db.execute(
        update(AvailabilitySlot)
        .where(AvailabilitySlot.is_booked.is_(True), holder)
        .values(is_booked=False, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return res.rowcount  # type: ignore[attr-defined]


async def is_doctor_free(db: AsyncSession, *, doctor_id: UUID, day: date) -> bool:
    """
    True iff the doctor has neither a booked slot nor an occupying appointment on that (UTC) day.
    """
    await _require_doctor(db, doctor_id)
    start, end = day_bounds(day)

    booked_slots = await db.execute(
        select(func.count())
        .select_from(AvailabilitySlot)
        .where(
            AvailabilitySlot.doctor_id == doctor_id,
            AvailabilitySlot.is_booked.is_(True),
            AvailabilitySlot.start_time >= start,
            AvailabilitySlot.start_time < end,
        )
    )
    if booked_slots.scalar_one():
        return False

    appointments = await db.execute(
        select(func.count())
        .select_from(Appointment)
        .where(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(OCCUPYING_STATUSES),
            Appointment.appointment_time >= start,
            Appointment.appointment_time < end,
        )
    )
    return appointments.scalar_one() == 0


async def list_by_doctor(
    db: AsyncSession, *, doctor_id: UUID
) -> Sequence[AvailabilitySlot]:
    rows = await db.execute(
        select(AvailabilitySlot).where(AvailabilitySlot.doctor_id == doctor_id).order_by(AvailabilitySlot.start_time)
    )
    return rows.scalars().all()


async def get_slot(db: AsyncSession, *, slot_id: UUID) -> AvailabilitySlot:
    slot = await db.get(AvailabilitySlot, slot_id)
    if slot is None:
        raise NotFoundError(f"slot {slot_id} not found", code="slot_not_found")
    return slot


async def delete_slot(db: AsyncSession, *, slot_id: UUID) -> None:
    """
    Remove an unbooked slot in one conditional DELETE, so a claim that
    commits first always wins over the removal.
    """
    res = await db.execute(
        delete(AvailabilitySlot)
        .where(AvailabilitySlot.id == slot_id, AvailabilitySlot.is_booked.is_(False))
        .execution_options(synchronize_session=False)
    )
    if not res.rowcount:  # type: ignore[attr-defined]
        # NotFound if the row is gone, otherwise it was booked
        slot = await get_slot(db, slot_id=slot_id)
        logger.warning("Refused to delete slot %s of doctor %s: booked", slot_id, slot.doctor_id)
        raise ConflictError("slot is booked and cannot be deleted", code="slot_in_use")
    logger.info("Deleted slot %s", slot_id)
