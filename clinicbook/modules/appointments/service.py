# clinicbook/modules/appointments/service.py
"""
Appointment lifecycle: booking, rescheduling, cancellation and the
SCHEDULED -> {COMPLETED, CANCELLED, NO_SHOW} status transitions.

Every public operation runs in its own unit of work, serialized per slot
and per appointment, and bounded by a timeout.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinicbook.core.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
    PartialFailureError,
    PolicyError,
    ValidationError,
)
from clinicbook.core.locks import KeyedLock
from clinicbook.db.base import as_utc, utcnow
from clinicbook.db.sql import session_scope
from clinicbook.modules.appointments.models import (
    ALLOWED_TRANSITIONS,
    Appointment,
    ApptStatus,
)
from clinicbook.modules.appointments.schemas import AppointmentListPage, AppointmentPublic
from clinicbook.modules.doctors import ledger
from clinicbook.modules.doctors.ledger import SlotHandle
from clinicbook.modules.log import write_audit_log
from clinicbook.modules.users.repository import get_doctor_by_id_repo, get_patient_by_id_repo

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _to_public(appt: Appointment) -> AppointmentPublic:
    return AppointmentPublic.model_validate(appt)


def _slot_of(appt: Appointment) -> SlotHandle:
    return SlotHandle(doctor_id=appt.doctor_id, start_time=appt.appointment_time)


class AppointmentService:
    """
    Owns appointment records and reserves doctor time through the availability ledger.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cancellation_cutoff: timedelta = timedelta(hours=24),
        no_show_releases_slot: bool = True,
        timeout: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[KeyedLock] = None,
    ):
        self._sessions = session_factory
        self.cancellation_cutoff = cancellation_cutoff
        self.no_show_releases_slot = no_show_releases_slot
        self.timeout = timeout
        self._clock = clock
        self._locks = locks if locks is not None else KeyedLock()

    # ------------------------------------------------------------------ #
    # plumbing

    async def bounded(self, op: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(op, self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("%s timed out after %.1fs, rolled back", what, self.timeout)
            raise OperationTimeoutError(f"{what} timed out") from exc

    def _now(self) -> datetime:
        return as_utc(self._clock())

    @staticmethod
    def _slot_key(doctor_id: UUID, start_time: datetime) -> tuple:
        return ("slot", doctor_id, start_time)

    @staticmethod
    def _appointment_key(appointment_id: UUID) -> tuple:
        return ("appointment", appointment_id)

    @staticmethod
    async def _load(session: AsyncSession, appointment_id: UUID) -> Appointment:
        appt = await session.get(Appointment, appointment_id)
        if appt is None:
            raise NotFoundError(f"appointment {appointment_id} not found", code="appointment_not_found")
        return appt

    @staticmethod
    def _ensure_owner(appt: Appointment, requester_patient_id: UUID) -> None:
        if appt.patient_id != requester_patient_id:
            raise AuthorizationError("appointment belongs to another patient", code="not_owner")

    @staticmethod
    def _ensure_scheduled(appt: Appointment) -> None:
        if appt.status != ApptStatus.SCHEDULED.value:
            raise InvalidStateError(
                f"appointment is {appt.status}, expected scheduled",
                code="appointment_not_scheduled",
            )

    def _ensure_future(self, when: datetime) -> None:
        if when <= self._now():
            raise ValidationError("appointment time must be in the future", code="appointment_in_past")

    @staticmethod
    async def _transition(session: AsyncSession, appt: Appointment, target: ApptStatus) -> None:
        """
        Move appt to target with a compare-and-set on the current status.
        """
        current = appt.status_enum
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateError(
                f"cannot move appointment from {current.value} to {target.value}",
                code="appointment_not_scheduled",
            )
        res = await session.execute(
            update(Appointment)
            .where(Appointment.id == appt.id, Appointment.status == current.value)
            .values(status=target.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not res.rowcount:  # type: ignore[attr-defined]
            raise InvalidStateError("appointment changed concurrently", code="appointment_not_scheduled")
        await session.refresh(appt)

    async def _compensate(self, handle: SlotHandle, cause: BaseException) -> None:
        """
        Make sure a claim whose appointment was never persisted does not stay booked.
        """
        try:
            async with session_scope(self._sessions) as session:
                released = await ledger.release_if_unreferenced(session, handle)
        except SQLAlchemyError as exc:
            logger.error(
                "Could not release slot %s@%s after failed write (%s): %s",
                handle.doctor_id, handle.start_time.isoformat(), cause, exc,
            )
            raise PartialFailureError(
                "slot may remain booked without an appointment",
                resource=f"availability:{handle.doctor_id}@{handle.start_time.isoformat()}",
            ) from exc
        logger.warning(
            "Booking write failed (%s); slot %s@%s %s",
            cause, handle.doctor_id, handle.start_time.isoformat(),
            "released" if released else "already free",
        )

    # ------------------------------------------------------------------ #
    # reads

    async def get(self, appointment_id: UUID) -> AppointmentPublic:
        async with session_scope(self._sessions) as session:
            return _to_public(await self._load(session, appointment_id))

    async def list_for_doctor(
        self, doctor_id: UUID, day: date, *, status: Optional[ApptStatus] = None
    ) -> list[AppointmentPublic]:
        """
        Appointments of one doctor on one (UTC) day, earliest first.
        """
        start, end = ledger.day_bounds(day)
        async with session_scope(self._sessions) as session:
            if await get_doctor_by_id_repo(session, doctor_id=doctor_id) is None:
                raise NotFoundError(f"doctor {doctor_id} not found", code="doctor_not_found")
            stmt = (
                select(Appointment)
                .where(
                    Appointment.doctor_id == doctor_id,
                    Appointment.appointment_time >= start,
                    Appointment.appointment_time < end,
                )
                .order_by(Appointment.appointment_time, Appointment.id)
            )
            if status is not None:
                stmt = stmt.where(Appointment.status == status.value)
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_public(a) for a in rows]

    async def list_for_patient(
        self, patient_id: UUID, *, limit: int = 20, offset: int = 0
    ) -> AppointmentListPage:
        cond = Appointment.patient_id == patient_id
        async with session_scope(self._sessions) as session:
            total_stmt = select(func.count()).select_from(Appointment).where(cond)
            total = (await session.execute(total_stmt)).scalar_one()

            stmt = (
                select(Appointment)
                .where(cond)
                .order_by(Appointment.appointment_time.desc(), Appointment.id)
                .limit(limit)
                .offset(offset)
            )
            rows = (await session.execute(stmt)).scalars().all()

        return AppointmentListPage(
            items=[_to_public(a) for a in rows],
            total=total,
            limit=limit,
            offset=offset,
            has_next=offset + limit < total,
        )

    # ------------------------------------------------------------------ #
    # booking

    async def book(
        self,
        patient_id: UUID,
        doctor_id: UUID,
        appointment_time: datetime,
        reason: Optional[str] = None,
        *,
        location_id: Optional[UUID] = None,
    ) -> AppointmentPublic:
        """
        Claim the doctor's slot at appointment_time and persist a SCHEDULED appointment.

        Claim, insert and audit row share one transaction; if the insert
        fails the claim is undone and the error surfaces.
        """
        appointment_time = as_utc(appointment_time)
        return await self.bounded(
            self._book(patient_id, doctor_id, appointment_time, reason, location_id),
            "book",
        )

    async def _book(
        self,
        patient_id: UUID,
        doctor_id: UUID,
        appointment_time: datetime,
        reason: Optional[str],
        location_id: Optional[UUID],
    ) -> AppointmentPublic:
        async with self._locks.hold(self._slot_key(doctor_id, appointment_time)):
            handle: Optional[SlotHandle] = None
            try:
                async with session_scope(self._sessions) as session:
                    if await get_patient_by_id_repo(session, patient_id=patient_id) is None:
                        raise NotFoundError(f"patient {patient_id} not found", code="patient_not_found")
                    if await get_doctor_by_id_repo(session, doctor_id=doctor_id) is None:
                        raise NotFoundError(f"doctor {doctor_id} not found", code="doctor_not_found")
                    self._ensure_future(appointment_time)

                    handle = await ledger.claim_slot(
                        session, doctor_id=doctor_id, start_time=appointment_time
                    )

                    appt = Appointment(
                        patient_id=patient_id,
                        doctor_id=doctor_id,
                        location_id=location_id,
                        appointment_time=appointment_time,
                        reason=reason,
                        status=ApptStatus.SCHEDULED.value,
                    )
                    session.add(appt)
                    await session.flush()
                    await write_audit_log(
                        session, patient_id, "BOOK_APPOINTMENT",
                        f"appointment={appt.id} doctor={doctor_id} time={appointment_time.isoformat()}",
                    )
            except SQLAlchemyError as exc:
                if handle is not None:
                    await self._compensate(handle, exc)
                if isinstance(exc, IntegrityError):
                    raise ConflictError("appointment conflicts with an existing one", code="appointment_conflict") from exc
                raise

        logger.info(
            "Booked appointment %s: patient %s with doctor %s at %s",
            appt.id, patient_id, doctor_id, appointment_time.isoformat(),
        )
        return _to_public(appt)

    async def reschedule(
        self,
        appointment_id: UUID,
        requester_patient_id: UUID,
        new_time: datetime,
        reason: Optional[str] = None,
    ) -> AppointmentPublic:
        """
        Move a scheduled appointment to another slot of the same doctor.

        The new slot is claimed before the old one is released, so a failed
        claim leaves the original reservation untouched.
        """
        new_time = as_utc(new_time)
        return await self.bounded(
            self._reschedule(appointment_id, requester_patient_id, new_time, reason),
            "reschedule",
        )

    async def _reschedule(
        self,
        appointment_id: UUID,
        requester_patient_id: UUID,
        new_time: datetime,
        reason: Optional[str],
    ) -> AppointmentPublic:
        async with self._locks.hold(self._appointment_key(appointment_id)):
            # doctor_id never changes, read it to know which slot key to take
            async with session_scope(self._sessions) as session:
                appt = await self._load(session, appointment_id)
                self._ensure_owner(appt, requester_patient_id)
                doctor_id = appt.doctor_id

            async with self._locks.hold(self._slot_key(doctor_id, new_time)):
                new_handle: Optional[SlotHandle] = None
                try:
                    async with session_scope(self._sessions) as session:
                        appt = await self._load(session, appointment_id)
                        self._ensure_owner(appt, requester_patient_id)
                        self._ensure_scheduled(appt)
                        self._ensure_future(new_time)

                        old_time = appt.appointment_time
                        if new_time != old_time:
                            new_handle = await ledger.claim_slot(
                                session, doctor_id=doctor_id, start_time=new_time
                            )
                            appt.appointment_time = new_time
                        if reason is not None:
                            appt.reason = reason
                        await session.flush()
                        if new_handle is not None:
                            await ledger.release_slot(session, SlotHandle(doctor_id, old_time))
                        await write_audit_log(
                            session, requester_patient_id, "RESCHEDULE_APPOINTMENT",
                            f"appointment={appointment_id} from={old_time.isoformat()} to={new_time.isoformat()}",
                        )
                        await session.refresh(appt)
                except SQLAlchemyError as exc:
                    if new_handle is not None:
                        await self._compensate(new_handle, exc)
                    if isinstance(exc, IntegrityError):
                        raise ConflictError("appointment conflicts with an existing one", code="appointment_conflict") from exc
                    raise

        logger.info(
            "Rescheduled appointment %s from %s to %s",
            appointment_id, old_time.isoformat(), new_time.isoformat(),
        )
        return _to_public(appt)

    # ------------------------------------------------------------------ #
    # status transitions

    async def cancel(self, appointment_id: UUID, requester_patient_id: UUID) -> AppointmentPublic:
        """
        Patient cancellation. Rejected inside the cutoff window before the visit.
        """
        return await self.bounded(self._cancel(appointment_id, requester_patient_id), "cancel")

    async def _cancel(self, appointment_id: UUID, requester_patient_id: UUID) -> AppointmentPublic:
        async with self._locks.hold(self._appointment_key(appointment_id)):
            async with session_scope(self._sessions) as session:
                appt = await self._load(session, appointment_id)
                self._ensure_owner(appt, requester_patient_id)
                self._ensure_scheduled(appt)

                lead_time = appt.appointment_time - self._now()
                if lead_time < self.cancellation_cutoff:
                    logger.warning(
                        "Refused cancellation of %s: %s before the visit, cutoff %s",
                        appointment_id, lead_time, self.cancellation_cutoff,
                    )
                    raise PolicyError(
                        f"appointments cannot be cancelled less than {self.cancellation_cutoff} ahead",
                        code="cancellation_window_closed",
                    )

                await self._transition(session, appt, ApptStatus.CANCELLED)
                await ledger.release_slot(session, _slot_of(appt))
                await write_audit_log(
                    session, requester_patient_id, "CANCEL_APPOINTMENT", f"appointment={appointment_id}"
                )

        logger.info("Cancelled appointment %s", appointment_id)
        return _to_public(appt)

    async def mark_completed(
        self, appointment_id: UUID, *, actor_id: Optional[UUID] = None
    ) -> AppointmentPublic:
        """
        SCHEDULED -> COMPLETED. The slot stays booked as history.

        Not idempotent: a second call raises InvalidStateError.
        """
        return await self.bounded(
            self._finish(appointment_id, ApptStatus.COMPLETED, actor_id, release=False),
            "mark_completed",
        )

    async def mark_no_show(
        self, appointment_id: UUID, *, actor_id: Optional[UUID] = None
    ) -> AppointmentPublic:
        """
        SCHEDULED -> NO_SHOW. Frees the slot unless configured otherwise.
        """
        return await self.bounded(
            self._finish(appointment_id, ApptStatus.NO_SHOW, actor_id, release=self.no_show_releases_slot),
            "mark_no_show",
        )

    async def _finish(
        self,
        appointment_id: UUID,
        target: ApptStatus,
        actor_id: Optional[UUID],
        *,
        release: bool,
    ) -> AppointmentPublic:
        async with self._locks.hold(self._appointment_key(appointment_id)):
            async with session_scope(self._sessions) as session:
                appt = await self._load(session, appointment_id)
                self._ensure_scheduled(appt)
                await self._transition(session, appt, target)
                if release:
                    await ledger.release_slot(session, _slot_of(appt))
                action = "COMPLETE_APPOINTMENT" if target is ApptStatus.COMPLETED else "NO_SHOW_APPOINTMENT"
                await write_audit_log(session, actor_id, action, f"appointment={appointment_id}")

        logger.info("Appointment %s marked %s", appointment_id, target.value)
        return _to_public(appt)

    # ------------------------------------------------------------------ #
    # directory cascade

    async def withdraw_all(
        self,
        *,
        patient_id: Optional[UUID] = None,
        doctor_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None,
    ) -> int:
        """
        Cancel every scheduled appointment of one patient or one doctor and
        give their slots back, ignoring the cancellation cutoff.

        Used before a directory entry is removed. Each appointment goes
        through the same lock and status check as cancel; returns how many
        were withdrawn.
        """
        if (patient_id is None) == (doctor_id is None):
            raise ValueError("pass exactly one of patient_id or doctor_id")

        cond = (
            Appointment.patient_id == patient_id
            if patient_id is not None
            else Appointment.doctor_id == doctor_id
        )
        async with session_scope(self._sessions) as session:
            ids = (
                await session.execute(
                    select(Appointment.id).where(cond, Appointment.status == ApptStatus.SCHEDULED.value)
                )
            ).scalars().all()

        withdrawn = 0
        for appointment_id in ids:
            if await self.bounded(self._withdraw(appointment_id, actor_id), "withdraw"):
                withdrawn += 1
        logger.info(
            "Withdrew %d appointment(s) of %s %s",
            withdrawn, "patient" if patient_id is not None else "doctor", patient_id or doctor_id,
        )
        return withdrawn

    async def _withdraw(self, appointment_id: UUID, actor_id: Optional[UUID]) -> bool:
        async with self._locks.hold(self._appointment_key(appointment_id)):
            async with session_scope(self._sessions) as session:
                appt = await session.get(Appointment, appointment_id)
                # already closed or gone since it was listed
                if appt is None or appt.status != ApptStatus.SCHEDULED.value:
                    return False
                await self._transition(session, appt, ApptStatus.CANCELLED)
                await ledger.release_slot(session, _slot_of(appt))
                await write_audit_log(
                    session, actor_id, "CANCEL_APPOINTMENT", f"appointment={appointment_id} withdrawn"
                )
        return True
