# clinicbook/modules/appointments/models.py
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    String,
    ForeignKey,
    Index,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from clinicbook.db.base import Base, UUIDPKMixin, TimestampMixin, ReprMixin


class ApptStatus(PyEnum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# SCHEDULED -> {COMPLETED, CANCELLED, NO_SHOW}; terminal states are absorbing
ALLOWED_TRANSITIONS: dict[ApptStatus, frozenset[ApptStatus]] = {
    ApptStatus.SCHEDULED: frozenset(
        {ApptStatus.COMPLETED, ApptStatus.CANCELLED, ApptStatus.NO_SHOW}
    ),
    ApptStatus.COMPLETED: frozenset(),
    ApptStatus.CANCELLED: frozenset(),
    ApptStatus.NO_SHOW: frozenset(),
}


class Appointment(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    Appointment between a patient and a doctor at a slot start time.

    Only ids are stored; patients and doctors are resolved through the
    users repository when needed.
    """

    __tablename__ = "appointments"

    patient_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    # clinic locations live outside this service
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)

    appointment_time: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ApptStatus.SCHEDULED.value,
        server_default=ApptStatus.SCHEDULED.value,
    )

    __table_args__ = (
        # Avoid double booking: 1 doctor, 1 start time, 1 live appointment
        Index(
            "uq_appt_doctor_time_scheduled",
            "doctor_id",
            "appointment_time",
            unique=True,
            postgresql_where=text("status = 'scheduled'"),
            sqlite_where=text("status = 'scheduled'"),
        ),
        Index("ix_appt_doctor_time", "doctor_id", "appointment_time"),
        Index("ix_appt_patient_time", "patient_id", "appointment_time"),
    )

    @property
    def status_enum(self) -> ApptStatus:
        return ApptStatus(self.status)
