# clinicbook/modules/doctors/models.py
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clinicbook.db.base import Base, UUIDPKMixin, TimestampMixin, ReprMixin


class AvailabilitySlot(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    A doctor's bookable time slot. One row = one slot.

    is_booked is flipped only by claim/release in the ledger.
    """
    __tablename__ = "availabilities"

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)

    is_booked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_slot_time_order"),
        UniqueConstraint("doctor_id", "start_time", name="uq_slot_doctor_start"),
        # lookup: doctor, time window, occupancy
        Index("idx_availability_doctor_start", "doctor_id", "start_time", "is_booked"),
    )
