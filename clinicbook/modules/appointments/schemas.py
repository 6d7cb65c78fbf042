# clinicbook/modules/appointments/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, Field


class AppointmentCreateRequest(BaseModel):
    """
    Payload to book an appointment.
    - patient_id is taken from the caller (role patient), never from the client.
    """
    doctor_id: UUID
    appointment_time: AwareDatetime
    reason: Optional[str] = Field(default=None, max_length=500)
    location_id: Optional[UUID] = None


class AppointmentRescheduleRequest(BaseModel):
    appointment_time: AwareDatetime
    reason: Optional[str] = Field(default=None, max_length=500)


class AppointmentPublic(BaseModel):
    """
    DTO returns a detailed appointment.
    """
    id: UUID
    patient_id: UUID
    doctor_id: UUID
    location_id: Optional[UUID] = None
    appointment_time: datetime
    reason: Optional[str] = None
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AppointmentListPage(BaseModel):
    """
    Page of appointments (with pagination).
    """
    items: List[AppointmentPublic]
    total: int
    limit: int
    offset: int
    has_next: bool
