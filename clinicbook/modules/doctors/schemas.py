# clinicbook/modules/doctors/schemas.py
from __future__ import annotations
from datetime import date, datetime
from typing import Optional
from uuid import UUID
from pydantic import AwareDatetime, BaseModel, Field, field_validator


class AvailabilityCreate(BaseModel):
    # admins publish on behalf of a doctor, doctors always publish for themselves
    doctor_id: Optional[UUID] = None
    start_time: AwareDatetime = Field(..., description="ISO time with timezone")
    end_time:   AwareDatetime = Field(..., description="ISO time with timezone")

    @field_validator("end_time")
    @classmethod
    def _end_after_start(cls, v, info):
        start = info.data.get("start_time")
        if start and v <= start:
            raise ValueError("end_time must be after start_time")
        return v


class AvailabilityPublic(BaseModel):
    id: UUID
    doctor_id: UUID
    start_time: datetime
    end_time: datetime
    is_booked: bool

    class Config:
        from_attributes = True


class AvailabilityCheck(BaseModel):
    doctor_id: UUID
    date: date
    is_available: bool
