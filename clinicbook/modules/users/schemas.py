# clinicbook/modules/users/schemas.py
from __future__ import annotations

from enum import Enum
from typing import Optional
from uuid import UUID
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, EmailStr, Field, StringConstraints, field_validator

class Role(str, Enum):
    patient = "patient"
    doctor = "doctor"
    admin = "admin"

NameStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
PhoneStr = Annotated[str, StringConstraints(pattern=r"^\+?[1-9]\d{1,14}$")]  # E.164 simple


class PatientCreateRequest(BaseModel):
    email: EmailStr
    first_name: NameStr
    last_name: NameStr
    phone: Optional[PhoneStr] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class DoctorCreateRequest(PatientCreateRequest):
    specialty: Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)]


class DoctorUpdateRequest(BaseModel):
    first_name: Optional[NameStr] = None
    last_name: Optional[NameStr] = None
    phone: Optional[PhoneStr] = None
    specialty: Optional[str] = Field(default=None, min_length=2, max_length=100)


class UserPublic(BaseModel):
    id: UUID
    email: str
    role: Role
    first_name: str
    last_name: str
    phone: Optional[str] = None
    specialty: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
