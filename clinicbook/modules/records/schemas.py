# clinicbook/modules/records/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from clinicbook.db.base import utcnow
from clinicbook.modules.appointments.schemas import AppointmentPublic


class ClinicalNote(BaseModel):
    author_doctor_id: UUID
    text: str = Field(..., min_length=1, max_length=5000)
    created_at: datetime = Field(default_factory=utcnow)


class PrescriptionEntry(BaseModel):
    medication: str = Field(..., min_length=3, max_length=100)
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: str = Field(..., min_length=1, max_length=100)
    duration: str = Field(..., min_length=1, max_length=100)
    doctor_notes: Optional[str] = Field(default=None, max_length=200)
    issued_at: datetime = Field(default_factory=utcnow)


class Attachment(BaseModel):
    name: str
    url: str
    content_type: Optional[str] = None


class Feedback(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


class ClinicalRecord(BaseModel):
    """
    Document-store record for one appointment. Notes and prescriptions are append-only.
    """
    appointment_id: UUID
    patient_id: UUID
    notes: List[ClinicalNote] = Field(default_factory=list)
    prescriptions: List[PrescriptionEntry] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)
    feedback: Optional[Feedback] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True


# request payloads

class NoteCreateRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)


class PrescriptionCreateRequest(BaseModel):
    medication: str = Field(..., min_length=3, max_length=100)
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: str = Field(..., min_length=1, max_length=100)
    duration: str = Field(..., min_length=1, max_length=100)
    doctor_notes: Optional[str] = Field(default=None, max_length=200)


class PrescriptionResult(BaseModel):
    """
    Outcome of both saga steps: the document write and the status transition.
    """
    record: ClinicalRecord
    appointment: AppointmentPublic
    completed_now: bool
