"""MongoDB Beanie model for clinical record documents."""

from datetime import datetime
from typing import List, Optional

from beanie import Document, Indexed
from pydantic import Field

from clinicbook.db.base import utcnow
from clinicbook.modules.records.schemas import Attachment, ClinicalNote, Feedback, PrescriptionEntry


class ClinicalRecordDocument(Document):
    """One document per appointment; the appointment id is the cross-store key."""

    appointment_id: Indexed(str, unique=True) = Field(..., description="Appointment UUID")
    patient_id: Indexed(str) = Field(..., description="Patient UUID")
    notes: List[ClinicalNote] = Field(default_factory=list)
    prescriptions: List[PrescriptionEntry] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)
    feedback: Optional[Feedback] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "clinical_records"
