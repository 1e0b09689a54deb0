from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class NoteRequest(BaseModel):
    content: str = Field(..., min_length=1)


class MedicationRequest(BaseModel):
    name: str
    dosage: str
    frequency: str
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None


# Projections used to enrich referenced users
CONTACT_FIELDS = ["firstName", "lastName", "phone", "email"]
PROFILE_FIELDS = CONTACT_FIELDS + ["profileImage"]
EXTENDED_PROFILE_FIELDS = PROFILE_FIELDS + ["dueDate", "pregnancyStage"]
PRESCRIBER_FIELDS = ["firstName", "lastName", "specialization"]
