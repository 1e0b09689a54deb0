from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses counted as "upcoming" on the dashboard and in analytics
ACTIVE_STATUSES = [AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value]

ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}


def can_transition(current: Optional[str], target: AppointmentStatus) -> bool:
    """Re-writing the current status is allowed; unknown stored values may move anywhere."""
    if current == target.value:
        return True
    try:
        current_status = AppointmentStatus(current)
    except ValueError:
        return True
    return target in ALLOWED_TRANSITIONS[current_status]


class AppointmentCreate(BaseModel):
    motherId: str
    appointmentDate: datetime  # ISO format, e.g. "2025-06-28T09:00:00"
    appointmentTime: str  # "09:00"
    type: str
    notes: Optional[str] = None
    # Accepted for compatibility, always replaced by "scheduled"
    status: Optional[str] = None


class AppointmentUpdate(BaseModel):
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None
    meetingLink: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def empty_status_means_no_change(cls, value):
        return value or None
