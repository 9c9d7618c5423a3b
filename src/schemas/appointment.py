"""
Data models for appointment requests extracted from text or transcripts.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AppointmentType(str, Enum):
    FIRST_VISIT = "first_visit"
    CONSULTATION = "consultation"
    TREATMENT = "treatment"
    FOLLOW_UP = "follow_up"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Minutes, when neither the speaker nor the model gave a duration.
DEFAULT_DURATIONS: dict[AppointmentType, int] = {
    AppointmentType.TREATMENT: 60,
    AppointmentType.CONSULTATION: 30,
    AppointmentType.FOLLOW_UP: 30,
    AppointmentType.FIRST_VISIT: 30,
}


class AppointmentIntent(BaseModel):
    """Structured appointment request. ``start`` must be set before commit."""

    patient_name: Optional[str] = None
    provider_reference: Optional[str] = None
    reason: Optional[str] = None
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    tooth_number: Optional[str] = None
    urgency: Urgency = Urgency.MEDIUM
    duration_minutes: int = Field(default=30, ge=5, le=480)

    start: Optional[datetime] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    date_text: Optional[str] = None
    time_text: Optional[str] = None

    needs_confirmation: bool = False
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    dropped_fields: list[str] = Field(default_factory=list)

    @property
    def end(self) -> datetime | None:
        if self.start is None:
            return None
        return self.start + timedelta(minutes=self.duration_minutes)


class TranscriptRequest(BaseModel):
    transcript: str
    patient_id: str
    dentist_id: str
    consultation_id: Optional[str] = None
    reference_time: Optional[datetime] = None
    confirmed: bool = False


class CommitAppointmentRequest(BaseModel):
    appointment: AppointmentIntent
    patient_id: str
    dentist_id: str
    consultation_id: Optional[str] = None
    confirmed: bool = False
