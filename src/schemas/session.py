"""
Data models for voice recording sessions.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPED = "stopped"
    PROCESSED = "processed"


# Legal forward moves; PROCESSED is terminal.
ALLOWED_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.RECORDING},
    SessionState.RECORDING: {SessionState.STOPPED},
    SessionState.STOPPED: {SessionState.PROCESSED},
    SessionState.PROCESSED: set(),
}


class RecordingSession(BaseModel):
    id: str
    consultation_id: str
    section_id: str
    state: SessionState = SessionState.IDLE
    transcript: Optional[str] = None
    created_at: datetime
    stopped_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    processing_outcome: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.consultation_id, self.section_id)


class StartSessionRequest(BaseModel):
    consultation_id: str
    section_id: str


class StopSessionRequest(BaseModel):
    session_id: str
    transcript: str = ""


class ProcessSessionRequest(BaseModel):
    """Patient and dentist default to the consultation's when omitted."""

    patient_id: Optional[str] = None
    dentist_id: Optional[str] = None
    reference_time: Optional[datetime] = None
