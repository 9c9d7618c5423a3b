"""
API Router — Voice Recording Sessions and Transcripts.

Session endpoints only track the recording lifecycle; processing a
stopped session's transcript is a separate step (here or in the
background transcript processor).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from src.api.deps import get_pipeline, get_session_manager
from src.schemas.appointment import TranscriptRequest
from src.schemas.commit import AppointmentContext, IntakeOutcome
from src.schemas.session import (
    ProcessSessionRequest,
    RecordingSession,
    StartSessionRequest,
    StopSessionRequest,
)
from src.services.intake_pipeline import IntakePipeline
from src.services.session_manager import VoiceSessionManager

router = APIRouter(prefix="/voice", tags=["Voice"])


@router.post("/sessions", response_model=RecordingSession, status_code=201)
async def start_session(
    request: StartSessionRequest,
    sessions: VoiceSessionManager = Depends(get_session_manager),
) -> RecordingSession:
    return await sessions.start(request.consultation_id, request.section_id)


@router.post("/sessions/stop")
async def stop_session(
    request: StopSessionRequest,
    sessions: VoiceSessionManager = Depends(get_session_manager),
) -> dict[str, Any]:
    session = await sessions.stop(request.session_id, request.transcript)
    return {
        "session_id": session.id,
        "state": session.state.value,
        "stopped_at": session.stopped_at.isoformat() if session.stopped_at else None,
        "transcript_length": len(session.transcript or ""),
    }


@router.get("/sessions/{session_id}", response_model=RecordingSession)
async def get_session(
    session_id: str,
    sessions: VoiceSessionManager = Depends(get_session_manager),
) -> RecordingSession:
    return await sessions.get(session_id)


@router.post("/sessions/{session_id}/process", response_model=IntakeOutcome)
async def process_session(
    session_id: str,
    request: ProcessSessionRequest,
    pipeline: IntakePipeline = Depends(get_pipeline),
) -> IntakeOutcome:
    """Extract and commit the appointment discussed in a stopped session."""
    return await pipeline.process_session(
        session_id,
        patient_id=request.patient_id,
        dentist_id=request.dentist_id,
        reference=request.reference_time,
    )


@router.post("/transcript", response_model=IntakeOutcome)
async def process_transcript(
    request: TranscriptRequest,
    pipeline: IntakePipeline = Depends(get_pipeline),
) -> IntakeOutcome:
    context = AppointmentContext(
        patient_id=request.patient_id,
        dentist_id=request.dentist_id,
        consultation_id=request.consultation_id,
    )
    return await pipeline.process_transcript(
        request.transcript, context, request.reference_time, confirmed=request.confirmed
    )
