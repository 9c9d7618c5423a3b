"""
API Router — Appointment Commits.

Books an appointment the caller has already reviewed (for example one
returned by ``/intake/query`` or ``/voice/transcript`` that needed
confirmation).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.api.deps import get_resolver
from src.api.responses import commit_response
from src.logging_config import get_logger
from src.schemas.appointment import CommitAppointmentRequest
from src.schemas.commit import AppointmentContext, CommitResult
from src.services.commit_resolver import ContextualCommitResolver

logger = get_logger(__name__)
router = APIRouter(prefix="/appointments", tags=["Appointments"])


@router.post("/commit", response_model=CommitResult)
async def commit_appointment(
    request: CommitAppointmentRequest,
    resolver: ContextualCommitResolver = Depends(get_resolver),
) -> JSONResponse:
    context = AppointmentContext(
        patient_id=request.patient_id,
        dentist_id=request.dentist_id,
        consultation_id=request.consultation_id,
    )
    result = await resolver.commit_appointment(request.appointment, context, confirmed=request.confirmed)
    return commit_response(result)
