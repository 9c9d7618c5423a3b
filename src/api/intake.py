"""
API Router — Free-form Intake Queries.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.deps import get_orchestrator
from src.schemas.routing import NormalizedResponse, QueryRequest
from src.services.intent_router import IntentOrchestrator

router = APIRouter(prefix="/intake", tags=["Intake"])


@router.post("/query", response_model=NormalizedResponse)
async def route_query(
    request: QueryRequest,
    orchestrator: IntentOrchestrator = Depends(get_orchestrator),
) -> NormalizedResponse:
    """Classify a query and run the matching extractor."""
    return await orchestrator.route(request.query, request.context)
