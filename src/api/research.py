"""
API Router — Research Cohort Filters.

Natural-language filter extraction and saved filter sets for the
research dashboard.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from src.api.deps import get_entity_store, get_filter_extractor, get_resolver
from src.api.responses import commit_response
from src.db import EntityStore
from src.schemas.commit import CommitResult, FilterSetContext
from src.schemas.filters import CommitFilterSetRequest, FilterExtractRequest, FilterSet
from src.services.commit_resolver import ContextualCommitResolver
from src.services.filter_extractor import FilterExtractor, filters_to_natural_language

router = APIRouter(prefix="/research", tags=["Research"])


@router.post("/filters/extract")
async def extract_filters(
    request: FilterExtractRequest,
    extractor: FilterExtractor = Depends(get_filter_extractor),
) -> dict[str, Any]:
    """Turn a cohort description into filter criteria."""
    filter_set = await extractor.extract(request.query)
    return {
        **filter_set.model_dump(mode="json"),
        "summary": filters_to_natural_language(filter_set.criteria, extractor.registry),
    }


@router.post("/filters", response_model=CommitResult)
async def save_filter_set(
    request: CommitFilterSetRequest,
    resolver: ContextualCommitResolver = Depends(get_resolver),
) -> JSONResponse:
    filter_set = FilterSet(
        criteria=request.filters,
        confidence=request.confidence,
        original_text=request.original_text,
    )
    context = FilterSetContext(
        dentist_id=request.dentist_id,
        name=request.name,
        description=request.description,
    )
    return commit_response(await resolver.commit_filter_set(filter_set, context))


@router.get("/filters/{filter_set_id}")
async def get_filter_set(
    filter_set_id: str,
    store: EntityStore = Depends(get_entity_store),
) -> dict[str, Any]:
    record = await store.get_filter_set(filter_set_id)
    if not record:
        raise HTTPException(status_code=404, detail="Filter set not found")
    return record
