"""
FastAPI dependencies.

Every service is built here so tests can swap the model capability or
the entity store through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from src.db import EntityStore, get_db
from src.services.appointment_extractor import AppointmentExtractor
from src.services.commit_resolver import ContextualCommitResolver
from src.services.data_extraction import ConfidenceScoredExtractor
from src.services.filter_extractor import FilterExtractor
from src.services.intake_pipeline import IntakePipeline
from src.services.intent_router import IntentOrchestrator
from src.services.llm_client import Understand, get_understand
from src.services.session_manager import VoiceSessionManager, get_session_store


def get_understand_fn() -> Understand:
    return get_understand()


def get_extractor(understand: Understand = Depends(get_understand_fn)) -> ConfidenceScoredExtractor:
    return ConfidenceScoredExtractor(understand)


def get_filter_extractor(
    extractor: ConfidenceScoredExtractor = Depends(get_extractor),
) -> FilterExtractor:
    return FilterExtractor(extractor)


def get_appointment_extractor(
    extractor: ConfidenceScoredExtractor = Depends(get_extractor),
) -> AppointmentExtractor:
    return AppointmentExtractor(extractor)


def get_orchestrator(
    extractor: ConfidenceScoredExtractor = Depends(get_extractor),
    filter_extractor: FilterExtractor = Depends(get_filter_extractor),
    appointment_extractor: AppointmentExtractor = Depends(get_appointment_extractor),
) -> IntentOrchestrator:
    return IntentOrchestrator(extractor, filter_extractor, appointment_extractor)


def get_entity_store() -> EntityStore:
    return get_db()


@lru_cache(maxsize=8)
def _resolver_for(store: EntityStore) -> ContextualCommitResolver:
    # One resolver per store so its per-dentist locks are shared by all requests.
    return ContextualCommitResolver(store)


def get_resolver(store: EntityStore = Depends(get_entity_store)) -> ContextualCommitResolver:
    return _resolver_for(store)


async def get_session_manager() -> VoiceSessionManager:
    return VoiceSessionManager(await get_session_store())


def get_pipeline(
    appointment_extractor: AppointmentExtractor = Depends(get_appointment_extractor),
    resolver: ContextualCommitResolver = Depends(get_resolver),
    sessions: VoiceSessionManager = Depends(get_session_manager),
) -> IntakePipeline:
    return IntakePipeline(appointment_extractor, resolver, sessions)
