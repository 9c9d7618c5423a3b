"""
Intent Orchestrator.

Routes a free-form query to the filter extractor, the appointment
extractor or a conversational reply, and normalizes every branch into
one ``NormalizedResponse`` envelope.

Classification is its own small model call so the domain prompts stay
focused. When the model is unavailable or answers with nothing usable,
a lexical cue classifier takes over; unclassifiable input never fails
the request.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from src.config import get_settings
from src.errors import EmptyExtraction, ExtractionUnavailable, InvalidInput
from src.logging_config import get_logger
from src.schemas.extraction import FieldSpec, FieldType, SchemaSpec
from src.schemas.routing import INTENT_PRIORITY, Intent, NormalizedResponse
from src.services.appointment_extractor import AppointmentExtractor
from src.services.data_extraction import ConfidenceScoredExtractor
from src.services.filter_extractor import FilterExtractor, filters_to_natural_language

logger = get_logger(__name__)

CLASSIFIER_SCHEMA = SchemaSpec(
    name="intent_classification",
    fields=[
        FieldSpec(
            name="intents",
            type=FieldType.LIST,
            required=True,
            description=f"Every intent that applies, from: {', '.join(i.value for i in Intent)}",
        ),
        FieldSpec(name="reply", type=FieldType.STRING,
                  description="One friendly sentence if this is general conversation"),
    ],
)

CLASSIFIER_INSTRUCTIONS = (
    "Classify a message sent to the assistant of {clinic}, a dental clinic. "
    "appointment_scheduling: booking, moving or asking for a visit time. "
    "filter_extraction: describing a group of patients to find for research. "
    "general_conversation: anything else a person might say. "
    "unknown: not a message at all."
)

SCHEDULING_CUES = re.compile(
    r"\b(appointment|appointments|schedule|reschedule|book|booking|slot|visit|"
    r"today|tomorrow|tonight|next week|monday|tuesday|wednesday|thursday|friday|"
    r"saturday|sunday|\d{1,2}\s*(?:am|pm)|\d{1,2}:\d{2})\b"
)
FILTER_CUES = re.compile(
    r"\b(patients|cohort|diagnosed|diagnosis|pulpitis|caries|older than|younger than|"
    r"aged?|pain (?:intensity|score|level)|treatment(?:s)?|research|find all|show me)\b"
)
WORD = re.compile(r"[a-zA-Z]{2,}")


def lexical_candidates(query: str) -> set[Intent]:
    """Cue-word classification used when the model gives nothing usable."""
    text = query.lower()
    found: set[Intent] = set()
    if SCHEDULING_CUES.search(text):
        found.add(Intent.APPOINTMENT_SCHEDULING)
    if FILTER_CUES.search(text):
        found.add(Intent.FILTER_EXTRACTION)
    if not found:
        found.add(Intent.GENERAL_CONVERSATION if WORD.search(text) else Intent.UNKNOWN)
    return found


def resolve_priority(candidates: set[Intent]) -> Intent:
    """Scheduling beats filters beats conversation."""
    for intent in INTENT_PRIORITY:
        if intent in candidates:
            return intent
    return Intent.UNKNOWN


def _parse_intents(raw: dict[str, Any]) -> set[Intent]:
    value = raw.get("intents", raw.get("intent"))
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return set()
    found = set()
    for item in value:
        try:
            found.add(Intent(str(item).strip().lower()))
        except ValueError:
            continue
    return found


def _parse_reference(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise InvalidInput("reference_time must be an ISO-8601 timestamp", {"value": value}) from e
    return None


class IntentOrchestrator:
    def __init__(
        self,
        extractor: ConfidenceScoredExtractor,
        filter_extractor: FilterExtractor,
        appointment_extractor: AppointmentExtractor,
    ) -> None:
        self.extractor = extractor
        self.filter_extractor = filter_extractor
        self.appointment_extractor = appointment_extractor

    async def classify(self, query: str) -> tuple[Intent, str]:
        """Return the winning intent and the model's conversational reply (may be empty)."""
        candidates: set[Intent] = set()
        reply = ""
        source = "model"
        try:
            instructions = CLASSIFIER_INSTRUCTIONS.format(clinic=get_settings().clinic_name)
            candidate = await self.extractor.extract(query, CLASSIFIER_SCHEMA, instructions)
            candidates = _parse_intents(candidate.raw)
            if isinstance(candidate.raw.get("reply"), str):
                reply = candidate.raw["reply"].strip()
        except (ExtractionUnavailable, EmptyExtraction) as e:
            logger.warning("intent_classifier_unavailable", error=e.message)

        if not candidates:
            candidates = lexical_candidates(query)
            source = "lexical"

        intent = resolve_priority(candidates)
        logger.info(
            "intent_classified",
            intent=intent.value,
            candidates=sorted(c.value for c in candidates),
            source=source,
        )
        return intent, reply

    async def route(self, query: str, context: dict[str, Any] | None = None) -> NormalizedResponse:
        """
        Classify ``query`` and dispatch it.

        Extraction errors inside the chosen branch propagate with their
        own kind; only blank input is rejected up front.
        """
        text = (query or "").strip()
        if not text:
            raise InvalidInput("Query is empty")
        context = context or {}

        intent, reply = await self.classify(text)

        if intent == Intent.APPOINTMENT_SCHEDULING:
            return await self._schedule(text, context)
        if intent == Intent.FILTER_EXTRACTION:
            return await self._filters(text)
        return NormalizedResponse(
            intent=intent,
            original_text=text,
            confidence=0.0,
            rationale=reply if intent == Intent.GENERAL_CONVERSATION else "",
        )

    async def _schedule(self, text: str, context: dict[str, Any]) -> NormalizedResponse:
        reference = _parse_reference(context.get("reference_time"))
        appointment = await self.appointment_extractor.extract(text, reference)

        warnings = []
        if appointment.needs_confirmation:
            warnings.append("Date or time needs confirmation before booking")
        if appointment.dropped_fields:
            warnings.append(f"Not understood: {', '.join(appointment.dropped_fields)}")

        return NormalizedResponse(
            intent=Intent.APPOINTMENT_SCHEDULING,
            original_text=text,
            payload=appointment.model_dump(mode="json"),
            confidence=appointment.confidence,
            dropped_fields=appointment.dropped_fields,
            rationale=appointment.rationale,
            warnings=warnings,
        )

    async def _filters(self, text: str) -> NormalizedResponse:
        filter_set = await self.filter_extractor.extract(text)

        warnings = []
        if filter_set.dropped_fields:
            warnings.append(f"Not understood: {', '.join(filter_set.dropped_fields)}")

        return NormalizedResponse(
            intent=Intent.FILTER_EXTRACTION,
            original_text=text,
            payload={
                "filters": [c.model_dump(mode="json") for c in filter_set.criteria],
                "summary": filters_to_natural_language(filter_set.criteria, self.filter_extractor.registry),
            },
            confidence=filter_set.confidence,
            dropped_fields=filter_set.dropped_fields,
            rationale=filter_set.rationale,
            warnings=warnings,
        )
