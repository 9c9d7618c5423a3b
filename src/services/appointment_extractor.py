"""
Appointment Extractor.

Pulls appointment details out of a typed request or a consultation
transcript. The model is only asked for the verbatim date and time
phrases; turning "next Tuesday at 3pm" into an instant is done locally
against the request's reference time so the result is reproducible.
"""

from __future__ import annotations

import re
from datetime import datetime
from zoneinfo import ZoneInfo

from src.config import get_settings
from src.errors import InvalidInput
from src.logging_config import get_logger
from src.schemas.appointment import DEFAULT_DURATIONS, AppointmentIntent, AppointmentType, Urgency
from src.schemas.extraction import FieldSpec, FieldType, SchemaSpec
from src.services.data_extraction import ConfidenceScoredExtractor
from src.services.schema_validator import validate
from src.services.temporal_parser import resolve_when

logger = get_logger(__name__)

APPOINTMENT_SCHEMA = SchemaSpec(
    name="appointment_request",
    fields=[
        FieldSpec(name="patient_name", type=FieldType.STRING, description="Patient full name if said"),
        FieldSpec(name="provider", type=FieldType.STRING, description="Dentist mentioned, e.g. 'Dr. Patel'"),
        FieldSpec(name="reason", type=FieldType.STRING, required=True,
                  description="Short reason for the visit"),
        FieldSpec(name="appointment_type", type=FieldType.ENUM,
                  enum_values=[t.value for t in AppointmentType]),
        FieldSpec(name="tooth_number", type=FieldType.STRING, description="FDI tooth number if said"),
        FieldSpec(name="urgency", type=FieldType.ENUM, enum_values=[u.value for u in Urgency]),
        FieldSpec(name="pain_level", type=FieldType.INTEGER, description="0-10 if said"),
        FieldSpec(name="duration_minutes", type=FieldType.INTEGER),
        FieldSpec(name="date_text", type=FieldType.STRING, required=True,
                  description="The date exactly as spoken, e.g. 'next Tuesday'. Do not convert it."),
        FieldSpec(name="time_text", type=FieldType.STRING,
                  description="The time exactly as spoken, e.g. '3pm' or 'afternoon'. Do not convert it."),
    ],
)

INSTRUCTIONS = (
    "Extract the appointment the speaker wants to book at a dental clinic. "
    "Copy date and time phrases verbatim; never calculate dates yourself. "
    "Use appointment_type 'treatment' for procedures (root canal, filling, "
    "extraction, crown), 'follow_up' for reviews of earlier work, "
    "'first_visit' for new patients, otherwise 'consultation'."
)

URGENT_CUES = re.compile(r"\b(emergency|urgent|urgently|asap|as soon as possible)\b")
PAIN_SCORE = re.compile(r"\b(\d{1,2})\s*(?:out of|/)\s*10\b")

MIN_DURATION = 5
MAX_DURATION = 480


def clinic_now() -> datetime:
    return datetime.now(ZoneInfo(get_settings().clinic_timezone))


def _pain_level(reported: int | None, text: str) -> int | None:
    if reported is not None and 0 <= reported <= 10:
        return reported
    match = PAIN_SCORE.search(text)
    if match and int(match.group(1)) <= 10:
        return int(match.group(1))
    return None


def assess_urgency(text: str, pain_level: int | None, reported: str | None) -> Urgency:
    """Explicit cues and pain scores outrank the model's own guess."""
    if URGENT_CUES.search(text.lower()):
        return Urgency.URGENT
    if pain_level is not None and pain_level >= 8:
        return Urgency.URGENT
    if pain_level is not None and pain_level >= 5:
        return Urgency.HIGH
    return Urgency(reported) if reported else Urgency.MEDIUM


class AppointmentExtractor:
    def __init__(self, extractor: ConfidenceScoredExtractor) -> None:
        self.extractor = extractor

    async def extract(self, transcript: str, reference: datetime | None = None) -> AppointmentIntent:
        """
        Extract an ``AppointmentIntent`` from ``transcript``.

        ``reference`` is the request time; naive values are taken to be in
        the clinic's timezone. Partially resolved dates come back as a
        window with ``needs_confirmation`` set.
        """
        text = (transcript or "").strip()
        if not text:
            raise InvalidInput("Transcript is empty")

        if reference is None:
            reference = clinic_now()
        elif reference.tzinfo is None:
            reference = reference.replace(tzinfo=ZoneInfo(get_settings().clinic_timezone))

        candidate = await self.extractor.extract_with_retry(text, APPOINTMENT_SCHEMA, INSTRUCTIONS)
        result = validate(candidate, APPOINTMENT_SCHEMA)
        clean = result.clean
        dropped = list(result.dropped_fields)

        when = resolve_when(clean.get("date_text"), clean.get("time_text"), reference, fallback_text=text)

        appointment_type = AppointmentType(clean.get("appointment_type", AppointmentType.CONSULTATION.value))

        duration = clean.get("duration_minutes")
        if duration is not None and not MIN_DURATION <= duration <= MAX_DURATION:
            dropped.append("duration_minutes")
            duration = None
        if duration is None:
            duration = DEFAULT_DURATIONS[appointment_type]

        pain = _pain_level(clean.get("pain_level"), text)
        urgency = assess_urgency(text, pain, clean.get("urgency"))

        rationale = candidate.rationale
        if when.notes and when.needs_confirmation:
            note = "; ".join(when.notes)
            rationale = f"{rationale} Needs confirmation: {note}." if rationale else f"Needs confirmation: {note}."

        intent = AppointmentIntent(
            patient_name=clean.get("patient_name"),
            provider_reference=clean.get("provider"),
            reason=clean.get("reason"),
            appointment_type=appointment_type,
            tooth_number=clean.get("tooth_number"),
            urgency=urgency,
            duration_minutes=duration,
            start=when.start,
            window_start=when.window_start,
            window_end=when.window_end,
            date_text=clean.get("date_text"),
            time_text=clean.get("time_text"),
            needs_confirmation=when.needs_confirmation,
            confidence=candidate.confidence,
            rationale=rationale,
            dropped_fields=dropped,
        )

        logger.info(
            "appointment_extracted",
            appointment_type=appointment_type.value,
            urgency=urgency.value,
            resolved=when.is_concrete,
            needs_confirmation=when.needs_confirmation,
            confidence=round(candidate.confidence, 3),
            dropped=dropped,
        )
        return intent
