"""Tests for intent classification and routing."""

import asyncio
from datetime import datetime, timezone

import pytest

from fakes import make_extractor
from src.errors import EmptyExtraction, ExtractionUnavailable, InvalidInput
from src.schemas.filters import FilterFieldRegistry
from src.schemas.routing import Intent
from src.services.appointment_extractor import AppointmentExtractor
from src.services.filter_extractor import FilterExtractor
from src.services.intent_router import IntentOrchestrator, lexical_candidates, resolve_priority


def run(coro):
    return asyncio.run(coro)


def orchestrator_for(*replies):
    extractor, understand = make_extractor(*replies)
    orchestrator = IntentOrchestrator(
        extractor,
        FilterExtractor(extractor, FilterFieldRegistry()),
        AppointmentExtractor(extractor),
    )
    return orchestrator, understand


# ── Branches ─────────────────────────────────────────────────────────


def test_general_conversation_has_empty_payload_and_zero_confidence():
    orchestrator, understand = orchestrator_for(
        {"intents": ["general_conversation"], "reply": "I can't check the weather, sorry!", "confidence": 0.95}
    )
    response = run(orchestrator.route("What's the weather today?"))

    assert response.intent == Intent.GENERAL_CONVERSATION
    assert response.payload == {}
    assert response.confidence == 0.0
    assert response.rationale == "I can't check the weather, sorry!"
    assert response.original_text == "What's the weather today?"
    assert len(understand.calls) == 1


def test_scheduling_branch_returns_appointment_payload():
    orchestrator, _ = orchestrator_for(
        {"intents": ["appointment_scheduling"]},
        {"reason": "cleaning", "date_text": "next Tuesday", "time_text": "3pm", "confidence": 0.9},
    )
    response = run(
        orchestrator.route(
            "Book me a cleaning next Tuesday at 3pm",
            {"reference_time": "2025-10-13T09:00:00+00:00"},
        )
    )
    assert response.intent == Intent.APPOINTMENT_SCHEDULING
    start = datetime.fromisoformat(response.payload["start"].replace("Z", "+00:00"))
    assert start == datetime(2025, 10, 14, 15, 0, tzinfo=timezone.utc)
    assert response.confidence == pytest.approx(0.9)
    assert response.warnings == []


def test_scheduling_branch_warns_when_confirmation_needed():
    orchestrator, _ = orchestrator_for(
        {"intents": "appointment_scheduling"},
        {"reason": "checkup", "date_text": "sometime next week"},
    )
    response = run(
        orchestrator.route("Checkup sometime next week?", {"reference_time": "2025-10-13T09:00:00+00:00"})
    )
    assert response.payload["needs_confirmation"] is True
    assert "Date or time needs confirmation before booking" in response.warnings


def test_filter_branch_returns_filters_and_summary():
    orchestrator, _ = orchestrator_for(
        {"intents": ["filter_extraction"]},
        {
            "filters": [
                {"field": "age", "operator": "greater_than", "value": 30},
                {"field": "hair_colour", "operator": "equals", "value": "red"},
            ],
            "confidence": 0.7,
        },
    )
    response = run(orchestrator.route("patients over 30 with red hair"))
    assert response.intent == Intent.FILTER_EXTRACTION
    assert response.payload["filters"][0]["field"] == "age"
    assert response.payload["summary"] == 'Age greater than "30"'
    assert response.dropped_fields == ["hair_colour"]
    assert response.warnings == ["Not understood: hair_colour"]


# ── Classification ───────────────────────────────────────────────────


def test_both_intents_prefer_scheduling():
    orchestrator, _ = orchestrator_for({"intents": ["filter_extraction", "appointment_scheduling"]})
    intent, _ = run(orchestrator.classify("book the pulpitis patients for tomorrow"))
    assert intent == Intent.APPOINTMENT_SCHEDULING


def test_lexical_fallback_when_model_unavailable():
    orchestrator, _ = orchestrator_for(ExtractionUnavailable("down"))
    intent, reply = run(orchestrator.classify("find all patients diagnosed with caries"))
    assert intent == Intent.FILTER_EXTRACTION
    assert reply == ""


def test_lexical_fallback_when_model_returns_no_known_intent():
    orchestrator, _ = orchestrator_for({"intents": ["small_talk"]})
    intent, _ = run(orchestrator.classify("can I book an appointment"))
    assert intent == Intent.APPOINTMENT_SCHEDULING


def test_lexical_fallback_on_prose_output():
    orchestrator, _ = orchestrator_for("Sure, happy to help!")
    intent, _ = run(orchestrator.classify("hello there"))
    assert intent == Intent.GENERAL_CONVERSATION


def test_non_words_are_unknown():
    orchestrator, _ = orchestrator_for(EmptyExtraction("nothing"))
    response = run(orchestrator.route("???"))
    assert response.intent == Intent.UNKNOWN
    assert response.payload == {}
    assert response.rationale == ""


@pytest.mark.parametrize(
    "query, expected",
    [
        ("reschedule my visit to friday", {Intent.APPOINTMENT_SCHEDULING}),
        ("patients older than 40", {Intent.FILTER_EXTRACTION}),
        ("show me patients I can see at 3pm", {Intent.APPOINTMENT_SCHEDULING, Intent.FILTER_EXTRACTION}),
        ("thanks so much", {Intent.GENERAL_CONVERSATION}),
        ("!!", {Intent.UNKNOWN}),
    ],
)
def test_lexical_candidates(query, expected):
    assert lexical_candidates(query) == expected


def test_resolve_priority_order():
    assert resolve_priority({Intent.GENERAL_CONVERSATION, Intent.FILTER_EXTRACTION}) == Intent.FILTER_EXTRACTION
    assert resolve_priority({Intent.UNKNOWN}) == Intent.UNKNOWN


# ── Errors ───────────────────────────────────────────────────────────


def test_empty_query_is_invalid_input():
    orchestrator, understand = orchestrator_for()
    with pytest.raises(InvalidInput):
        run(orchestrator.route("   "))
    assert understand.calls == []


def test_invalid_reference_time_is_invalid_input():
    orchestrator, _ = orchestrator_for({"intents": ["appointment_scheduling"]})
    with pytest.raises(InvalidInput):
        run(orchestrator.route("book tomorrow at 10am", {"reference_time": "next week-ish"}))


def test_branch_errors_propagate_with_their_kind():
    orchestrator, _ = orchestrator_for(
        {"intents": ["filter_extraction"]},
        {"filters": [{"field": "shoe_size", "operator": "equals", "value": 9}]},
    )
    with pytest.raises(EmptyExtraction):
        run(orchestrator.route("patients with shoe size 9"))


def test_branch_provider_failure_propagates_after_retries():
    orchestrator, _ = orchestrator_for(
        {"intents": ["appointment_scheduling"]},
        *(ExtractionUnavailable("down") for _ in range(3)),
    )
    with pytest.raises(ExtractionUnavailable):
        run(orchestrator.route("book tomorrow at 10am", {"reference_time": "2025-10-13T09:00:00+00:00"}))
