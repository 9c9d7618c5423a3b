"""Tests for contextual commits of appointments and filter sets."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from src.schemas.appointment import AppointmentIntent, AppointmentType
from src.schemas.commit import AppointmentContext, CommitOutcome, FilterSetContext
from src.schemas.filters import (
    FilterCriterion,
    FilterFieldRegistry,
    FilterOperator,
    FilterSet,
    LogicalOperator,
)
from src.services.commit_resolver import ContextualCommitResolver, overlaps

TEN_AM = datetime(2025, 10, 14, 10, 0, tzinfo=timezone.utc)
CONTEXT = AppointmentContext(patient_id="p1", dentist_id="d1")


def run(coro):
    return asyncio.run(coro)


def intent(start=TEN_AM, **overrides):
    values = {"reason": "cleaning", "start": start, "duration_minutes": 30, "confidence": 0.9}
    values.update(overrides)
    return AppointmentIntent(**values)


@pytest.fixture
def resolver(store):
    return ContextualCommitResolver(store, FilterFieldRegistry(), min_confidence=0.6)


@pytest.fixture
def booked(store):
    store.add_booking("b1", "d1", TEN_AM, TEN_AM + timedelta(minutes=30))
    return store


# ── Overlap ──────────────────────────────────────────────────────────


def test_overlap_is_half_open():
    end = TEN_AM + timedelta(minutes=30)
    assert overlaps(TEN_AM, end, TEN_AM + timedelta(minutes=15), end + timedelta(minutes=15))
    assert not overlaps(TEN_AM, end, end, end + timedelta(minutes=30))
    assert not overlaps(TEN_AM, end, TEN_AM - timedelta(minutes=30), TEN_AM)


# ── Appointments ─────────────────────────────────────────────────────


def test_creates_appointment_record(resolver, store):
    result = run(resolver.commit_appointment(intent(), CONTEXT))
    assert result.outcome == CommitOutcome.CREATED
    record = store.bookings[-1]
    assert record["id"] == result.entity_id
    assert record["status"] == "scheduled"
    assert record["source"] == "auto_extraction"
    assert record["scheduled_end"] == (TEN_AM + timedelta(minutes=30)).isoformat()


def test_overlapping_slot_is_a_conflict(resolver, booked):
    result = run(resolver.commit_appointment(intent(TEN_AM + timedelta(minutes=15)), CONTEXT))
    assert result.outcome == CommitOutcome.CONFLICT
    assert result.conflicting_ids == ["b1"]
    assert len(booked.bookings) == 1


def test_back_to_back_slot_is_created(resolver, booked):
    result = run(resolver.commit_appointment(intent(TEN_AM + timedelta(minutes=30)), CONTEXT))
    assert result.outcome == CommitOutcome.CREATED
    assert len(booked.bookings) == 2


def test_other_dentists_bookings_do_not_conflict(resolver, store):
    store.dentists["d2"] = {"id": "d2", "full_name": "Dr. Omar Haddad"}
    store.add_booking("b9", "d2", TEN_AM, TEN_AM + timedelta(minutes=30))
    result = run(resolver.commit_appointment(intent(), CONTEXT))
    assert result.outcome == CommitOutcome.CREATED


def test_missing_start_is_rejected_with_window(resolver, store):
    window = intent(
        start=None,
        window_start=TEN_AM,
        window_end=TEN_AM + timedelta(hours=8),
        needs_confirmation=True,
    )
    result = run(resolver.commit_appointment(window, CONTEXT, confirmed=True))
    assert result.outcome == CommitOutcome.REJECTED
    assert result.reason.kind == "confirmation_required"
    assert result.reason.details["window_start"] == TEN_AM.isoformat()
    assert store.bookings == []


def test_needs_confirmation_blocks_until_confirmed(resolver, store):
    pending = intent(needs_confirmation=True)
    rejected = run(resolver.commit_appointment(pending, CONTEXT))
    assert rejected.outcome == CommitOutcome.REJECTED
    assert rejected.reason.kind == "confirmation_required"

    accepted = run(resolver.commit_appointment(pending, CONTEXT, confirmed=True))
    assert accepted.outcome == CommitOutcome.CREATED
    assert store.bookings[-1]["source"] == "confirmed_extraction"


def test_low_confidence_needs_confirmation(resolver):
    result = run(resolver.commit_appointment(intent(confidence=0.3), CONTEXT))
    assert result.outcome == CommitOutcome.REJECTED
    assert result.reason.details["threshold"] == 0.6


def test_unknown_patient_and_dentist(resolver):
    no_patient = run(resolver.commit_appointment(intent(), AppointmentContext(patient_id="p404", dentist_id="d1")))
    no_dentist = run(resolver.commit_appointment(intent(), AppointmentContext(patient_id="p1", dentist_id="d404")))
    assert no_patient.reason.kind == "unknown_entity"
    assert no_patient.reason.details["entity"] == "patient"
    assert no_dentist.reason.details["entity"] == "dentist"


def test_treatment_must_reference_a_consultation(resolver):
    treatment = intent(appointment_type=AppointmentType.TREATMENT, duration_minutes=60)
    result = run(resolver.commit_appointment(treatment, CONTEXT))
    assert result.outcome == CommitOutcome.REJECTED
    assert result.reason.kind == "invalid_input"

    bound = AppointmentContext(patient_id="p1", dentist_id="d1", consultation_id="c1")
    assert run(resolver.commit_appointment(treatment, bound)).outcome == CommitOutcome.CREATED


def test_storage_failure_is_an_error_result(resolver, store):
    store.fail_inserts = True
    result = run(resolver.commit_appointment(intent(), CONTEXT))
    assert result.outcome == CommitOutcome.ERROR
    assert result.reason.details["cause"] == "disk full"


def test_lookup_failure_is_an_error_result(resolver, store):
    store.fail_lookups = True
    assert run(resolver.commit_appointment(intent(), CONTEXT)).outcome == CommitOutcome.ERROR


def test_exclusion_violation_is_a_conflict(resolver, store):
    store.exclusion_on_insert = True
    result = run(resolver.commit_appointment(intent(), CONTEXT))
    assert result.outcome == CommitOutcome.CONFLICT
    assert result.conflicting_ids == []


def test_concurrent_commits_for_one_slot_create_exactly_one(resolver, store):
    async def scenario():
        return await asyncio.gather(*(resolver.commit_appointment(intent(), CONTEXT) for _ in range(5)))

    results = run(scenario())
    outcomes = [r.outcome for r in results]
    assert outcomes.count(CommitOutcome.CREATED) == 1
    assert outcomes.count(CommitOutcome.CONFLICT) == 4
    assert len(store.bookings) == 1


def test_dropped_fields_become_warnings(resolver):
    result = run(resolver.commit_appointment(intent(dropped_fields=["duration_minutes"]), CONTEXT))
    assert result.warnings == ["Not understood: duration_minutes"]


# ── Filter sets ──────────────────────────────────────────────────────


def cohort():
    return FilterSet(
        criteria=[
            FilterCriterion(field="age", operator=FilterOperator.BETWEEN, value=[30, 50]),
            FilterCriterion(field="diagnosis_final", operator=FilterOperator.CONTAINS, value="pulpitis"),
            FilterCriterion(
                field="tooth_status",
                operator=FilterOperator.IN,
                value=["caries", "filled"],
                logical_operator=LogicalOperator.OR,
            ),
        ],
        confidence=0.8,
        original_text="patients 30 to 50 with pulpitis or carious teeth",
    )


def test_filter_set_round_trips(resolver, store):
    original = cohort()
    result = run(resolver.commit_filter_set(original, FilterSetContext(dentist_id="d1", name="Pulpitis")))
    assert result.outcome == CommitOutcome.CREATED

    row = run(store.get_filter_set(result.entity_id))
    restored = FilterSet(criteria=row["filters"], confidence=row["confidence"])
    assert restored.triples == original.triples
    assert row["name"] == "Pulpitis"


def test_deprecated_field_is_rejected_as_unknown_field(store):
    resolver = ContextualCommitResolver(store, FilterFieldRegistry(deprecated=["tooth_status"]))
    result = run(resolver.commit_filter_set(cohort(), FilterSetContext(dentist_id="d1")))
    assert result.outcome == CommitOutcome.REJECTED
    assert result.reason.kind == "unknown_field"
    assert result.reason.details["fields"] == ["tooth_status"]
    assert store.filter_sets == {}


def test_operator_not_allowed_for_field_is_rejected(resolver):
    bad = FilterSet(
        criteria=[FilterCriterion(field="pain_location", operator=FilterOperator.GREATER_THAN, value="jaw")],
        confidence=1.0,
    )
    result = run(resolver.commit_filter_set(bad, FilterSetContext(dentist_id="d1")))
    assert result.reason.kind == "invalid_input"
    assert result.reason.details["criteria"] == ["pain_location:greater_than"]


def test_filter_set_for_unknown_dentist(resolver):
    result = run(resolver.commit_filter_set(cohort(), FilterSetContext(dentist_id="d404")))
    assert result.reason.kind == "unknown_entity"


def test_value_that_does_not_fit_its_operator_is_rejected(resolver, store):
    bad = FilterSet(
        criteria=[
            FilterCriterion(field="age", operator=FilterOperator.BETWEEN, value="abc"),
            FilterCriterion(field="diagnosis_final", operator=FilterOperator.CONTAINS, value="pulpitis"),
        ],
        confidence=0.9,
    )
    result = run(resolver.commit_filter_set(bad, FilterSetContext(dentist_id="d1")))
    assert result.outcome == CommitOutcome.REJECTED
    assert result.reason.kind == "invalid_input"
    assert result.reason.details["criteria"] == ["age:between"]
    assert store.filter_sets == {}


def test_values_are_stored_in_operator_shape(resolver, store):
    loose = FilterSet(
        criteria=[
            FilterCriterion(field="age", operator=FilterOperator.BETWEEN, value=["50", 30]),
            FilterCriterion(field="tooth_status", operator=FilterOperator.IN, value="caries"),
        ],
        confidence=0.9,
    )
    result = run(resolver.commit_filter_set(loose, FilterSetContext(dentist_id="d1")))
    assert result.outcome == CommitOutcome.CREATED
    stored = store.filter_sets[result.entity_id]["filters"]
    assert stored[0]["value"] == [30, 50]
    assert stored[1]["value"] == ["caries"]
