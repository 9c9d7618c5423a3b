"""Tests for research cohort filter extraction."""

import asyncio

import pytest

from fakes import make_extractor
from src.errors import EmptyExtraction, InvalidInput
from src.schemas.filters import (
    FilterCriterion,
    FilterFieldRegistry,
    FilterOperator,
    LogicalOperator,
)
from src.services.filter_extractor import (
    FilterExtractor,
    filters_to_natural_language,
    shape_value,
)
from src.services.schema_validator import CoercionError


def run(coro):
    return asyncio.run(coro)


def extractor_for(*replies, registry=None):
    extractor, understand = make_extractor(*replies)
    return FilterExtractor(extractor, registry or FilterFieldRegistry()), understand


# ── Extraction ───────────────────────────────────────────────────────


def test_extracts_criteria_and_reports_what_was_not_understood():
    reply = {
        "filters": [
            {"field": "age", "operator": "greater_than", "value": "30", "logical_operator": "AND"},
            {"field": "diagnosis_final", "operator": "contains", "value": "pulpitis"},
            {"field": "favorite_color", "operator": "equals", "value": "blue"},
            {"field": "age", "operator": "contains", "value": "3"},
        ],
        "confidence": 0.8,
    }
    filter_extractor, _ = extractor_for(reply)
    result = run(filter_extractor.extract("patients over 30 with pulpitis who like blue"))

    assert result.triples == {
        ("age", "greater_than", "30"),
        ("diagnosis_final", "contains", "'pulpitis'"),
    }
    assert result.dropped_fields == ["favorite_color", "age:contains"]
    assert "Not understood: favorite_color, age:contains." in result.rationale
    assert result.confidence == pytest.approx(0.8)
    assert result.original_text == "patients over 30 with pulpitis who like blue"


def test_first_criterion_is_always_and():
    reply = {
        "filters": [
            {"field": "tooth_status", "operator": "equals", "value": "caries", "logical_operator": "OR"},
            {"field": "tooth_status", "operator": "equals", "value": "filled", "logical_operator": "or"},
        ]
    }
    filter_extractor, _ = extractor_for(reply)
    result = run(filter_extractor.extract("teeth with caries or filled"))
    assert [c.logical_operator for c in result.criteria] == [LogicalOperator.AND, LogicalOperator.OR]


def test_model_key_spellings_are_normalized():
    reply = {
        "filters": [
            {"key": "pain_intensity", "op": "between", "value": {"min": 8, "max": 5}, "dataType": "number"},
        ]
    }
    filter_extractor, _ = extractor_for(reply)
    result = run(filter_extractor.extract("pain between 5 and 8"))
    criterion = result.criteria[0]
    assert criterion.field == "pain_intensity"
    assert criterion.operator == FilterOperator.BETWEEN
    assert criterion.value == [5, 8]


def test_per_criterion_confidence_overrides_overall():
    reply = {
        "filters": [{"field": "age", "operator": "less_than", "value": 18, "confidence": 0.4}],
        "confidence": 0.9,
    }
    filter_extractor, _ = extractor_for(reply)
    result = run(filter_extractor.extract("children under 18"))
    assert result.criteria[0].confidence == pytest.approx(0.4)


def test_non_object_criteria_are_dropped_by_position():
    reply = {"filters": ["age over 30", {"field": "age", "operator": "greater_than", "value": 30}]}
    filter_extractor, _ = extractor_for(reply)
    result = run(filter_extractor.extract("patients over 30"))
    assert result.dropped_fields == ["filters[0]"]
    assert len(result.criteria) == 1


def test_short_query_is_rejected_before_the_model():
    filter_extractor, understand = extractor_for()
    with pytest.raises(InvalidInput):
        run(filter_extractor.extract(" age "))
    assert understand.calls == []


def test_nothing_expressible_is_empty_extraction():
    reply = {"filters": [{"field": "shoe_size", "operator": "equals", "value": 42}]}
    filter_extractor, _ = extractor_for(reply)
    with pytest.raises(EmptyExtraction) as exc_info:
        run(filter_extractor.extract("patients with big feet"))
    assert exc_info.value.details["dropped_fields"] == ["shoe_size"]


def test_deprecated_field_is_not_offered_or_accepted():
    registry = FilterFieldRegistry(deprecated=["pain_duration"])
    reply = {
        "filters": [
            {"field": "pain_duration", "operator": "equals", "value": "chronic"},
            {"field": "age", "operator": "greater_than_or_equal", "value": 65},
        ]
    }
    filter_extractor, understand = extractor_for(reply, registry=registry)
    result = run(filter_extractor.extract("seniors with chronic pain"))

    assert result.dropped_fields == ["pain_duration"]
    _, hint = understand.calls[0]
    assert '"pain_duration"' not in hint
    assert '"age"' in hint


# ── Value shaping ────────────────────────────────────────────────────


def test_shape_value_per_operator():
    registry = FilterFieldRegistry()
    age = registry.get("age")
    status = registry.get("tooth_status")

    assert shape_value(age, FilterOperator.IS_NULL, "anything") is None
    assert shape_value(age, FilterOperator.BETWEEN, ["40", 20]) == [20, 40]
    assert shape_value(status, FilterOperator.IN, "caries") == ["caries"]
    assert shape_value(status, FilterOperator.NOT_IN, ["caries", None, "filled"]) == ["caries", "filled"]
    assert shape_value(age, FilterOperator.EQUALS, "42") == 42

    with pytest.raises(CoercionError):
        shape_value(age, FilterOperator.BETWEEN, [1, 2, 3])
    with pytest.raises(CoercionError):
        shape_value(age, FilterOperator.EQUALS, [30])
    with pytest.raises(CoercionError):
        shape_value(status, FilterOperator.IN, [])


def test_ordered_operator_is_refused_for_text_fields():
    registry = FilterFieldRegistry()
    assert not registry.get("pain_location").allows(FilterOperator.GREATER_THAN)
    assert registry.get("visit_date").allows(FilterOperator.BETWEEN)


# ── Rendering ────────────────────────────────────────────────────────


def test_filters_to_natural_language():
    criteria = [
        FilterCriterion(field="age", operator=FilterOperator.GREATER_THAN, value=30),
        FilterCriterion(
            field="diagnosis_final",
            operator=FilterOperator.CONTAINS,
            value="pulpitis",
            logical_operator=LogicalOperator.OR,
        ),
        FilterCriterion(field="pain_intensity", operator=FilterOperator.BETWEEN, value=[5, 8]),
        FilterCriterion(field="tooth_number", operator=FilterOperator.IS_NULL),
    ]
    assert filters_to_natural_language(criteria) == (
        'Age greater than "30"'
        ' OR Final Diagnosis contains "pulpitis"'
        ' AND Pain Intensity (1-10) between "5" and "8"'
        " AND Tooth Number (FDI) is null"
    )


def test_no_filters_text():
    assert filters_to_natural_language([]) == "No filters applied"
