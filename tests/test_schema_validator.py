"""Tests for type enforcement and repair of extraction candidates."""

import pytest

from src.errors import EmptyExtraction
from src.schemas.extraction import ExtractionCandidate, FieldSpec, FieldType, SchemaSpec
from src.services.schema_validator import CoercionError, coerce_field, repair, validate

SCHEMA = SchemaSpec(
    name="visit",
    fields=[
        FieldSpec(name="reason", type=FieldType.STRING, required=True),
        FieldSpec(name="pain_level", type=FieldType.INTEGER),
        FieldSpec(name="fee", type=FieldType.NUMBER),
        FieldSpec(name="insured", type=FieldType.BOOLEAN),
        FieldSpec(name="urgency", type=FieldType.ENUM, enum_values=["low", "medium", "high", "urgent"]),
        FieldSpec(name="visit_date", type=FieldType.DATE),
        FieldSpec(name="visit_time", type=FieldType.TIME),
    ],
)


def candidate(raw, confidence=0.9):
    return ExtractionCandidate(raw=raw, confidence=confidence)


# ── Coercion ─────────────────────────────────────────────────────────


def test_numeric_strings_are_coerced():
    result = validate(candidate({"reason": "ache", "pain_level": " 7 ", "fee": "120.50"}), SCHEMA)
    assert result.clean == {"reason": "ache", "pain_level": 7, "fee": 120.5}
    assert result.dropped_fields == []


def test_whole_float_becomes_integer():
    spec = SCHEMA.field("pain_level")
    assert coerce_field(spec, 6.0) == 6
    with pytest.raises(CoercionError):
        coerce_field(spec, 6.5)


def test_boolean_is_not_an_integer():
    with pytest.raises(CoercionError):
        coerce_field(SCHEMA.field("pain_level"), True)


def test_boolean_words():
    spec = SCHEMA.field("insured")
    assert coerce_field(spec, "Yes") is True
    assert coerce_field(spec, "no") is False
    with pytest.raises(CoercionError):
        coerce_field(spec, "maybe")


def test_enum_matches_case_insensitively():
    assert coerce_field(SCHEMA.field("urgency"), "HIGH") == "high"
    with pytest.raises(CoercionError):
        coerce_field(SCHEMA.field("urgency"), "extreme")


def test_date_and_time_are_normalized():
    result = validate(
        candidate({"reason": "x", "visit_date": "2025-10-14T15:00:00", "visit_time": "15:00:00"}), SCHEMA
    )
    assert result.clean["visit_date"] == "2025-10-14"
    assert result.clean["visit_time"] == "15:00"


# ── Repair ───────────────────────────────────────────────────────────


def test_bad_field_is_dropped_not_the_candidate():
    result = validate(candidate({"reason": "cleaning", "pain_level": "a lot"}), SCHEMA)
    assert result.clean == {"reason": "cleaning"}
    assert result.dropped_fields == ["pain_level"]


def test_undeclared_keys_are_dropped():
    result = repair({"reason": "checkup", "favorite_color": "blue"}, SCHEMA)
    assert "favorite_color" not in result.clean
    assert result.dropped_fields == ["favorite_color"]


def test_null_and_blank_values_are_not_attempted():
    result = repair({"reason": "checkup", "pain_level": None, "urgency": "  "}, SCHEMA)
    assert result.clean == {"reason": "checkup"}
    assert result.dropped_fields == []


def test_clean_follows_declared_field_order():
    result = repair({"urgency": "low", "reason": "checkup"}, SCHEMA)
    assert list(result.clean) == ["reason", "urgency"]


def test_nothing_usable_raises_empty_extraction():
    with pytest.raises(EmptyExtraction) as exc_info:
        validate(candidate({"pain_level": "lots", "mood": "fine"}), SCHEMA)
    assert exc_info.value.details["dropped_fields"] == ["pain_level", "mood"]


def test_all_null_candidate_is_empty():
    with pytest.raises(EmptyExtraction):
        validate(candidate({"reason": None}), SCHEMA)
