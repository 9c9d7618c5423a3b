"""
Schema Validator & Repairer.

Enforces declared field types on an extraction candidate. A field with
the wrong type gets exactly one well-defined coercion attempt; if that
fails, the field is dropped and reported, never the whole candidate.
Values are never invented: a field the model left empty stays absent.
"""

from __future__ import annotations

from datetime import date, time
from typing import Any, Callable

from src.errors import EmptyExtraction
from src.logging_config import get_logger
from src.schemas.extraction import (
    ExtractionCandidate,
    FieldSpec,
    FieldType,
    SchemaSpec,
    ValidationResult,
)

logger = get_logger(__name__)

_TRUE_WORDS = {"true", "yes", "y", "1"}
_FALSE_WORDS = {"false", "no", "n", "0"}


class CoercionError(ValueError):
    """A value could not be brought to its declared type."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise CoercionError("boolean is not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError as e:
            raise CoercionError(f"not an integer: {value!r}") from e
        if number.is_integer():
            return int(number)
    raise CoercionError(f"not an integer: {value!r}")


def _to_number(value: Any) -> int | float:
    if _is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            number = float(text)
        except ValueError as e:
            raise CoercionError(f"not a number: {value!r}") from e
        if number != number or number in (float("inf"), float("-inf")):
            raise CoercionError(f"not a finite number: {value!r}")
        return int(number) if number.is_integer() and "." not in text else number
    raise CoercionError(f"not a number: {value!r}")


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise CoercionError(f"not a boolean: {value!r}")


def _to_string(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if _is_number(value):
        return str(value)
    raise CoercionError(f"not a string: {value!r}")


def _to_date(value: Any) -> str:
    if not isinstance(value, str):
        raise CoercionError(f"not a date: {value!r}")
    try:
        return date.fromisoformat(value.strip()[:10]).isoformat()
    except ValueError as e:
        raise CoercionError(f"not an ISO date: {value!r}") from e


def _to_time(value: Any) -> str:
    if not isinstance(value, str):
        raise CoercionError(f"not a time: {value!r}")
    try:
        return time.fromisoformat(value.strip()).strftime("%H:%M")
    except ValueError as e:
        raise CoercionError(f"not an HH:MM time: {value!r}") from e


def _to_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    raise CoercionError(f"not a list: {value!r}")


def _to_object(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    raise CoercionError(f"not an object: {value!r}")


_COERCERS: dict[FieldType, Callable[[Any], Any]] = {
    FieldType.STRING: _to_string,
    FieldType.INTEGER: _to_integer,
    FieldType.NUMBER: _to_number,
    FieldType.BOOLEAN: _to_boolean,
    FieldType.DATE: _to_date,
    FieldType.TIME: _to_time,
    FieldType.LIST: _to_list,
    FieldType.OBJECT: _to_object,
    FieldType.ANY: lambda value: value,
}


def coerce_enum(value: Any, allowed: list[str]) -> str:
    """Exact match first, then a case-insensitive match."""
    if not isinstance(value, str):
        raise CoercionError(f"enum value must be text: {value!r}")
    if value in allowed:
        return value
    folded = value.strip().casefold()
    for option in allowed:
        if option.casefold() == folded:
            return option
    raise CoercionError(f"{value!r} is not one of {allowed}")


def coerce_field(spec: FieldSpec, value: Any) -> Any:
    """Return ``value`` in the declared type or raise ``CoercionError``."""
    if spec.type == FieldType.ENUM:
        return coerce_enum(value, spec.enum_values or [])
    return _COERCERS[spec.type](value)


def is_attempted(value: Any) -> bool:
    """The model left a field null or blank when it had nothing to say."""
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def repair(raw: dict[str, Any], schema: SchemaSpec) -> ValidationResult:
    """Validate a plain mapping against ``schema`` without the empty check."""
    clean: dict[str, Any] = {}
    dropped: list[str] = []

    for key, value in raw.items():
        if not is_attempted(value):
            continue
        spec = schema.field(key)
        if spec is None:
            dropped.append(key)
            continue
        try:
            clean[key] = coerce_field(spec, value)
        except CoercionError as e:
            logger.info("field_dropped", schema=schema.name, field=key, reason=str(e))
            dropped.append(key)

    ordered = {name: clean[name] for name in schema.field_names if name in clean}
    return ValidationResult(clean=ordered, dropped_fields=dropped)


def validate(candidate: ExtractionCandidate, schema: SchemaSpec) -> ValidationResult:
    """
    Repair ``candidate`` against ``schema``.

    Returns the retained fields and the names of every attempted field
    that was dropped. Raises ``EmptyExtraction`` when nothing usable is
    left.
    """
    result = repair(candidate.raw, schema)

    if not result.clean:
        raise EmptyExtraction(
            "Could not understand the request",
            {"dropped_fields": result.dropped_fields},
        )

    if result.dropped_fields:
        logger.info(
            "candidate_repaired",
            schema=schema.name,
            retained=len(result.clean),
            dropped=result.dropped_fields,
        )
    return result
