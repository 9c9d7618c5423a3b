"""
Filter Extractor.

Turns a plain-English cohort description ("patients over 30 with
irreversible pulpitis") into a validated ``FilterSet`` for the research
dashboard. Criteria the live field registry cannot express are dropped
and reported so the UI can show "not understood: X".
"""

from __future__ import annotations

import json
from typing import Any

from src.config import get_settings
from src.errors import EmptyExtraction, InvalidInput
from src.logging_config import get_logger
from src.schemas.extraction import FieldSpec, FieldType, SchemaSpec
from src.schemas.filters import (
    LIST_OPERATORS,
    NULLARY_OPERATORS,
    RANGE_OPERATORS,
    FilterCriterion,
    FilterDataType,
    FilterField,
    FilterFieldRegistry,
    FilterOperator,
    FilterSet,
    LogicalOperator,
)
from src.services.data_extraction import ConfidenceScoredExtractor, normalize_confidence
from src.services.schema_validator import CoercionError, coerce_field, is_attempted, repair, validate

logger = get_logger(__name__)

MIN_QUERY_LENGTH = 5

FILTER_SET_SCHEMA = SchemaSpec(
    name="filter_set",
    fields=[
        FieldSpec(
            name="filters",
            type=FieldType.LIST,
            required=True,
            description="List of {field, operator, value, logical_operator} objects",
        ),
    ],
)

# Model spellings seen in the wild for the same criterion keys.
_CRITERION_ALIASES = {
    "logicalOperator": "logical_operator",
    "logical": "logical_operator",
    "key": "field",
    "op": "operator",
}
_IGNORED_CRITERION_KEYS = {"dataType", "data_type"}

_VALUE_TYPES: dict[FilterDataType, FieldType] = {
    FilterDataType.STRING: FieldType.STRING,
    FilterDataType.NUMBER: FieldType.NUMBER,
    FilterDataType.DATE: FieldType.DATE,
    FilterDataType.BOOLEAN: FieldType.BOOLEAN,
}


def _instructions(registry: FilterFieldRegistry) -> str:
    return (
        "Extract patient cohort filter criteria for dental research.\n"
        "Use only these fields (by key) and only their listed operators:\n"
        f"{json.dumps(registry.describe(), indent=2)}\n\n"
        "Operator cues: 'over', 'older than', 'above' -> greater_than; "
        "'under', 'younger than', 'below' -> less_than; 'between X and Y' -> "
        "between with value [X, Y]; 'with', 'diagnosed with', 'has' -> contains; "
        "'not', 'excluding' -> not_equals; 'one of' -> in with a list value.\n"
        "Use OR only when the text says 'or'/'either'; otherwise AND.\n"
        "If the text mentions a criterion no listed field can express, still "
        "return it with the field name it refers to, so it can be reported."
    )


def criterion_schema(registry: FilterFieldRegistry) -> SchemaSpec:
    """Per-criterion schema built from the live registry."""
    return SchemaSpec(
        name="filter_criterion",
        fields=[
            FieldSpec(name="field", type=FieldType.STRING, required=True,
                      description=f"One of: {', '.join(registry.keys)}"),
            FieldSpec(name="operator", type=FieldType.ENUM, required=True,
                      enum_values=[op.value for op in FilterOperator]),
            FieldSpec(name="value", type=FieldType.ANY),
            FieldSpec(name="logical_operator", type=FieldType.ENUM,
                      enum_values=[op.value for op in LogicalOperator]),
        ],
    )


def _normalize_keys(item: dict[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in item.items():
        if key in _IGNORED_CRITERION_KEYS:
            continue
        normalized[_CRITERION_ALIASES.get(key, key)] = value
    return normalized


def _coerce_scalar(field_def: FilterField, value: Any) -> Any:
    if not is_attempted(value):
        raise CoercionError("missing value")
    if isinstance(value, (list, dict)):
        raise CoercionError("expected a single value")
    spec = FieldSpec(name=field_def.key, type=_VALUE_TYPES[field_def.data_type])
    return coerce_field(spec, value)


def shape_value(field_def: FilterField, operator: FilterOperator, value: Any) -> Any:
    """Bring ``value`` into the shape ``operator`` expects, or raise ``CoercionError``."""
    if operator in NULLARY_OPERATORS:
        return None

    if operator in RANGE_OPERATORS:
        if isinstance(value, dict) and {"min", "max"} <= value.keys():
            value = [value["min"], value["max"]]
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise CoercionError("between needs [min, max]")
        low, high = (_coerce_scalar(field_def, v) for v in value)
        return [low, high] if low <= high else [high, low]

    if operator in LIST_OPERATORS:
        items = value if isinstance(value, list) else [value]
        shaped = [_coerce_scalar(field_def, v) for v in items if is_attempted(v)]
        if not shaped:
            raise CoercionError(f"{operator.value} needs at least one value")
        return shaped

    return _coerce_scalar(field_def, value)


class FilterExtractor:
    """Composes the confidence-scored extractor with the filter field registry."""

    def __init__(
        self,
        extractor: ConfidenceScoredExtractor,
        registry: FilterFieldRegistry | None = None,
    ) -> None:
        self.extractor = extractor
        self.registry = registry or FilterFieldRegistry(
            deprecated=get_settings().deprecated_filter_fields
        )

    async def extract(self, query: str) -> FilterSet:
        """
        Extract a ``FilterSet`` from ``query``.

        Raises:
            InvalidInput: query shorter than five characters.
            ExtractionUnavailable: the model could not be reached.
            EmptyExtraction: no criterion survived validation.
        """
        text = (query or "").strip()
        if len(text) < MIN_QUERY_LENGTH:
            raise InvalidInput(
                "Please provide a more detailed description",
                {"min_length": MIN_QUERY_LENGTH},
            )

        candidate = await self.extractor.extract_with_retry(
            text, FILTER_SET_SCHEMA, instructions=_instructions(self.registry)
        )
        top = validate(candidate, FILTER_SET_SCHEMA)

        schema = criterion_schema(self.registry)
        criteria: list[FilterCriterion] = []
        dropped: list[str] = list(top.dropped_fields)

        for index, item in enumerate(top.clean.get("filters", [])):
            if not isinstance(item, dict):
                dropped.append(f"filters[{index}]")
                continue
            criterion, reason = self._build_criterion(
                _normalize_keys(item), schema, candidate.confidence, first=not criteria
            )
            if criterion is None:
                dropped.append(reason)
                logger.info("filter_criterion_dropped", criterion=reason)
                continue
            criteria.append(criterion)

        if not criteria:
            raise EmptyExtraction("Could not understand any filter criteria", {"dropped_fields": dropped})

        rationale = candidate.rationale or "Filters extracted"
        if dropped:
            rationale = f"{rationale} Not understood: {', '.join(dropped)}."

        filter_set = FilterSet(
            criteria=criteria,
            confidence=candidate.confidence,
            rationale=rationale,
            dropped_fields=dropped,
            original_text=text,
        )
        logger.info(
            "filter_extraction_complete",
            criteria=len(criteria),
            dropped=dropped,
            confidence=round(candidate.confidence, 3),
        )
        return filter_set

    def _build_criterion(
        self,
        item: dict[str, Any],
        schema: SchemaSpec,
        default_confidence: float,
        first: bool,
    ) -> tuple[FilterCriterion | None, str]:
        field_name = str(item.get("field") or "").strip()
        raw_operator = str(item.get("operator") or "").strip()
        label = f"{field_name}:{raw_operator}" if raw_operator else field_name or "unnamed"

        field_def = self.registry.get(field_name)
        if field_def is None:
            return None, field_name or "unnamed"

        own_confidence = normalize_confidence(item.get("confidence"))
        repaired = validate_criterion(item, schema)
        if "operator" not in repaired:
            return None, label

        operator = FilterOperator(repaired["operator"])
        if not field_def.allows(operator):
            return None, label

        try:
            value = shape_value(field_def, operator, item.get("value"))
        except CoercionError:
            return None, label

        logical = LogicalOperator(repaired.get("logical_operator", LogicalOperator.AND.value))
        return (
            FilterCriterion(
                field=field_def.key,
                operator=operator,
                value=value,
                # The first criterion has nothing to join to.
                logical_operator=LogicalOperator.AND if first else logical,
                confidence=own_confidence if own_confidence is not None else default_confidence,
            ),
            label,
        )


def validate_criterion(item: dict[str, Any], schema: SchemaSpec) -> dict[str, Any]:
    """Repair one raw criterion; undeclared keys are ignored here."""
    return repair({k: v for k, v in item.items() if schema.field(k)}, schema).clean


def _value_text(criterion: FilterCriterion) -> str:
    if criterion.operator in NULLARY_OPERATORS:
        return ""
    if criterion.operator in RANGE_OPERATORS:
        low, high = criterion.value
        return f' "{low}" and "{high}"'
    if criterion.operator in LIST_OPERATORS:
        return " " + ", ".join(f'"{v}"' for v in criterion.value)
    return f' "{criterion.value}"'


def filters_to_natural_language(
    criteria: list[FilterCriterion], registry: FilterFieldRegistry | None = None
) -> str:
    """Render criteria back into a readable sentence for the dashboard."""
    if not criteria:
        return "No filters applied"
    registry = registry or FilterFieldRegistry()

    parts = []
    for index, criterion in enumerate(criteria):
        field_def = registry.get(criterion.field)
        label = field_def.label if field_def else criterion.field
        joiner = "" if index == 0 else f" {criterion.logical_operator.value} "
        operator_text = criterion.operator.value.replace("_", " ")
        parts.append(f"{joiner}{label} {operator_text}{_value_text(criterion)}")
    return "".join(parts)
