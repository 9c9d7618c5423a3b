"""
Data models for research-cohort filter criteria.

The field registry mirrors the clinic's research dashboard: each field
has a data type and the operators that make sense for that type.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class FilterDataType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "not_in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


# Operators whose value is a [min, max] pair / a list / absent.
RANGE_OPERATORS = {FilterOperator.BETWEEN}
LIST_OPERATORS = {FilterOperator.IN, FilterOperator.NOT_IN}
NULLARY_OPERATORS = {FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL}

# Operators that are only meaningful for ordered types.
ORDERED_OPERATORS = {
    FilterOperator.GREATER_THAN,
    FilterOperator.LESS_THAN,
    FilterOperator.GREATER_THAN_OR_EQUAL,
    FilterOperator.LESS_THAN_OR_EQUAL,
    FilterOperator.BETWEEN,
}
TEXT_OPERATORS = {
    FilterOperator.CONTAINS,
    FilterOperator.NOT_CONTAINS,
    FilterOperator.STARTS_WITH,
    FilterOperator.ENDS_WITH,
}


class FilterField(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    data_type: FilterDataType
    description: str = ""
    allowed_operators: tuple[FilterOperator, ...]

    def allows(self, operator: FilterOperator) -> bool:
        if operator not in self.allowed_operators:
            return False
        # A registry entry cannot widen an operator past its data type.
        if operator in ORDERED_OPERATORS and self.data_type not in (FilterDataType.NUMBER, FilterDataType.DATE):
            return False
        if operator in TEXT_OPERATORS and self.data_type != FilterDataType.STRING:
            return False
        return True


_NUMERIC_OPS = (
    FilterOperator.EQUALS,
    FilterOperator.NOT_EQUALS,
    FilterOperator.GREATER_THAN,
    FilterOperator.LESS_THAN,
    FilterOperator.GREATER_THAN_OR_EQUAL,
    FilterOperator.LESS_THAN_OR_EQUAL,
    FilterOperator.BETWEEN,
)
_DATE_OPS = (
    FilterOperator.EQUALS,
    FilterOperator.GREATER_THAN,
    FilterOperator.LESS_THAN,
    FilterOperator.BETWEEN,
)
_TEXT_SEARCH_OPS = (FilterOperator.CONTAINS, FilterOperator.NOT_CONTAINS)
_CATEGORY_OPS = (FilterOperator.EQUALS, FilterOperator.IN, FilterOperator.NOT_IN)


PATIENT_FILTER_FIELDS: tuple[FilterField, ...] = (
    # Demographics
    FilterField(key="age", label="Age", data_type=FilterDataType.NUMBER,
                description="Patient age in years", allowed_operators=_NUMERIC_OPS),
    FilterField(key="first_name", label="First Name", data_type=FilterDataType.STRING,
                description="Patient first name",
                allowed_operators=(FilterOperator.EQUALS, FilterOperator.CONTAINS,
                                   FilterOperator.STARTS_WITH, FilterOperator.ENDS_WITH)),
    FilterField(key="last_name", label="Last Name", data_type=FilterDataType.STRING,
                description="Patient last name",
                allowed_operators=(FilterOperator.EQUALS, FilterOperator.CONTAINS,
                                   FilterOperator.STARTS_WITH, FilterOperator.ENDS_WITH)),
    # Pain assessment
    FilterField(key="pain_intensity", label="Pain Intensity (1-10)", data_type=FilterDataType.NUMBER,
                description="Patient reported pain intensity level",
                allowed_operators=(FilterOperator.EQUALS, FilterOperator.GREATER_THAN, FilterOperator.LESS_THAN,
                                   FilterOperator.BETWEEN, FilterOperator.GREATER_THAN_OR_EQUAL,
                                   FilterOperator.LESS_THAN_OR_EQUAL)),
    FilterField(key="pain_location", label="Pain Location", data_type=FilterDataType.STRING,
                description="Specific location of pain",
                allowed_operators=(FilterOperator.EQUALS, *_TEXT_SEARCH_OPS)),
    FilterField(key="pain_duration", label="Pain Duration", data_type=FilterDataType.STRING,
                description="acute, subacute or chronic",
                allowed_operators=(FilterOperator.CONTAINS, FilterOperator.EQUALS)),
    FilterField(key="pain_character", label="Pain Character", data_type=FilterDataType.STRING,
                description="sharp, dull, throbbing, constant or intermittent",
                allowed_operators=(FilterOperator.EQUALS, FilterOperator.CONTAINS,
                                   FilterOperator.IN, FilterOperator.NOT_IN)),
    # Diagnosis
    FilterField(key="diagnosis_final", label="Final Diagnosis", data_type=FilterDataType.STRING,
                description="Final diagnosis from consultation", allowed_operators=_TEXT_SEARCH_OPS),
    FilterField(key="diagnosis_provisional", label="Provisional Diagnosis", data_type=FilterDataType.STRING,
                description="Provisional diagnosis", allowed_operators=_TEXT_SEARCH_OPS),
    FilterField(key="diagnosis_primary", label="Primary Diagnosis", data_type=FilterDataType.STRING,
                description="Primary clinical diagnosis",
                allowed_operators=(FilterOperator.EQUALS, *_TEXT_SEARCH_OPS,
                                   FilterOperator.IN, FilterOperator.NOT_IN)),
    # Treatments
    FilterField(key="treatment_procedures", label="Treatment Procedures (Planned)",
                data_type=FilterDataType.STRING,
                description="Procedures planned in consultations", allowed_operators=_TEXT_SEARCH_OPS),
    FilterField(key="treatment_type", label="Treatment Type", data_type=FilterDataType.STRING,
                description="Type of treatment (RCT, extraction, crown, ...)",
                allowed_operators=(FilterOperator.EQUALS, *_TEXT_SEARCH_OPS,
                                   FilterOperator.IN, FilterOperator.NOT_IN)),
    FilterField(key="treatment_status", label="Treatment Status", data_type=FilterDataType.STRING,
                description="planned, in_progress, completed or cancelled",
                allowed_operators=(FilterOperator.EQUALS, FilterOperator.NOT_EQUALS,
                                   FilterOperator.IN, FilterOperator.NOT_IN)),
    FilterField(key="treatment_completion_date", label="Treatment Completion Date",
                data_type=FilterDataType.DATE,
                description="Date a treatment was completed", allowed_operators=_DATE_OPS),
    # Tooth chart
    FilterField(key="tooth_primary_diagnosis", label="Tooth Diagnosis", data_type=FilterDataType.STRING,
                description="Primary diagnosis recorded on a tooth",
                allowed_operators=(FilterOperator.EQUALS, *_TEXT_SEARCH_OPS,
                                   FilterOperator.IN, FilterOperator.NOT_IN)),
    FilterField(key="tooth_status", label="Tooth Status", data_type=FilterDataType.STRING,
                description="healthy, caries, filled, attention, ...", allowed_operators=_CATEGORY_OPS),
    FilterField(key="tooth_number", label="Tooth Number (FDI)", data_type=FilterDataType.STRING,
                description="FDI tooth number such as 36 or 46", allowed_operators=_CATEGORY_OPS),
    # Visits
    FilterField(key="visit_date", label="Visit Date", data_type=FilterDataType.DATE,
                description="Consultation date", allowed_operators=_DATE_OPS),
)


class FilterFieldRegistry:
    """The live set of filterable fields, minus anything deprecated."""

    def __init__(
        self,
        fields: tuple[FilterField, ...] = PATIENT_FILTER_FIELDS,
        deprecated: list[str] | None = None,
    ) -> None:
        removed = set(deprecated or [])
        self._fields = {f.key: f for f in fields if f.key not in removed}

    def get(self, key: str) -> FilterField | None:
        return self._fields.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    @property
    def keys(self) -> list[str]:
        return list(self._fields)

    def describe(self) -> list[dict[str, Any]]:
        """Field catalogue passed to the model as context."""
        return [
            {
                "key": f.key,
                "label": f.label,
                "data_type": f.data_type.value,
                "operators": [op.value for op in f.allowed_operators],
                "description": f.description,
            }
            for f in self._fields.values()
        ]


class FilterCriterion(BaseModel):
    """One validated field/operator/value triple."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: FilterOperator
    value: Any = None
    logical_operator: LogicalOperator = LogicalOperator.AND
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class FilterSet(BaseModel):
    criteria: list[FilterCriterion]
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    dropped_fields: list[str] = Field(default_factory=list)
    original_text: Optional[str] = None

    @property
    def triples(self) -> set[tuple[str, str, str]]:
        """Order-independent identity of the criteria."""
        return {(c.field, c.operator.value, repr(c.value)) for c in self.criteria}


class FilterExtractRequest(BaseModel):
    query: str


class CommitFilterSetRequest(BaseModel):
    filters: list[FilterCriterion]
    dentist_id: str
    name: str = "Untitled cohort"
    description: Optional[str] = None
    original_text: Optional[str] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
